"""
epp_config -- single public entrypoint for financing configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the resulting frozen
    ``EppConfiguration`` (or the kernel objects it builds) by injection
    and never read files or environment variables themselves.

Architecture position:
    Configuration -- sits above ``epp_kernel`` and beside ``epp_batch``.
    The kernel MUST NEVER import from ``epp_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- malformed configuration.
    - ``ConfigurationError`` -- semantically invalid policy values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``EPP_CONFIG_TRACE`` log entry with the config id, version and
    checksum, which ties every order's rate snapshot back to the exact
    configuration that produced it.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from epp_config.loader import load_configuration
from epp_config.schema import (
    ApprovalSettings,
    EppConfiguration,
    PayrollSettings,
    ScheduleSettings,
)

_logger = logging.getLogger("epp_kernel.config")

# Default configuration set shipped with the package
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "EPP_CONFIG_PATH"


def get_active_config(path: Path | str | None = None) -> EppConfiguration:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then the ``EPP_CONFIG_PATH``
    environment variable, then the bundled default set.
    """
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if path is not None:
        config_path = Path(path)
    elif env_path:
        config_path = Path(env_path)
    else:
        config_path = _DEFAULT_CONFIG_PATH

    config = load_configuration(config_path)

    _logger.info(
        "EPP_CONFIG_TRACE",
        extra={
            "trace_type": "EPP_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
            "rate_policy_versions": [p.version for p in config.rate_policies],
            "workflow_count": len(config.approval.workflows),
        },
    )
    return config


__all__ = [
    "ApprovalSettings",
    "EppConfiguration",
    "PayrollSettings",
    "ScheduleSettings",
    "get_active_config",
]
