"""
epp_services -- Cross-component orchestration of the financing core.

``FinancingOrchestrator`` is the facade callers use; it owns the
approval -> schedule coupling.  ``ReconciliationService`` audits ledger
balances against the installments still owed.
"""

from epp_services.financing_orchestrator import (
    FinancingOrchestrator,
    ResolutionResult,
    SubmissionResult,
)
from epp_services.reconciliation_service import (
    ReconciliationOutcome,
    ReconciliationService,
)

__all__ = [
    "FinancingOrchestrator",
    "ReconciliationOutcome",
    "ReconciliationService",
    "ResolutionResult",
    "SubmissionResult",
]
