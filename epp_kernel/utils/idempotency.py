"""
Idempotency key generation utilities.

Idempotency keys make ledger appends and batch runs exactly-once under
re-delivery: the same logical event always produces the same key, and the
key column carries a unique constraint.
"""

from uuid import UUID

LEDGER_PRODUCER = "ledger"


def generate_idempotency_key(
    producer: str,
    event_type: str,
    event_id: UUID | str,
) -> str:
    """
    Generate an idempotency key.

    Format: producer:event_type:event_id

    Example:
        >>> generate_idempotency_key("ledger", "LOAN", order_id)
        "ledger:LOAN:550e8400-e29b-41d4-a716-446655440000"
    """
    return f"{producer}:{event_type}:{event_id}"


def ledger_key(event_type: str, order_id: UUID, installment_id: UUID | None = None) -> str:
    """Key for a ledger event: one LOAN per order, one PAYMENT per installment."""
    event_id = f"{order_id}" if installment_id is None else f"{order_id}/{installment_id}"
    return generate_idempotency_key(LEDGER_PRODUCER, event_type, event_id)

