"""
Settlement Rules Module

Confirmation and reconciliation rules shared by the gateway callback, the
status poll and manual approval, plus helpers to read what the gateway sends.
"""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, DecimalException
from typing import Any, Optional

from domain.entities import Installment, Settlement, SettlementState
from domain.exceptions import InvalidSettlementError, ReconciliationMismatchError

APPROVED_STATUSES = frozenset({
    "APROBADO", "APPROVED", "COMPLETED", "PAID", "SUCCESS", "PAGADO", "1", "TRUE",
})

CENT = Decimal("0.01")


def is_approved_status(value: Any) -> bool:
    """Whether a callback state value means the payment went through."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in APPROVED_STATUSES


def amount_to_cents(value: Any) -> Optional[int]:
    """Convert a currency amount as sent by the gateway ("150.50", 150.5) to cents."""
    if value is None or value == "":
        return None
    try:
        amount = Decimal(str(value).strip())
        # NaN and Infinity parse fine but have no cent value
        if amount.is_finite():
            return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except DecimalException:
        pass
    raise InvalidSettlementError(f"Invalid amount: {value!r}")


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def apply_confirmation(
    installment: Installment,
    settlement: Settlement,
    now: datetime,
    verified_by: Optional[str] = None,
    reported_amount_cents: Optional[int] = None,
    epsilon_cents: int = 1,
) -> bool:
    """
    Confirm ``settlement`` against ``installment`` exactly once.

    Must run with the installment locked so that the paid total is current.

    Returns:
        True when the settlement was confirmed now, False when it already was

    Raises:
        ReconciliationMismatchError: failed settlement, amount drift, or the
            confirmation would overpay the installment
    """
    if settlement.state == SettlementState.CONFIRMED:
        return False

    if settlement.state == SettlementState.FAILED:
        raise ReconciliationMismatchError(
            f"Payment reported for settlement {settlement.id} which is failed"
            f" ({settlement.failure_reason or 'no reason'})"
        )

    if reported_amount_cents is not None and abs(reported_amount_cents - settlement.amount_cents) > epsilon_cents:
        raise ReconciliationMismatchError(
            f"Gateway reported {reported_amount_cents} cents, expected {settlement.amount_cents}"
        )

    if installment.paid_cents + settlement.amount_cents > installment.amount_cents:
        raise ReconciliationMismatchError(
            f"Confirming {settlement.amount_cents} cents would overpay installment {installment.id}"
            f" ({installment.paid_cents} of {installment.amount_cents} already paid)"
        )

    return settlement.confirm(now, verified_by=verified_by)
