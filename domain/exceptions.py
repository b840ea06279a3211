"""
Error taxonomy for plan generation, settlement and gateway integration.

Every error carries a stable ``kind`` so callers can surface a machine-readable
reason without exposing raw exception text.
"""
from typing import Optional


class SettlementDomainError(Exception):
    """Base class for all errors raised by the settlement core."""

    kind = "settlement_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidPlanError(SettlementDomainError):
    """Plan generation input violates an invariant (cost, count, sums, percentages)."""
    kind = "invalid_plan"


class PlanAlreadyExistsError(SettlementDomainError):
    kind = "plan_already_exists"


class PlanLockedError(SettlementDomainError):
    """The plan has settlements and can no longer be changed or deleted."""
    kind = "plan_locked"


class AlreadyPaidError(SettlementDomainError):
    """Settlement attempted against an installment with no remaining balance."""
    kind = "already_paid"


class InsufficientRemainingError(SettlementDomainError):
    """Settlement amount is larger than what remains on the installment."""
    kind = "insufficient_remaining"


class InvalidSettlementError(SettlementDomainError):
    kind = "invalid_settlement"


class SettlementInProgressError(SettlementDomainError):
    """Another QR request for the same installment has not finished yet."""
    kind = "settlement_in_progress"


class SettlementStateError(SettlementDomainError):
    """Transition the settlement's current state or method does not allow."""
    kind = "invalid_settlement_state"


class ReconciliationMismatchError(SettlementDomainError):
    """Gateway data disagrees with the stored settlement; confirmation is withheld."""
    kind = "reconciliation_mismatch"


class PlanNotFoundError(SettlementDomainError):
    kind = "plan_not_found"


class InstallmentNotFoundError(SettlementDomainError):
    kind = "installment_not_found"


class SettlementNotFoundError(SettlementDomainError):
    kind = "settlement_not_found"


class GatewayError(SettlementDomainError):
    """Base class for errors talking to the QR gateway."""
    kind = "gateway_error"


class GatewayAuthError(GatewayError):
    """Login against the gateway failed or returned no access token."""
    kind = "gateway_auth_error"


class GatewayRequestError(GatewayError):
    """QR generation or transaction query failed at transport or application level."""

    kind = "gateway_request_error"

    def __init__(self, message: str = "", status_code: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


class GatewayUnavailableError(GatewayError):
    """Caller-facing error when the gateway cannot be used right now (e.g. auth down)."""
    kind = "gateway_unavailable"
