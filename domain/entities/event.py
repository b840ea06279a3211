from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .payer import PayerIdentity


class SettlementOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class SettlementEvent:
    """Event handed to the notification sink after a settlement succeeds or fails."""
    installment_id: str
    payer: PayerIdentity
    amount_cents: int
    outcome: SettlementOutcome
    program_name: Optional[str] = None
    gateway_reference: Optional[str] = None
    settlement_id: Optional[str] = None
    reason: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "installmentId": self.installment_id,
            "settlementId": self.settlement_id,
            "payerId": self.payer.id,
            "payerKind": self.payer.kind,
            "amount": float((Decimal(self.amount_cents) / 100).quantize(Decimal("0.01"))),
            "programName": self.program_name,
            "gatewayReference": self.gateway_reference,
            "outcome": self.outcome.value,
        }
        if self.reason:
            payload["reason"] = self.reason
        return payload
