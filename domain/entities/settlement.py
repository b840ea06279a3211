from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from domain.exceptions import SettlementStateError
from .gateway import GatewayTransactionStatus, QrCharge
from .payer import PayerIdentity


class SettlementState(Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SettlementMethod(Enum):
    MANUAL = "manual"
    QR = "qr"


@dataclass
class Settlement:
    id: str
    installment_id: str
    amount_cents: int
    requested_at: datetime
    method: SettlementMethod
    payer: PayerIdentity
    reference: Optional[str] = None
    state: SettlementState = SettlementState.REQUESTED
    confirmed: bool = False
    confirmed_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    payment_method_id: Optional[int] = None
    qr_image: Optional[str] = None
    qr_expires_at: Optional[datetime] = None
    gateway_payload: Optional[dict[str, Any]] = None
    callback_payload: Optional[dict[str, Any]] = None
    status_payload: Optional[dict[str, Any]] = None
    gateway_amount_cents: Optional[int] = None
    gateway_payer: Optional[dict[str, Any]] = None
    failure_reason: Optional[str] = None
    notes: Optional[str] = None

    @staticmethod
    def request_qr(installment_id: str, amount_cents: int, reference: str, payer: PayerIdentity,
                   requested_at: Optional[datetime] = None) -> 'Settlement':
        return Settlement(
            id=str(uuid4()),
            installment_id=installment_id,
            amount_cents=amount_cents,
            requested_at=requested_at or datetime.now(),
            method=SettlementMethod.QR,
            payer=payer,
            reference=reference,
        )

    @staticmethod
    def register_manual(installment_id: str, amount_cents: int, reference: str, payer: PayerIdentity,
                        notes: Optional[str] = None, requested_at: Optional[datetime] = None) -> 'Settlement':
        return Settlement(
            id=str(uuid4()),
            installment_id=installment_id,
            amount_cents=amount_cents,
            requested_at=requested_at or datetime.now(),
            method=SettlementMethod.MANUAL,
            payer=payer,
            reference=reference,
            notes=notes,
        )

    @property
    def is_requested(self) -> bool:
        return self.state == SettlementState.REQUESTED

    @property
    def has_qr(self) -> bool:
        return bool(self.qr_image)

    def qr_expired(self, now: datetime) -> bool:
        return self.qr_expires_at is not None and self.qr_expires_at <= now

    def is_in_flight(self, now: datetime, window: timedelta) -> bool:
        """QR requested, gateway answer not stored yet, still inside the in-flight window."""
        return (
            self.is_requested
            and self.method == SettlementMethod.QR
            and not self.has_qr
            and now - self.requested_at < window
        )

    def is_active(self, now: datetime, window: timedelta) -> bool:
        """A payable QR (issued and unexpired) or one still being issued."""
        if not self.is_requested or self.method != SettlementMethod.QR:
            return False
        if self.has_qr:
            return not self.qr_expired(now)
        return self.is_in_flight(now, window)

    def attach_qr(self, charge: QrCharge, payment_method_id: int) -> 'Settlement':
        self.qr_image = charge.qr_base64
        self.gateway_transaction_id = charge.transaction_id or self.gateway_transaction_id
        self.qr_expires_at = charge.expires_at
        self.payment_method_id = payment_method_id
        self.gateway_payload = charge.raw
        return self

    def record_gateway_status(self, status: GatewayTransactionStatus) -> 'Settlement':
        """Keep whatever the gateway reports, independent of confirmation."""
        self.status_payload = status.raw
        if status.amount_cents is not None:
            self.gateway_amount_cents = status.amount_cents
        metadata = {k: v for k, v in status.payer_metadata().items() if v is not None}
        if metadata:
            self.gateway_payer = metadata
        if status.transaction_id and not self.gateway_transaction_id:
            self.gateway_transaction_id = status.transaction_id
        return self

    def confirm(self, now: datetime, verified_by: Optional[str] = None) -> bool:
        """
        Mark the settlement as paid.

        Returns False when it was already confirmed (confirmed_at is left untouched).
        """
        if self.state == SettlementState.CONFIRMED:
            return False
        if self.state == SettlementState.FAILED:
            raise SettlementStateError(f"Settlement {self.id} is failed and cannot be confirmed")
        self.state = SettlementState.CONFIRMED
        self.confirmed = True
        self.confirmed_at = now
        if verified_by:
            self.verified_by = verified_by
        return True

    def fail(self, reason: str, verified_by: Optional[str] = None) -> 'Settlement':
        if self.state == SettlementState.CONFIRMED:
            raise SettlementStateError(f"Settlement {self.id} is confirmed and cannot fail")
        if self.state == SettlementState.FAILED:
            raise SettlementStateError(f"Settlement {self.id} already failed")
        self.state = SettlementState.FAILED
        self.failure_reason = reason
        if verified_by:
            self.verified_by = verified_by
        return self
