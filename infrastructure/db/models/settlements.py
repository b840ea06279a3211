from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, relationship
from domain.entities import Settlement, SettlementMethod, SettlementState, payer_from_ref
from infrastructure.db.models.base import Base, JSONType, make_json_serializable

if TYPE_CHECKING:
    from infrastructure.db.models.installments import InstallmentModel


def _json(value: Optional[dict]) -> Optional[dict]:
    return make_json_serializable(value) if value is not None else None


class SettlementModel(Base):
    __tablename__ = "settlement"

    id: Mapped[str] = Column(String(36), primary_key=True)
    installment_id: Mapped[str] = Column(String(36), ForeignKey("installment.id"), nullable=False, index=True)
    amount_cents: Mapped[int] = Column(Integer, nullable=False)
    requested_at: Mapped[datetime] = Column(DateTime, nullable=False)
    method: Mapped[str] = Column(String(16), nullable=False)
    reference: Mapped[Optional[str]] = Column(String(32), nullable=True, unique=True, index=True)
    gateway_transaction_id: Mapped[Optional[str]] = Column(String(64), nullable=True, index=True)
    payment_method_id: Mapped[Optional[int]] = Column(Integer, nullable=True)
    state: Mapped[str] = Column(String(16), nullable=False)
    confirmed: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    verified_by: Mapped[Optional[str]] = Column(String(64), nullable=True)
    payer_kind: Mapped[str] = Column(String(16), nullable=False)
    payer_id: Mapped[str] = Column(String(64), nullable=False)
    qr_image: Mapped[Optional[str]] = Column(Text, nullable=True)  # base64
    qr_expires_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    gateway_payload: Mapped[Optional[dict[str, Any]]] = Column(JSONType, nullable=True)
    callback_payload: Mapped[Optional[dict[str, Any]]] = Column(JSONType, nullable=True)
    status_payload: Mapped[Optional[dict[str, Any]]] = Column(JSONType, nullable=True)
    gateway_amount_cents: Mapped[Optional[int]] = Column(Integer, nullable=True)
    gateway_payer: Mapped[Optional[dict[str, Any]]] = Column(JSONType, nullable=True)
    failure_reason: Mapped[Optional[str]] = Column(Text, nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    installment_rel: Mapped["InstallmentModel"] = relationship(
        "InstallmentModel",
        back_populates="settlements_rel"
    )

    def to_domain(self) -> Settlement:
        return Settlement(
            id=self.id,
            installment_id=self.installment_id,
            amount_cents=self.amount_cents,
            requested_at=self.requested_at,
            method=SettlementMethod(self.method),
            payer=payer_from_ref(self.payer_kind, self.payer_id),
            reference=self.reference,
            state=SettlementState(self.state),
            confirmed=self.confirmed,
            confirmed_at=self.confirmed_at,
            verified_by=self.verified_by,
            gateway_transaction_id=self.gateway_transaction_id,
            payment_method_id=self.payment_method_id,
            qr_image=self.qr_image,
            qr_expires_at=self.qr_expires_at,
            gateway_payload=self.gateway_payload,
            callback_payload=self.callback_payload,
            status_payload=self.status_payload,
            gateway_amount_cents=self.gateway_amount_cents,
            gateway_payer=self.gateway_payer,
            failure_reason=self.failure_reason,
            notes=self.notes,
        )

    @classmethod
    def from_domain(cls, settlement: Settlement) -> "SettlementModel":
        model = cls(
            id=settlement.id,
            installment_id=settlement.installment_id,
            requested_at=settlement.requested_at,
            method=settlement.method.value,
            payer_kind=settlement.payer.kind,
            payer_id=settlement.payer.id,
        )
        model.update_from_domain(settlement)
        return model

    def update_from_domain(self, settlement: Settlement) -> None:
        """Copy the mutable part of a settlement onto this row."""
        self.amount_cents = settlement.amount_cents
        self.reference = settlement.reference
        self.gateway_transaction_id = settlement.gateway_transaction_id
        self.payment_method_id = settlement.payment_method_id
        self.state = settlement.state.value
        self.confirmed = settlement.confirmed
        self.confirmed_at = settlement.confirmed_at
        self.verified_by = settlement.verified_by
        self.qr_image = settlement.qr_image
        self.qr_expires_at = settlement.qr_expires_at
        self.gateway_payload = _json(settlement.gateway_payload)
        self.callback_payload = _json(settlement.callback_payload)
        self.status_payload = _json(settlement.status_payload)
        self.gateway_amount_cents = settlement.gateway_amount_cents
        self.gateway_payer = _json(settlement.gateway_payer)
        self.failure_reason = settlement.failure_reason
        self.notes = settlement.notes
