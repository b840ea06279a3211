from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.schemas.plan_schema import PayerIn, SettlementResponse
from domain.entities import Payer


class QrRequest(BaseModel):
    payer: PayerIn
    full_name: str
    document_id: str
    phone: Optional[str] = None
    email: Optional[str] = None

    def to_payer(self) -> Payer:
        return Payer(
            identity=self.payer.to_identity(),
            full_name=self.full_name,
            document_id=self.document_id,
            phone=self.phone,
            email=self.email,
        )


class QrResponse(BaseModel):
    settlement_id: str
    reference: Optional[str] = None
    amount_cents: int
    qr_base64: Optional[str] = None
    qr_expires_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    reused: bool


class ManualSettlementCreate(BaseModel):
    payer: PayerIn
    amount_cents: int
    notes: Optional[str] = None


class ApproveRequest(BaseModel):
    verifier_id: str
    notes: Optional[str] = None


class RejectRequest(BaseModel):
    verifier_id: str
    reason: str


class ConfirmationResponse(BaseModel):
    settlement: SettlementResponse
    confirmed_now: bool


class PollResponse(BaseModel):
    settlement: SettlementResponse
    payment_status: Optional[int] = None
    payment_status_description: Optional[str] = None
    confirmed_now: bool
