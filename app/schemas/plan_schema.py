from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel

from application.service.ledger_query import InstallmentView, PlanView
from domain.entities import Agreement, PayerIdentity, Settlement, payer_from_ref


class PayerIn(BaseModel):
    kind: Literal["student", "teacher", "admin"]
    id: str

    def to_identity(self) -> PayerIdentity:
        return payer_from_ref(self.kind, self.id)


class AgreementIn(BaseModel):
    id: str
    name: str
    percent: Decimal
    active: bool = True
    valid_from: Optional[date] = None
    valid_until: Optional[date] = None

    def to_domain(self) -> Agreement:
        return Agreement(
            id=self.id,
            name=self.name,
            percent=self.percent,
            active=self.active,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
        )


class PlanCreate(BaseModel):
    enrollment_id: str
    payer: PayerIn
    program_name: str
    program_cost_cents: int
    installment_count: int
    discount_percent: Optional[Decimal] = None
    agreement_percent: Optional[Decimal] = None
    # Used only when agreement_percent is absent; the first applicable one wins
    agreements: Optional[List[AgreementIn]] = None
    include_upfront_deposit: bool = False
    installment_amounts_cents: Optional[List[int]] = None
    replace_existing: bool = False


class SettlementResponse(BaseModel):
    id: str
    installment_id: str
    amount_cents: int
    method: str
    state: str
    reference: Optional[str] = None
    confirmed: bool
    requested_at: datetime
    confirmed_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    qr_expires_at: Optional[datetime] = None
    gateway_amount_cents: Optional[int] = None
    failure_reason: Optional[str] = None
    payer: str

    @classmethod
    def from_domain(cls, settlement: Settlement) -> "SettlementResponse":
        return cls(
            id=settlement.id,
            installment_id=settlement.installment_id,
            amount_cents=settlement.amount_cents,
            method=settlement.method.value,
            state=settlement.state.value,
            reference=settlement.reference,
            confirmed=settlement.confirmed,
            requested_at=settlement.requested_at,
            confirmed_at=settlement.confirmed_at,
            verified_by=settlement.verified_by,
            gateway_transaction_id=settlement.gateway_transaction_id,
            qr_expires_at=settlement.qr_expires_at,
            gateway_amount_cents=settlement.gateway_amount_cents,
            failure_reason=settlement.failure_reason,
            payer=settlement.payer.ref,
        )


class InstallmentResponse(BaseModel):
    id: str
    plan_id: str
    sequence: int
    start_date: date
    due_date: date
    amount_cents: int
    is_upfront_deposit: bool
    paid_cents: int
    remaining_cents: int
    status: str
    settlements: List[SettlementResponse]

    @classmethod
    def from_view(cls, view: InstallmentView) -> "InstallmentResponse":
        installment = view.installment
        return cls(
            id=installment.id,
            plan_id=installment.plan_id,
            sequence=installment.sequence,
            start_date=installment.start_date,
            due_date=installment.due_date,
            amount_cents=installment.amount_cents,
            is_upfront_deposit=installment.is_upfront_deposit,
            paid_cents=view.balance["paid_cents"],
            remaining_cents=view.balance["remaining_cents"],
            status=view.balance["status"].value,
            settlements=[SettlementResponse.from_domain(s) for s in installment.settlements],
        )


class PlanResponse(BaseModel):
    id: str
    enrollment_id: str
    payer: str
    program_name: str
    program_cost_cents: int
    discount_percent: Decimal
    agreement_percent: Decimal
    total_cents: int
    paid_cents: int
    remaining_cents: int
    percent_paid: float
    is_complete: bool
    has_upfront_deposit: bool
    created_at: datetime
    installments: List[InstallmentResponse]

    @classmethod
    def from_view(cls, view: PlanView) -> "PlanResponse":
        plan = view.plan
        return cls(
            id=plan.id,
            enrollment_id=plan.enrollment_id,
            payer=plan.payer.ref,
            program_name=plan.program_name,
            program_cost_cents=plan.program_cost_cents,
            discount_percent=plan.discount_percent,
            agreement_percent=plan.agreement_percent,
            total_cents=plan.total_cents,
            paid_cents=view.balance["paid_cents"],
            remaining_cents=view.balance["remaining_cents"],
            percent_paid=view.balance["percent_paid"],
            is_complete=view.balance["is_complete"],
            has_upfront_deposit=plan.has_upfront_deposit,
            created_at=plan.created_at,
            installments=[InstallmentResponse.from_view(i) for i in view.installments],
        )
