from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from sqlalchemy import Boolean, Column, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, relationship
from domain.entities import PaymentPlan, payer_from_ref
from infrastructure.db.models.base import Base

if TYPE_CHECKING:
    from infrastructure.db.models.installments import InstallmentModel


class PlanModel(Base):
    __tablename__ = "payment_plan"

    id: Mapped[str] = Column(String(36), primary_key=True)
    # One plan per enrollment
    enrollment_id: Mapped[str] = Column(String(64), nullable=False, unique=True, index=True)
    payer_kind: Mapped[str] = Column(String(16), nullable=False)
    payer_id: Mapped[str] = Column(String(64), nullable=False)
    program_name: Mapped[str] = Column(String(255), nullable=False)
    program_cost_cents: Mapped[int] = Column(Integer, nullable=False)
    discount_percent: Mapped[Decimal] = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    agreement_percent: Mapped[Decimal] = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    total_cents: Mapped[int] = Column(Integer, nullable=False)
    installments_count: Mapped[int] = Column(Integer, nullable=False)
    has_upfront_deposit: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = Column(DateTime, nullable=False)

    # Relationship to installments (one-to-many)
    installments_rel: Mapped[list["InstallmentModel"]] = relationship(
        "InstallmentModel",
        back_populates="plan_rel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="InstallmentModel.sequence",
    )

    def to_domain(self) -> PaymentPlan:
        """Convert database model (installments and settlements loaded) to domain entity."""
        return PaymentPlan(
            id=self.id,
            enrollment_id=self.enrollment_id,
            payer=payer_from_ref(self.payer_kind, self.payer_id),
            program_name=self.program_name,
            program_cost_cents=self.program_cost_cents,
            total_cents=self.total_cents,
            installments_count=self.installments_count,
            created_at=self.created_at,
            discount_percent=Decimal(self.discount_percent or 0),
            agreement_percent=Decimal(self.agreement_percent or 0),
            has_upfront_deposit=self.has_upfront_deposit,
            installments=[m.to_domain(program_name=self.program_name) for m in self.installments_rel],
        )

    @classmethod
    def from_domain(cls, plan: PaymentPlan) -> "PlanModel":
        """
        Convert domain PaymentPlan to database model.

        Installments are not set here; the repository attaches them once the
        plan is in the session.
        """
        return cls(
            id=plan.id,
            enrollment_id=plan.enrollment_id,
            payer_kind=plan.payer.kind,
            payer_id=plan.payer.id,
            program_name=plan.program_name,
            program_cost_cents=plan.program_cost_cents,
            discount_percent=plan.discount_percent,
            agreement_percent=plan.agreement_percent,
            total_cents=plan.total_cents,
            installments_count=plan.installments_count,
            has_upfront_deposit=plan.has_upfront_deposit,
            created_at=plan.created_at,
        )
