from datetime import date, datetime
from typing import TYPE_CHECKING, Optional
from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, relationship
from domain.entities import Installment
from infrastructure.db.models.base import Base

if TYPE_CHECKING:
    from infrastructure.db.models.plans import PlanModel
    from infrastructure.db.models.settlements import SettlementModel


class InstallmentModel(Base):
    __tablename__ = "installment"

    id: Mapped[str] = Column(String(36), primary_key=True)
    plan_id: Mapped[str] = Column(String(36), ForeignKey("payment_plan.id"), nullable=False, index=True)
    sequence: Mapped[int] = Column(Integer, nullable=False)
    start_date: Mapped[date] = Column(Date, nullable=False)
    due_date: Mapped[date] = Column(Date, nullable=False)
    amount_cents: Mapped[int] = Column(Integer, nullable=False)
    is_upfront_deposit: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = Column(DateTime, nullable=False)

    # Relationship back to plan (many-to-one)
    plan_rel: Mapped["PlanModel"] = relationship(
        "PlanModel",
        back_populates="installments_rel"
    )

    # Settlements are an audit trail; they go away only with the whole plan
    settlements_rel: Mapped[list["SettlementModel"]] = relationship(
        "SettlementModel",
        back_populates="installment_rel",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SettlementModel.requested_at",
    )

    def to_domain(self, program_name: Optional[str] = None) -> Installment:
        """Convert database model to domain entity (settlements must be loaded)."""
        return Installment(
            id=self.id,
            plan_id=self.plan_id,
            sequence=self.sequence,
            start_date=self.start_date,
            due_date=self.due_date,
            amount_cents=self.amount_cents,
            created_at=self.created_at,
            is_upfront_deposit=self.is_upfront_deposit,
            program_name=program_name,
            settlements=[s.to_domain() for s in self.settlements_rel],
        )

    @classmethod
    def from_domain(cls, installment: Installment) -> "InstallmentModel":
        """Convert domain Installment entity to database model."""
        return cls(
            id=installment.id,
            plan_id=installment.plan_id,
            sequence=installment.sequence,
            start_date=installment.start_date,
            due_date=installment.due_date,
            amount_cents=installment.amount_cents,
            is_upfront_deposit=installment.is_upfront_deposit,
            created_at=installment.created_at,
        )
