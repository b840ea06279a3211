from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from domain.exceptions import InvalidPlanError, PlanLockedError
from .installment import Installment
from .payer import PayerIdentity


@dataclass
class PaymentPlan:
    id: str
    enrollment_id: str
    payer: PayerIdentity
    program_name: str
    program_cost_cents: int
    total_cents: int
    installments_count: int
    created_at: datetime
    discount_percent: Decimal = Decimal("0")
    agreement_percent: Decimal = Decimal("0")
    has_upfront_deposit: bool = False
    installments: list[Installment] = field(default_factory=list)

    @staticmethod
    def create(enrollment_id: str, payer: PayerIdentity, program_name: str, program_cost_cents: int,
               total_cents: int, schedule: list[tuple], installments_count: Optional[int] = None,
               discount_percent: Decimal = Decimal("0"), agreement_percent: Decimal = Decimal("0"),
               has_upfront_deposit: bool = False, epsilon_cents: int = 1,
               created_at: Optional[datetime] = None) -> 'PaymentPlan':
        """
        Build a plan from an already computed schedule.

        ``schedule`` is a list of ``(start_date, due_date, amount_cents, is_upfront_deposit)``
        tuples in payment order. Raises InvalidPlanError when the amounts do not add up
        to ``total_cents``.
        """
        plan = PaymentPlan(
            id=str(uuid4()),
            enrollment_id=enrollment_id,
            payer=payer,
            program_name=program_name,
            program_cost_cents=program_cost_cents,
            total_cents=total_cents,
            installments_count=installments_count if installments_count is not None else len(schedule),
            created_at=created_at or datetime.now(),
            discount_percent=discount_percent,
            agreement_percent=agreement_percent,
            has_upfront_deposit=has_upfront_deposit,
        )
        plan.installments = [
            Installment.create(
                plan_id=plan.id,
                sequence=i,
                start_date=start_date,
                due_date=due_date,
                amount_cents=amount_cents,
                is_upfront_deposit=is_deposit,
                program_name=program_name,
            )
            for i, (start_date, due_date, amount_cents, is_deposit) in enumerate(schedule, start=1)
        ]
        plan.check_totals(epsilon_cents)
        return plan

    def check_totals(self, epsilon_cents: int = 1) -> None:
        scheduled = sum(i.amount_cents for i in self.installments)
        if abs(scheduled - self.total_cents) > epsilon_cents:
            raise InvalidPlanError(
                f"Installments add up to {scheduled} cents but plan total is {self.total_cents}"
            )

    @property
    def has_settlements(self) -> bool:
        return any(i.settlements for i in self.installments)

    def ensure_mutable(self) -> None:
        if self.has_settlements:
            raise PlanLockedError(f"Plan {self.id} has settlements and cannot be modified")

    @property
    def paid_cents(self) -> int:
        return sum(i.paid_cents for i in self.installments)

    @property
    def remaining_cents(self) -> int:
        return sum(max(i.remaining_cents, 0) for i in self.installments)

    @property
    def is_complete(self) -> bool:
        return all(i.is_paid for i in self.installments)
