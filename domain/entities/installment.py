from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional
from uuid import uuid4

from .settlement import Settlement, SettlementState


class InstallmentStatus(Enum):
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class Installment:
    id: str
    plan_id: str
    sequence: int
    start_date: date
    due_date: date
    amount_cents: int
    created_at: datetime
    is_upfront_deposit: bool = False
    program_name: Optional[str] = None
    settlements: list[Settlement] = field(default_factory=list)

    @staticmethod
    def create(plan_id: str, sequence: int, start_date: date, due_date: date, amount_cents: int,
               is_upfront_deposit: bool = False, program_name: Optional[str] = None) -> 'Installment':
        return Installment(
            id=str(uuid4()),
            plan_id=plan_id,
            sequence=sequence,
            start_date=start_date,
            due_date=due_date,
            amount_cents=amount_cents,
            created_at=datetime.now(),
            is_upfront_deposit=is_upfront_deposit,
            program_name=program_name,
        )

    @property
    def confirmed_settlements(self) -> list[Settlement]:
        return [s for s in self.settlements if s.state == SettlementState.CONFIRMED]

    @property
    def paid_cents(self) -> int:
        # Only confirmed settlements count towards the balance
        return sum(s.amount_cents for s in self.confirmed_settlements)

    @property
    def remaining_cents(self) -> int:
        return self.amount_cents - self.paid_cents

    @property
    def is_paid(self) -> bool:
        return self.remaining_cents <= 0

    def is_overdue(self, now: datetime) -> bool:
        return not self.is_paid and now.date() > self.due_date

    def status(self, now: Optional[datetime] = None) -> InstallmentStatus:
        now = now or datetime.now()
        if self.is_paid:
            return InstallmentStatus.PAID
        if self.is_overdue(now):
            return InstallmentStatus.OVERDUE
        if self.paid_cents > 0:
            return InstallmentStatus.PARTIALLY_PAID
        return InstallmentStatus.PENDING

    def find_settlement(self, settlement_id: str) -> Optional[Settlement]:
        return next((s for s in self.settlements if s.id == settlement_id), None)

    def active_settlement(self, now: datetime, in_flight: timedelta) -> Optional[Settlement]:
        """Most recent settlement that still blocks a new QR request, if any."""
        active = [s for s in self.settlements if s.is_active(now, in_flight)]
        if not active:
            return None
        return max(active, key=lambda s: s.requested_at)

    def add_settlement(self, settlement: Settlement) -> Settlement:
        self.settlements.append(settlement)
        return settlement
