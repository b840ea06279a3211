from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from domain.entities import Installment, PaymentPlan
from domain.exceptions import InstallmentNotFoundError, PlanNotFoundError
from domain.interfaces import LedgerRepository
from domain.services import InstallmentBalance, PlanBalance, summarize_installment, summarize_plan


@dataclass
class InstallmentView:
    installment: Installment
    balance: InstallmentBalance


@dataclass
class PlanView:
    plan: PaymentPlan
    balance: PlanBalance
    installments: list[InstallmentView]


class LedgerQueryService:
    """Read-only lookups with derived balances."""

    def __init__(self, ledger_repo: LedgerRepository, clock: Optional[Callable[[], datetime]] = None):
        self.ledger_repo = ledger_repo
        self._clock = clock or datetime.now

    async def get_plan(self, plan_id: str) -> PlanView:
        plan = await self.ledger_repo.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        now = self._clock()
        return PlanView(
            plan=plan,
            balance=summarize_plan(plan, now),
            installments=[InstallmentView(i, summarize_installment(i, now)) for i in plan.installments],
        )

    async def get_installment(self, installment_id: str) -> InstallmentView:
        installment = await self.ledger_repo.get_installment(installment_id)
        if installment is None:
            raise InstallmentNotFoundError(f"Installment {installment_id} not found")
        return InstallmentView(installment, summarize_installment(installment, self._clock()))
