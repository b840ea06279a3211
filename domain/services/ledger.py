"""
Ledger Module

Read-side balances for installments and plans. Everything here is derived
from confirmed settlements; nothing is stored.
"""
from datetime import datetime
from typing import Optional, TypedDict

from domain.entities import Installment, InstallmentStatus, PaymentPlan


class InstallmentBalance(TypedDict):
    paid_cents: int
    remaining_cents: int
    status: InstallmentStatus
    is_paid: bool
    is_overdue: bool
    settlement_count: int


class PlanBalance(TypedDict):
    total_cents: int
    paid_cents: int
    remaining_cents: int
    paid_installments: int
    overdue_installments: int
    is_complete: bool
    percent_paid: float


def summarize_installment(installment: Installment, now: Optional[datetime] = None) -> InstallmentBalance:
    now = now or datetime.now()
    status = installment.status(now)
    return InstallmentBalance(
        paid_cents=installment.paid_cents,
        remaining_cents=max(installment.remaining_cents, 0),
        status=status,
        is_paid=status == InstallmentStatus.PAID,
        is_overdue=status == InstallmentStatus.OVERDUE,
        settlement_count=len(installment.settlements),
    )


def summarize_plan(plan: PaymentPlan, now: Optional[datetime] = None) -> PlanBalance:
    now = now or datetime.now()
    statuses = [i.status(now) for i in plan.installments]
    paid = plan.paid_cents
    percent_paid = round(paid * 100 / plan.total_cents, 2) if plan.total_cents > 0 else 100.0
    return PlanBalance(
        total_cents=plan.total_cents,
        paid_cents=paid,
        remaining_cents=plan.remaining_cents,
        paid_installments=statuses.count(InstallmentStatus.PAID),
        overdue_installments=statuses.count(InstallmentStatus.OVERDUE),
        is_complete=plan.is_complete,
        percent_paid=percent_paid,
    )
