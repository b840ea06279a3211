"""
Plan Generator Module

Turns an enrollment and its commercial terms (program cost, discount,
agreement percentage, installment count, optional up-front deposit) into a
PaymentPlan whose installments add up exactly to the final amount.
"""
import calendar
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from domain.config import PlanConfig, get_plan_config
from domain.entities import Agreement, Enrollment, PaymentPlan
from domain.exceptions import InvalidPlanError

Percent = Union[Decimal, int, float, str]

# (start_date, due_date, amount_cents, is_upfront_deposit)
ScheduleRow = tuple[date, date, int, bool]

HUNDRED = Decimal("100")


def to_percent(value: Optional[Percent]) -> Decimal:
    if value is None:
        return Decimal("0")
    percent = value if isinstance(value, Decimal) else Decimal(str(value))
    if percent < 0 or percent > HUNDRED:
        raise InvalidPlanError(f"Percentage must be between 0 and 100, got {value}")
    return percent


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_final_amount_cents(
    program_cost_cents: int,
    discount_percent: Optional[Percent] = None,
    agreement_percent: Optional[Percent] = None,
) -> int:
    """
    Apply the discount and the agreement percentage to the program cost.

    Both percentages are taken over the original cost (not compounded). The
    result is rounded half-up to the cent and never goes below zero.
    """
    if program_cost_cents <= 0:
        raise InvalidPlanError(f"Program cost must be positive, got {program_cost_cents}")
    cost = Decimal(program_cost_cents)
    discount = cost * to_percent(discount_percent) / HUNDRED
    agreement = cost * to_percent(agreement_percent) / HUNDRED
    return max(round_half_up(cost - discount - agreement), 0)


def select_agreement_percent(agreements: Iterable[Agreement], on_date: Optional[date] = None) -> Decimal:
    """Percentage of the first applicable agreement; first match wins, not best match."""
    on_date = on_date or date.today()
    for agreement in agreements:
        if agreement.applies_on(on_date):
            return agreement.percent
    return Decimal("0")


def split_evenly(amount_cents: int, count: int) -> list[int]:
    # Last installment absorbs any remainder
    base_amount = amount_cents // count
    remainder = amount_cents % count
    return [base_amount + remainder if i == count - 1 else base_amount for i in range(count)]


def shift_month(day: date, offset: int) -> tuple[int, int]:
    month_index = day.year * 12 + (day.month - 1) + offset
    return month_index // 12, month_index % 12 + 1


def month_bounds(day: date, offset: int) -> tuple[date, date]:
    """First and last day of the month ``offset`` months after ``day``."""
    year, month = shift_month(day, offset)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


class PlanGenerator:
    def __init__(self, config: Optional[PlanConfig] = None):
        self.config = config or get_plan_config()

    def validate_count(self, installment_count: int) -> None:
        if installment_count < self.config.min_installments:
            raise InvalidPlanError(
                f"Installment count must be at least {self.config.min_installments}, got {installment_count}"
            )
        if installment_count > self.config.max_installments:
            raise InvalidPlanError(
                f"Installment count must be at most {self.config.max_installments}, got {installment_count}"
            )

    def upfront_amount_cents(self, final_cents: int) -> int:
        return round_half_up(Decimal(final_cents) * self.config.upfront_ratio)

    def build_schedule(
        self,
        final_cents: int,
        installment_count: int,
        include_upfront_deposit: bool = False,
        installment_amounts_cents: Optional[list[int]] = None,
        today: Optional[date] = None,
    ) -> list[ScheduleRow]:
        """Dates and amounts of every installment, deposit first when requested."""
        self.validate_count(installment_count)
        today = today or date.today()

        dates: list[tuple[date, date, bool]] = []
        if include_upfront_deposit:
            dates.append((today, today + timedelta(days=self.config.upfront_due_days), True))
            offsets = range(1, installment_count + 1)
        else:
            # Without a deposit the first installment falls in the current month
            offsets = range(0, installment_count)
        for offset in offsets:
            start_date, due_date = month_bounds(today, offset)
            dates.append((start_date, due_date, False))

        if installment_amounts_cents is not None:
            amounts = self._check_explicit_amounts(final_cents, installment_amounts_cents, len(dates))
        elif include_upfront_deposit:
            upfront = self.upfront_amount_cents(final_cents)
            amounts = [upfront] + split_evenly(final_cents - upfront, installment_count)
        else:
            amounts = split_evenly(final_cents, installment_count)

        return [(start, due, amount, is_deposit) for (start, due, is_deposit), amount in zip(dates, amounts)]

    def _check_explicit_amounts(self, final_cents: int, amounts: list[int], expected_len: int) -> list[int]:
        if len(amounts) != expected_len:
            raise InvalidPlanError(f"Expected {expected_len} installment amounts, got {len(amounts)}")
        if any(a < 0 for a in amounts):
            raise InvalidPlanError("Installment amounts cannot be negative")
        total = sum(amounts)
        if abs(total - final_cents) > self.config.epsilon_cents:
            raise InvalidPlanError(
                f"Installment amounts add up to {total} cents, expected {final_cents}"
            )
        return list(amounts)

    def generate(
        self,
        enrollment: Enrollment,
        program_cost_cents: int,
        installment_count: int,
        discount_percent: Optional[Percent] = None,
        agreement_percent: Optional[Percent] = None,
        include_upfront_deposit: bool = False,
        installment_amounts_cents: Optional[list[int]] = None,
        today: Optional[date] = None,
    ) -> PaymentPlan:
        """
        Compute a full payment plan. Pure: nothing is persisted here.

        Raises:
            InvalidPlanError: invalid count, cost, percentage or explicit amounts
        """
        self.validate_count(installment_count)
        discount = to_percent(discount_percent)
        agreement = to_percent(agreement_percent)
        final_cents = compute_final_amount_cents(program_cost_cents, discount, agreement)

        schedule = self.build_schedule(
            final_cents,
            installment_count,
            include_upfront_deposit=include_upfront_deposit,
            installment_amounts_cents=installment_amounts_cents,
            today=today,
        )
        return PaymentPlan.create(
            enrollment_id=enrollment.id,
            payer=enrollment.payer,
            program_name=enrollment.program_name,
            program_cost_cents=program_cost_cents,
            total_cents=final_cents,
            schedule=schedule,
            installments_count=installment_count,
            discount_percent=discount,
            agreement_percent=agreement,
            has_upfront_deposit=include_upfront_deposit,
            epsilon_cents=self.config.epsilon_cents,
            created_at=datetime.now(),
        )
