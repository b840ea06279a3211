"""
Tests for payment plan generation.

Tests verify:
- Final amount applies discount and agreement over the original cost
- Installments add up exactly to the final amount (last one absorbs the remainder)
- Deposit and monthly dates
- Invalid terms are rejected
"""
from datetime import date
from decimal import Decimal

import pytest

from domain.config import PlanConfig
from domain.entities import Agreement, Enrollment, Student
from domain.exceptions import InvalidPlanError
from domain.services import PlanGenerator, compute_final_amount_cents, select_agreement_percent, split_evenly
from domain.services.plan_generator import month_bounds

TODAY = date(2025, 1, 15)


@pytest.fixture
def generator():
    return PlanGenerator(PlanConfig(
        epsilon_cents=1,
        upfront_ratio=Decimal("0.20"),
        upfront_due_days=15,
        min_installments=1,
        max_installments=12,
    ))


@pytest.fixture
def enrollment():
    return Enrollment(id="enr-1", payer=Student(id="s-1"), program_name="Maestría en Educación")


class TestFinalAmount:
    def test_no_discount(self):
        assert compute_final_amount_cents(1500000) == 1500000

    def test_discount_and_agreement_both_over_original_cost(self):
        # 10% + 15% of 1000.00, not compounded
        assert compute_final_amount_cents(100000, Decimal("10"), Decimal("15")) == 75000

    def test_rounds_half_up(self):
        # 3.33 with 50% off is 1.665
        assert compute_final_amount_cents(333, Decimal("50")) == 167

    def test_never_negative(self):
        assert compute_final_amount_cents(100000, Decimal("60"), Decimal("60")) == 0

    @pytest.mark.parametrize("cost", [0, -100])
    def test_rejects_non_positive_cost(self, cost):
        with pytest.raises(InvalidPlanError):
            compute_final_amount_cents(cost)

    @pytest.mark.parametrize("percent", [Decimal("-1"), Decimal("100.01")])
    def test_rejects_percent_out_of_range(self, percent):
        with pytest.raises(InvalidPlanError):
            compute_final_amount_cents(100000, percent)


class TestSplit:
    def test_even_split(self):
        assert split_evenly(1500000, 6) == [250000] * 6

    def test_last_installment_absorbs_remainder(self):
        assert split_evenly(100000, 3) == [33333, 33333, 33334]
        assert sum(split_evenly(100001, 7)) == 100001


class TestMonthBounds:
    def test_rolls_over_year(self):
        assert month_bounds(date(2024, 11, 20), 2) == (date(2025, 1, 1), date(2025, 1, 31))

    def test_leap_february(self):
        assert month_bounds(date(2024, 1, 31), 1) == (date(2024, 2, 1), date(2024, 2, 29))


class TestAgreementSelection:
    def test_first_applicable_wins(self):
        agreements = [
            Agreement(id="a1", name="Inactive", percent=Decimal("40"), active=False),
            Agreement(id="a2", name="Expired", percent=Decimal("30"), valid_until=date(2024, 12, 31)),
            Agreement(id="a3", name="Colegio", percent=Decimal("10")),
            Agreement(id="a4", name="Better", percent=Decimal("25")),
        ]
        assert select_agreement_percent(agreements, TODAY) == Decimal("10")

    def test_none_applicable(self):
        agreements = [Agreement(id="a1", name="Future", percent=Decimal("20"), valid_from=date(2025, 6, 1))]
        assert select_agreement_percent(agreements, TODAY) == Decimal("0")


class TestGenerate:
    def test_six_monthly_installments(self, generator, enrollment):
        plan = generator.generate(enrollment, 1500000, 6, today=TODAY)

        assert plan.total_cents == 1500000
        assert [i.amount_cents for i in plan.installments] == [250000] * 6
        assert plan.installments[0].start_date == date(2025, 1, 1)
        assert plan.installments[0].due_date == date(2025, 1, 31)
        assert plan.installments[-1].due_date == date(2025, 6, 30)
        assert not any(i.is_upfront_deposit for i in plan.installments)
        assert plan.enrollment_id == "enr-1"
        assert plan.payer == Student(id="s-1")

    def test_discount_with_upfront_deposit(self, generator, enrollment):
        plan = generator.generate(
            enrollment, 1000000, 3, discount_percent=Decimal("10"), include_upfront_deposit=True, today=TODAY
        )

        assert plan.total_cents == 900000
        assert plan.has_upfront_deposit
        assert plan.installments_count == 3
        assert [i.amount_cents for i in plan.installments] == [180000, 240000, 240000, 240000]

        deposit = plan.installments[0]
        assert deposit.is_upfront_deposit
        assert deposit.start_date == TODAY
        assert deposit.due_date == date(2025, 1, 30)
        # Monthly installments start the month after the deposit
        assert plan.installments[1].start_date == date(2025, 2, 1)
        assert plan.installments[3].due_date == date(2025, 4, 30)

    def test_sum_matches_total_with_remainder(self, generator, enrollment):
        plan = generator.generate(enrollment, 1000001, 7, include_upfront_deposit=True, today=TODAY)
        assert sum(i.amount_cents for i in plan.installments) == plan.total_cents

    def test_explicit_amounts(self, generator, enrollment):
        plan = generator.generate(
            enrollment,
            1000000,
            2,
            include_upfront_deposit=True,
            installment_amounts_cents=[200000, 500000, 300000],
            today=TODAY,
        )
        assert [i.amount_cents for i in plan.installments] == [200000, 500000, 300000]

    @pytest.mark.parametrize("amounts", [
        [200000, 500000],
        [200000, 500000, 200000],
        [-100, 500000, 500100],
    ])
    def test_explicit_amounts_rejected(self, generator, enrollment, amounts):
        with pytest.raises(InvalidPlanError):
            generator.generate(
                enrollment, 1000000, 2, include_upfront_deposit=True,
                installment_amounts_cents=amounts, today=TODAY,
            )

    @pytest.mark.parametrize("count", [0, -1, 13])
    def test_rejects_installment_count(self, generator, enrollment, count):
        with pytest.raises(InvalidPlanError):
            generator.generate(enrollment, 1000000, count, today=TODAY)

    def test_percentages_stored_on_plan(self, generator, enrollment):
        plan = generator.generate(
            enrollment, 100000, 1, discount_percent="5", agreement_percent=Decimal("10"), today=TODAY
        )
        assert plan.discount_percent == Decimal("5")
        assert plan.agreement_percent == Decimal("10")
        assert plan.total_cents == 85000
