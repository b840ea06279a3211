#!/usr/bin/env python3
"""
Payment Plan Simulator

Prints the installment schedule that would be generated for the given terms,
without touching the database.

Usage:
    python scripts/simulate_plan.py 1500000 6
    python scripts/simulate_plan.py 1000000 3 --discount 10 --deposit
    python scripts/simulate_plan.py 1000000 4 --agreement 15 --start 2025-02-10 --json

Arguments:
    cost_cents: Program cost in cents
    installments: Number of monthly installments
    --discount / --agreement: Percentages applied over the program cost
    --deposit: Add a 20% up-front deposit due in 15 days
    --start: Simulated enrollment date (YYYY-MM-DD, default today)
    --json: Output raw JSON instead of formatted text
"""
import argparse
import json
import os
import sys
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from domain.entities import Enrollment, Student
from domain.exceptions import InvalidPlanError
from domain.services import PlanGenerator


def format_plan(plan) -> str:
    lines = []
    lines.append("=" * 60)
    lines.append("PAYMENT PLAN")
    lines.append("=" * 60)
    lines.append(f"\nProgram cost: {plan.program_cost_cents/100:,.2f}")
    lines.append(f"Discount: {plan.discount_percent}%  Agreement: {plan.agreement_percent}%")
    lines.append(f"Final amount: {plan.total_cents/100:,.2f}")
    lines.append("\n--- Schedule ---")
    for inst in plan.installments:
        label = "Deposit" if inst.is_upfront_deposit else f"Cuota {inst.sequence}"
        lines.append(
            f"{label:<10} {inst.start_date.isoformat()} -> {inst.due_date.isoformat()}  {inst.amount_cents/100:>12,.2f}"
        )
    lines.append("\n" + "=" * 60)
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Simulate a payment plan")
    parser.add_argument("cost_cents", type=int, help="Program cost in cents")
    parser.add_argument("installments", type=int, help="Number of monthly installments")
    parser.add_argument("--discount", default=None, help="Discount percentage")
    parser.add_argument("--agreement", default=None, help="Agreement (convenio) percentage")
    parser.add_argument("--deposit", action="store_true", help="Include a 20%% up-front deposit")
    parser.add_argument("--start", default=None, help="Enrollment date YYYY-MM-DD")
    parser.add_argument("--json", action="store_true", help="Output raw JSON")

    args = parser.parse_args()

    try:
        today = datetime.strptime(args.start, "%Y-%m-%d").date() if args.start else date.today()
        discount = Decimal(args.discount) if args.discount is not None else None
        agreement = Decimal(args.agreement) if args.agreement is not None else None
    except (ValueError, InvalidOperation) as e:
        print(f"Error: {e}")
        sys.exit(1)

    enrollment = Enrollment(id="simulation", payer=Student(id="0"), program_name="Simulation")
    try:
        plan = PlanGenerator().generate(
            enrollment,
            args.cost_cents,
            args.installments,
            discount_percent=discount,
            agreement_percent=agreement,
            include_upfront_deposit=args.deposit,
            today=today,
        )
    except InvalidPlanError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if args.json:
        output = {
            "total_cents": plan.total_cents,
            "installments": [
                {
                    "sequence": i.sequence,
                    "start_date": i.start_date.isoformat(),
                    "due_date": i.due_date.isoformat(),
                    "amount_cents": i.amount_cents,
                    "is_upfront_deposit": i.is_upfront_deposit,
                }
                for i in plan.installments
            ],
        }
        print(json.dumps(output, indent=2))
    else:
        print(format_plan(plan))


if __name__ == "__main__":
    main()
