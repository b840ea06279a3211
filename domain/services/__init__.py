from .plan_generator import PlanGenerator, compute_final_amount_cents, select_agreement_percent, split_evenly
from .ledger import InstallmentBalance, PlanBalance, summarize_installment, summarize_plan
from .settlement_rules import apply_confirmation, amount_to_cents, cents_to_amount, is_approved_status

__all__ = [
    "PlanGenerator", "compute_final_amount_cents", "select_agreement_percent", "split_evenly",
    "InstallmentBalance", "PlanBalance", "summarize_installment", "summarize_plan",
    "apply_confirmation", "amount_to_cents", "cents_to_amount", "is_approved_status",
]
