from typing import Optional

from application.service.logs import bind_logger
from domain.exceptions import PlanNotFoundError
from domain.interfaces import LedgerRepository, LoggingPort


class DeletePlanService:
    def __init__(self, ledger_repo: LedgerRepository, logging_port: Optional[LoggingPort] = None):
        self.ledger_repo = ledger_repo
        self.logging_port = logging_port

    async def execute(self, plan_id: str, request_id: Optional[str] = None) -> None:
        """Delete a plan that has no settlements yet (PlanLockedError otherwise)."""
        log = bind_logger(self.logging_port, request_id, plan_id=plan_id, step="plan_deletion")
        plan = await self.ledger_repo.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        plan.ensure_mutable()
        await self.ledger_repo.delete_plan(plan_id)
        log.info("plan_deleted", enrollment_id=plan.enrollment_id)
