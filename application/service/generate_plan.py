import time
from datetime import date
from typing import Iterable, Optional

from application.service.logs import bind_logger
from domain.entities import Agreement, Enrollment, PaymentPlan
from domain.exceptions import InvalidPlanError, PlanAlreadyExistsError, PlanLockedError
from domain.interfaces import LedgerRepository, LoggingPort, MetricsPort
from domain.services import PlanGenerator, select_agreement_percent
from domain.services.plan_generator import Percent


class GeneratePlanService:
    def __init__(
        self,
        ledger_repo: LedgerRepository,
        metrics_port: Optional[MetricsPort] = None,
        logging_port: Optional[LoggingPort] = None,
        generator: Optional[PlanGenerator] = None,
    ):
        """
        Initialize the plan generation service.

        Args:
            ledger_repo: Repository where plans are stored (required)
            metrics_port: Metrics port for emitting metrics (optional)
            logging_port: Logging port for structured logging (optional)
            generator: Plan generator (defaults to one built from PlanConfig)
        """
        self.ledger_repo = ledger_repo
        self.metrics_port = metrics_port
        self.logging_port = logging_port
        self.generator = generator or PlanGenerator()

    async def execute(
        self,
        enrollment: Enrollment,
        program_cost_cents: int,
        installment_count: int,
        discount_percent: Optional[Percent] = None,
        agreement_percent: Optional[Percent] = None,
        agreements: Optional[Iterable[Agreement]] = None,
        include_upfront_deposit: bool = False,
        installment_amounts_cents: Optional[list[int]] = None,
        replace_existing: bool = False,
        today: Optional[date] = None,
        request_id: Optional[str] = None,
    ) -> PaymentPlan:
        """
        Generate and persist the payment plan of an enrollment.

        The plan is computed and validated before anything is written; plan and
        installments are then stored in one transaction. ``agreements`` is only
        used when no explicit ``agreement_percent`` is given (first applicable wins).

        Raises:
            InvalidPlanError: invalid terms
            PlanAlreadyExistsError: the enrollment has a plan and replace_existing is False
            PlanLockedError: the existing plan already has settlements
        """
        start_time = time.time()
        log = bind_logger(
            self.logging_port,
            request_id,
            enrollment_id=enrollment.id,
            payer=enrollment.payer.ref,
            step="plan_generation",
        )
        log.info(
            "plan_generation_started",
            program_cost_cents=program_cost_cents,
            installment_count=installment_count,
            include_upfront_deposit=include_upfront_deposit,
        )

        try:
            if agreement_percent is None and agreements is not None:
                agreement_percent = select_agreement_percent(agreements, today or date.today())

            plan = self.generator.generate(
                enrollment,
                program_cost_cents,
                installment_count,
                discount_percent=discount_percent,
                agreement_percent=agreement_percent,
                include_upfront_deposit=include_upfront_deposit,
                installment_amounts_cents=installment_amounts_cents,
                today=today,
            )

            existing = await self.ledger_repo.get_plan_by_enrollment(enrollment.id)
            replaces = None
            if existing is not None:
                if not replace_existing:
                    raise PlanAlreadyExistsError(f"Enrollment {enrollment.id} already has plan {existing.id}")
                existing.ensure_mutable()
                replaces = existing.id

            await self.ledger_repo.save_plan(plan, replaces=replaces)

            duration_ms = (time.time() - start_time) * 1000
            log.info(
                "plan_generated",
                plan_id=plan.id,
                total_cents=plan.total_cents,
                installments=len(plan.installments),
                replaced_plan_id=replaces,
                duration_ms=round(duration_ms, 2),
            )
            if self.metrics_port:
                self.metrics_port.increment_plan_generated("replaced" if replaces else "created")
            return plan

        except InvalidPlanError as e:
            log.warning("plan_generation_rejected", error=str(e))
            if self.metrics_port:
                self.metrics_port.increment_plan_generated("invalid")
            raise
        except (PlanAlreadyExistsError, PlanLockedError) as e:
            log.warning("plan_generation_conflict", error=str(e), error_kind=e.kind)
            if self.metrics_port:
                self.metrics_port.increment_plan_generated("conflict")
            raise
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            log.error(
                "plan_generation_failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round(duration_ms, 2),
                exc_info=True,
            )
            if self.metrics_port:
                self.metrics_port.increment_plan_generated("error")
            raise
