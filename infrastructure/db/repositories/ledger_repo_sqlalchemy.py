from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from domain.entities import Installment, PaymentPlan, Settlement
from domain.exceptions import InstallmentNotFoundError, PlanAlreadyExistsError, PlanLockedError, PlanNotFoundError
from domain.interfaces import LedgerRepository
from infrastructure.db.models import InstallmentModel, PlanModel, SettlementModel


class LedgerRepoSqlalchemy(LedgerRepository):
    """SQLAlchemy implementation of LedgerRepository."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _plan_query(self):
        return (
            select(PlanModel)
            .options(selectinload(PlanModel.installments_rel).selectinload(InstallmentModel.settlements_rel))
            .execution_options(populate_existing=True)
        )

    async def save_plan(self, plan: PaymentPlan, replaces: Optional[str] = None) -> PaymentPlan:
        """Save a plan with all its installments in a single commit, dropping ``replaces`` first."""
        plan_model = PlanModel.from_domain(plan)
        plan_model.installments_rel = [InstallmentModel.from_domain(inst) for inst in plan.installments]
        try:
            if replaces:
                await self._delete_unlocked(replaces)
                # Old rows must be gone before the new plan reuses the enrollment id
                await self.db.flush()
            self.db.add(plan_model)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PlanAlreadyExistsError(f"Enrollment {plan.enrollment_id} already has a plan") from e
        except Exception:
            await self.db.rollback()
            raise
        return plan

    async def get_plan(self, plan_id: str) -> Optional[PaymentPlan]:
        """Get a plan by ID with installments and settlements loaded."""
        result = await self.db.execute(self._plan_query().where(PlanModel.id == plan_id))
        plan_model = result.scalar_one_or_none()
        return plan_model.to_domain() if plan_model else None

    async def get_plan_by_enrollment(self, enrollment_id: str) -> Optional[PaymentPlan]:
        result = await self.db.execute(self._plan_query().where(PlanModel.enrollment_id == enrollment_id))
        plan_model = result.scalar_one_or_none()
        return plan_model.to_domain() if plan_model else None

    async def delete_plan(self, plan_id: str) -> None:
        """Delete a plan and its installments; refused once any settlement exists."""
        try:
            await self._delete_unlocked(plan_id)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _delete_unlocked(self, plan_id: str) -> None:
        result = await self.db.execute(
            self._plan_query().where(PlanModel.id == plan_id).with_for_update()
        )
        plan_model = result.scalar_one_or_none()
        if plan_model is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found")
        if any(inst.settlements_rel for inst in plan_model.installments_rel):
            raise PlanLockedError(f"Plan {plan_id} has settlements and cannot be deleted")
        await self.db.delete(plan_model)

    async def get_installment(self, installment_id: str) -> Optional[Installment]:
        stmt = (
            select(InstallmentModel)
            .where(InstallmentModel.id == installment_id)
            .options(selectinload(InstallmentModel.settlements_rel), selectinload(InstallmentModel.plan_rel))
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        model = result.scalar_one_or_none()
        return model.to_domain(program_name=model.plan_rel.program_name) if model else None

    @asynccontextmanager
    async def lock_installment(self, installment_id: str) -> AsyncIterator[Installment]:
        """
        SELECT ... FOR UPDATE on the installment row, yield it as a domain entity,
        then write back its settlements and commit once.
        """
        stmt = (
            select(InstallmentModel)
            .where(InstallmentModel.id == installment_id)
            .with_for_update()
            .options(selectinload(InstallmentModel.settlements_rel), selectinload(InstallmentModel.plan_rel))
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise InstallmentNotFoundError(f"Installment {installment_id} not found")
            installment = model.to_domain(program_name=model.plan_rel.program_name)

            yield installment

            self._sync_settlements(model, installment)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    @staticmethod
    def _sync_settlements(model: InstallmentModel, installment: Installment) -> None:
        existing = {row.id: row for row in model.settlements_rel}
        for settlement in installment.settlements:
            row = existing.get(settlement.id)
            if row is None:
                model.settlements_rel.append(SettlementModel.from_domain(settlement))
            else:
                row.update_from_domain(settlement)

    async def _end_read(self) -> None:
        # Plain reads must not leave a transaction open across gateway calls
        await self.db.commit()

    async def get_settlement(self, settlement_id: str) -> Optional[Settlement]:
        stmt = (
            select(SettlementModel)
            .where(SettlementModel.id == settlement_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        model = result.scalar_one_or_none()
        settlement = model.to_domain() if model else None
        await self._end_read()
        return settlement

    async def get_settlement_by_reference(self, reference: str) -> Optional[Settlement]:
        stmt = (
            select(SettlementModel)
            .where(SettlementModel.reference == reference)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        model = result.scalar_one_or_none()
        settlement = model.to_domain() if model else None
        await self._end_read()
        return settlement

    async def reference_exists(self, reference: str) -> bool:
        result = await self.db.execute(
            select(SettlementModel.id).where(SettlementModel.reference == reference).limit(1)
        )
        exists = result.scalar_one_or_none() is not None
        await self._end_read()
        return exists
