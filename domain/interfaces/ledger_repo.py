from typing import AsyncContextManager, Optional

from typing_extensions import Protocol

from domain.entities import Installment, PaymentPlan, Settlement


class LedgerRepository(Protocol):
    """Persistence of plans, installments and settlements."""

    async def save_plan(self, plan: PaymentPlan, replaces: Optional[str] = None) -> PaymentPlan:
        """
        Persist a plan and all its installments in one transaction.

        When ``replaces`` is given, that plan is deleted in the same transaction
        (PlanLockedError if it has settlements by then).
        """
        ...

    async def get_plan(self, plan_id: str) -> Optional[PaymentPlan]: ...
    async def get_plan_by_enrollment(self, enrollment_id: str) -> Optional[PaymentPlan]: ...
    async def delete_plan(self, plan_id: str) -> None: ...
    async def get_installment(self, installment_id: str) -> Optional[Installment]: ...

    def lock_installment(self, installment_id: str) -> AsyncContextManager[Installment]:
        """
        Lock one installment (with its settlements) for read-modify-write.

        Changes made to the yielded installment's settlements are written in a
        single commit when the block exits; an exception rolls everything back.

        Raises:
            InstallmentNotFoundError: no installment with that id
        """
        ...

    async def get_settlement(self, settlement_id: str) -> Optional[Settlement]: ...
    async def get_settlement_by_reference(self, reference: str) -> Optional[Settlement]: ...
    async def reference_exists(self, reference: str) -> bool: ...
