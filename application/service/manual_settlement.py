from typing import Optional

from application.service.logs import bind_logger
from application.service.settlement_workflow import ConfirmationResult, SettlementWorkflow
from domain.entities import Admin, PayerIdentity, Settlement, SettlementMethod
from domain.exceptions import (
    AlreadyPaidError,
    InsufficientRemainingError,
    InvalidSettlementError,
    SettlementNotFoundError,
    SettlementStateError,
)


class ManualSettlementService(SettlementWorkflow):
    """
    Payments made outside the gateway (cash, bank transfer): registered by the
    payer or an operator, then approved or rejected by an administrator.
    """

    async def register(
        self,
        installment_id: str,
        amount_cents: int,
        payer: PayerIdentity,
        notes: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> Settlement:
        log = bind_logger(
            self.logging_port,
            request_id,
            installment_id=installment_id,
            payer=payer.ref,
            step="manual_settlement",
        )
        if amount_cents <= 0:
            raise InvalidSettlementError(f"Settlement amount must be positive, got {amount_cents}")

        reference = await self.generate_reference()
        async with self.ledger_repo.lock_installment(installment_id) as installment:
            remaining = installment.remaining_cents
            if remaining <= 0:
                raise AlreadyPaidError(f"Installment {installment_id} is already paid")
            if amount_cents > remaining:
                raise InsufficientRemainingError(
                    f"Amount {amount_cents} exceeds the remaining {remaining} cents"
                )
            settlement = installment.add_settlement(Settlement.register_manual(
                installment_id=installment.id,
                amount_cents=amount_cents,
                reference=reference,
                payer=payer,
                notes=notes,
                requested_at=self._clock(),
            ))

        log.info(
            "manual_settlement_registered",
            settlement_id=settlement.id,
            reference=reference,
            amount_cents=amount_cents,
        )
        self._count_confirmation("manual", "registered")
        return settlement

    async def approve(
        self,
        settlement_id: str,
        verifier: Admin,
        notes: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> ConfirmationResult:
        settlement = await self._load(settlement_id)
        log = bind_logger(
            self.logging_port,
            request_id,
            installment_id=settlement.installment_id,
            settlement_id=settlement.id,
            verified_by=verifier.ref,
            step="manual_approval",
        )

        def record(stored: Settlement) -> None:
            if notes:
                stored.notes = notes

        return await self._confirm_locked(
            settlement.installment_id,
            settlement.id,
            path="manual",
            log=log,
            record=record,
            verified_by=verifier.ref,
            request_id=request_id,
        )

    async def reject(
        self,
        settlement_id: str,
        verifier: Admin,
        reason: str,
        request_id: Optional[str] = None,
    ) -> Settlement:
        """
        REQUESTED -> FAILED for manual settlements; the row is kept for the audit trail.

        QR settlements are settled by the gateway and cannot be rejected here.
        """
        settlement = await self._load(settlement_id)
        log = bind_logger(
            self.logging_port,
            request_id,
            installment_id=settlement.installment_id,
            settlement_id=settlement.id,
            verified_by=verifier.ref,
            step="manual_rejection",
        )
        async with self.ledger_repo.lock_installment(settlement.installment_id) as installment:
            stored = installment.find_settlement(settlement_id)
            if stored is None:
                raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
            if stored.method != SettlementMethod.MANUAL:
                raise SettlementStateError(f"Settlement {settlement_id} is a QR payment and cannot be rejected")
            stored.fail(reason, verified_by=verifier.ref)
            program_name = installment.program_name

        log.info("settlement_rejected", reason=reason)
        self._count_confirmation("manual", "rejected")
        await self._notify_failure(stored, stored.payer, program_name, reason, log, request_id)
        return stored

    async def _load(self, settlement_id: str) -> Settlement:
        settlement = await self.ledger_repo.get_settlement(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
        return settlement
