"""
Shared pieces of the settlement use cases: reference generation, the locked
confirmation step and notification dispatch.
"""
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from domain.config import SettlementConfig, get_settlement_config
from domain.entities import (
    Installment,
    PayerIdentity,
    Settlement,
    SettlementEvent,
    SettlementOutcome,
)
from domain.exceptions import InvalidSettlementError, ReconciliationMismatchError, SettlementNotFoundError
from domain.interfaces import BoundLogger, LedgerRepository, LoggingPort, MetricsPort, NotificationPort
from domain.services import apply_confirmation


@dataclass
class ConfirmationResult:
    settlement: Settlement
    confirmed_now: bool


class SettlementWorkflow:
    def __init__(
        self,
        ledger_repo: LedgerRepository,
        notification_port: Optional[NotificationPort] = None,
        metrics_port: Optional[MetricsPort] = None,
        logging_port: Optional[LoggingPort] = None,
        config: Optional[SettlementConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.ledger_repo = ledger_repo
        self.notification_port = notification_port
        self.metrics_port = metrics_port
        self.logging_port = logging_port
        self.config = config or get_settlement_config()
        self._clock = clock or datetime.now
        self._random = random.SystemRandom()

    @property
    def in_flight_window(self) -> timedelta:
        return timedelta(seconds=self.config.in_flight_seconds)

    async def generate_reference(self) -> str:
        """Random payment number inside the configured range, unused by any settlement."""
        for _ in range(self.config.reference_attempts):
            candidate = str(self._random.randint(self.config.reference_min, self.config.reference_max))
            if not await self.ledger_repo.reference_exists(candidate):
                return candidate
        raise InvalidSettlementError(
            f"No unused payment reference found after {self.config.reference_attempts} attempts"
        )

    def _count_confirmation(self, path: str, outcome: str) -> None:
        if self.metrics_port:
            self.metrics_port.increment_settlement_confirmation(path, outcome)

    async def _notify(self, event: SettlementEvent, log: BoundLogger, request_id: Optional[str]) -> bool:
        if self.notification_port is None:
            return False
        delivered = await self.notification_port.publish(event, request_id=request_id)
        if not delivered:
            log.warning("settlement_notification_not_delivered", outcome=event.outcome.value)
        return delivered

    async def _notify_failure(
        self,
        settlement: Settlement,
        payer: PayerIdentity,
        program_name: Optional[str],
        reason: str,
        log: BoundLogger,
        request_id: Optional[str],
    ) -> bool:
        event = SettlementEvent(
            installment_id=settlement.installment_id,
            payer=payer,
            amount_cents=settlement.amount_cents,
            outcome=SettlementOutcome.FAILURE,
            program_name=program_name,
            gateway_reference=settlement.reference,
            settlement_id=settlement.id,
            reason=reason,
        )
        return await self._notify(event, log, request_id)

    async def _confirm_locked(
        self,
        installment_id: str,
        settlement_id: str,
        path: str,
        log: BoundLogger,
        approved: bool = True,
        record: Optional[Callable[[Settlement], None]] = None,
        verified_by: Optional[str] = None,
        reported_amount_cents: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> ConfirmationResult:
        """
        Record what the caller learned and confirm the settlement, all under the installment lock.

        On a reconciliation mismatch the recorded data is still committed, a
        failure event goes out and the error is raised afterwards.
        """
        mismatch: Optional[ReconciliationMismatchError] = None
        confirmed_now = False

        async with self.ledger_repo.lock_installment(installment_id) as installment:
            settlement = installment.find_settlement(settlement_id)
            if settlement is None:
                raise SettlementNotFoundError(f"Settlement {settlement_id} not found")
            if record is not None:
                record(settlement)
            if approved:
                try:
                    confirmed_now = apply_confirmation(
                        installment,
                        settlement,
                        self._clock(),
                        verified_by=verified_by,
                        reported_amount_cents=reported_amount_cents,
                        epsilon_cents=self.config.reconciliation_epsilon_cents,
                    )
                except ReconciliationMismatchError as e:
                    mismatch = e
            snapshot: Installment = installment

        if mismatch is not None:
            log.error(
                "reconciliation_mismatch",
                path=path,
                error=str(mismatch),
                expected_amount_cents=settlement.amount_cents,
                reported_amount_cents=reported_amount_cents,
                settlement_state=settlement.state.value,
            )
            self._count_confirmation(path, "mismatch")
            await self._notify_failure(
                settlement, settlement.payer, snapshot.program_name, mismatch.message, log, request_id
            )
            raise mismatch

        if confirmed_now:
            log.info(
                "settlement_confirmed",
                path=path,
                amount_cents=settlement.amount_cents,
                verified_by=settlement.verified_by,
                remaining_cents=max(snapshot.remaining_cents, 0),
            )
            self._count_confirmation(path, "confirmed")
            await self._after_confirmation(snapshot, settlement, log, request_id)
        elif approved:
            log.info("settlement_already_confirmed", path=path)
            self._count_confirmation(path, "duplicate")
        else:
            log.info("settlement_not_yet_paid", path=path)
            self._count_confirmation(path, "pending")

        return ConfirmationResult(settlement=settlement, confirmed_now=confirmed_now)

    async def _after_confirmation(
        self,
        installment: Installment,
        settlement: Settlement,
        log: BoundLogger,
        request_id: Optional[str],
    ) -> None:
        if installment.is_paid:
            log.info("installment_paid", installment_id=installment.id, sequence=installment.sequence)
            plan = await self.ledger_repo.get_plan(installment.plan_id)
            if plan is not None and plan.is_complete:
                log.info("plan_completed", plan_id=plan.id, total_cents=plan.total_cents)

        event = SettlementEvent(
            installment_id=installment.id,
            payer=settlement.payer,
            amount_cents=settlement.amount_cents,
            outcome=SettlementOutcome.SUCCESS,
            program_name=installment.program_name,
            gateway_reference=settlement.reference,
            settlement_id=settlement.id,
        )
        await self._notify(event, log, request_id)
