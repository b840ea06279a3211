import time
from dataclasses import dataclass
from typing import Any, Optional

from application.service.logs import bind_logger
from application.service.settlement_workflow import ConfirmationResult, SettlementWorkflow
from domain.entities import (
    GatewayTransactionStatus,
    OrderLine,
    Payer,
    QrChargeRequest,
    Settlement,
)
from domain.exceptions import (
    AlreadyPaidError,
    GatewayAuthError,
    GatewayRequestError,
    GatewayUnavailableError,
    SettlementInProgressError,
    SettlementNotFoundError,
    SettlementStateError,
)
from domain.interfaces import GatewayPort


@dataclass
class QrSettlementResult:
    settlement: Settlement
    reused: bool
    qr_base64: Optional[str]


@dataclass
class PollResult:
    settlement: Settlement
    status: GatewayTransactionStatus
    confirmed_now: bool


def _request_outcome(error: Exception) -> str:
    if isinstance(error, AlreadyPaidError):
        return "already_paid"
    if isinstance(error, SettlementInProgressError):
        return "in_progress"
    if isinstance(error, SettlementStateError):
        return "superseded"
    if isinstance(error, GatewayUnavailableError):
        return "gateway_unavailable"
    if isinstance(error, GatewayRequestError):
        return "gateway_timeout" if error.timed_out else "gateway_failed"
    return "error"


class SettlementOrchestrator(SettlementWorkflow):
    """
    QR settlement lifecycle: request a QR, then confirm it from the gateway
    callback or by polling the gateway.

    No database transaction is held while the gateway is being called.
    """

    def __init__(self, ledger_repo, gateway: GatewayPort, notification_port=None, metrics_port=None,
                 logging_port=None, config=None, clock=None):
        super().__init__(
            ledger_repo,
            notification_port=notification_port,
            metrics_port=metrics_port,
            logging_port=logging_port,
            config=config,
            clock=clock,
        )
        self.gateway = gateway

    async def request_qr(
        self,
        installment_id: str,
        payer: Payer,
        supersede: bool = False,
        request_id: Optional[str] = None,
    ) -> QrSettlementResult:
        """
        Issue (or reuse) a QR for the remaining balance of an installment.

        Raises:
            AlreadyPaidError: nothing left to pay
            SettlementInProgressError: another QR request has not finished yet (without supersede)
            SettlementStateError: the intent was superseded while its QR was being issued
            GatewayUnavailableError: the gateway rejected our credentials
            GatewayRequestError: the gateway failed or timed out
        """
        start_time = time.time()
        log = bind_logger(
            self.logging_port,
            request_id,
            installment_id=installment_id,
            payer=payer.identity.ref,
            step="qr_request",
        )
        log.info("qr_request_started", supersede=supersede)

        try:
            reference = await self.generate_reference()
            reused: Optional[Settlement] = None
            superseded: Optional[Settlement] = None
            settlement: Optional[Settlement] = None

            # Step 1: persist the intent before any network call
            async with self.ledger_repo.lock_installment(installment_id) as installment:
                now = self._clock()
                if installment.remaining_cents <= 0:
                    raise AlreadyPaidError(f"Installment {installment_id} is already paid")

                active = installment.active_settlement(now, self.in_flight_window)
                if active is not None:
                    if supersede:
                        superseded = active.fail("superseded")
                    elif active.is_in_flight(now, self.in_flight_window):
                        raise SettlementInProgressError(
                            f"A QR for installment {installment_id} is already being issued"
                        )
                    else:
                        reused = active

                if reused is None:
                    settlement = installment.add_settlement(Settlement.request_qr(
                        installment_id=installment.id,
                        amount_cents=installment.remaining_cents,
                        reference=reference,
                        payer=payer.identity,
                        requested_at=now,
                    ))
                program_name = installment.program_name or ""

            if reused is not None:
                log.info("qr_reused", settlement_id=reused.id, reference=reused.reference)
                if self.metrics_port:
                    self.metrics_port.increment_settlement_request("reused")
                return QrSettlementResult(settlement=reused, reused=True, qr_base64=reused.qr_image)

            log = bind_logger(
                self.logging_port,
                request_id,
                installment_id=installment_id,
                settlement_id=settlement.id,
                payer=payer.identity.ref,
                step="qr_request",
            )
            if superseded is not None:
                log.info("qr_superseded", superseded_settlement_id=superseded.id)
            log.info("qr_intent_recorded", reference=settlement.reference, amount_cents=settlement.amount_cents)

            # Step 2: call the gateway outside any transaction
            charge, method_id = await self._issue_qr(settlement, payer, program_name, log, request_id)

            # Step 3: store the QR in a new short transaction
            async with self.ledger_repo.lock_installment(installment_id) as installment:
                stored = installment.find_settlement(settlement.id)
                if stored is None:
                    raise SettlementNotFoundError(f"Settlement {settlement.id} not found")
                if not stored.is_requested:
                    # Superseded by a newer request while the gateway was answering
                    raise SettlementStateError(
                        f"Settlement {settlement.id} is {stored.state.value} and cannot take a QR"
                    )
                settlement = stored.attach_qr(charge, method_id)

            duration_ms = (time.time() - start_time) * 1000
            log.info(
                "qr_issued",
                reference=settlement.reference,
                transaction_id=settlement.gateway_transaction_id,
                payment_method_id=method_id,
                qr_expires_at=settlement.qr_expires_at.isoformat() if settlement.qr_expires_at else None,
                duration_ms=round(duration_ms, 2),
            )
            if self.metrics_port:
                self.metrics_port.increment_settlement_request("issued")
            return QrSettlementResult(settlement=settlement, reused=False, qr_base64=charge.qr_base64)

        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            outcome = _request_outcome(e)
            if outcome == "error":
                log.error(
                    "qr_request_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=round(duration_ms, 2),
                    exc_info=True,
                )
            else:
                log.warning("qr_request_refused", outcome=outcome, error=str(e), duration_ms=round(duration_ms, 2))
            if self.metrics_port:
                self.metrics_port.increment_settlement_request(outcome)
            raise

    async def _issue_qr(self, settlement: Settlement, payer: Payer, program_name: str, log, request_id):
        try:
            method_id = await self.gateway.resolve_payment_method_id()
            charge = await self.gateway.generate_qr(QrChargeRequest(
                payment_method_id=method_id,
                reference=settlement.reference,
                amount_cents=settlement.amount_cents,
                client_name=payer.full_name,
                document_id=payer.document_id,
                phone=payer.phone or "",
                email=payer.email or "",
                order_lines=(OrderLine(
                    product=f"Cuota - {program_name}",
                    quantity=1,
                    price_cents=settlement.amount_cents,
                ),),
            ))
            return charge, method_id

        except GatewayAuthError as e:
            # No QR was issued, so the intent must not keep blocking new requests
            log.error("gateway_auth_failed", error=str(e))
            await self._mark_failed(settlement, "gateway_unavailable", log)
            await self._notify_failure(settlement, payer.identity, program_name, str(e), log, request_id)
            raise GatewayUnavailableError("Payment gateway is unavailable") from e

        except GatewayRequestError as e:
            if e.timed_out:
                # The gateway may still have created the charge; polling reconciles it
                log.error("gateway_qr_timed_out", error=str(e))
            else:
                log.error("gateway_qr_failed", error=str(e), status_code=e.status_code)
                await self._mark_failed(settlement, str(e), log)
            await self._notify_failure(settlement, payer.identity, program_name, str(e), log, request_id)
            raise

    async def _mark_failed(self, settlement: Settlement, reason: str, log) -> None:
        async with self.ledger_repo.lock_installment(settlement.installment_id) as installment:
            stored = installment.find_settlement(settlement.id)
            if stored is not None and stored.is_requested:
                stored.fail(reason)
                settlement.state = stored.state
                settlement.failure_reason = stored.failure_reason
        log.info("settlement_failed", reason=reason)

    async def confirm_by_reference(
        self,
        reference: str,
        approved: bool = True,
        callback_payload: Optional[dict[str, Any]] = None,
        reported_amount_cents: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> ConfirmationResult:
        """
        Gateway callback path. Duplicate callbacks are no-ops.

        Raises:
            SettlementNotFoundError: unknown reference
            ReconciliationMismatchError: reported data disagrees with the ledger
        """
        log = bind_logger(self.logging_port, request_id, reference=reference, step="callback")
        settlement = await self.ledger_repo.get_settlement_by_reference(reference)
        if settlement is None:
            log.warning("callback_unknown_reference")
            self._count_confirmation("callback", "unknown")
            raise SettlementNotFoundError(f"No settlement with reference {reference}")

        log = bind_logger(
            self.logging_port,
            request_id,
            reference=reference,
            installment_id=settlement.installment_id,
            settlement_id=settlement.id,
            step="callback",
        )
        log.info("callback_received", approved=approved, reported_amount_cents=reported_amount_cents)

        def record(stored: Settlement) -> None:
            if callback_payload is not None:
                stored.callback_payload = callback_payload

        return await self._confirm_locked(
            settlement.installment_id,
            settlement.id,
            path="callback",
            log=log,
            approved=approved,
            record=record,
            reported_amount_cents=reported_amount_cents,
            request_id=request_id,
        )

    async def poll_status(self, settlement_id: str, request_id: Optional[str] = None) -> PollResult:
        """
        Poll path: ask the gateway and confirm when it reports the payment completed.

        The gateway's report (amount, payer data, raw payload) is always stored;
        the expected amount is never overwritten.
        """
        start_time = time.time()
        settlement = await self.ledger_repo.get_settlement(settlement_id)
        if settlement is None:
            raise SettlementNotFoundError(f"Settlement {settlement_id} not found")

        log = bind_logger(
            self.logging_port,
            request_id,
            installment_id=settlement.installment_id,
            settlement_id=settlement.id,
            step="poll",
        )
        try:
            status = await self.gateway.query_transaction(
                transaction_id=settlement.gateway_transaction_id,
                reference=settlement.reference,
            )
        except GatewayAuthError as e:
            log.error("gateway_auth_failed", error=str(e))
            raise GatewayUnavailableError("Payment gateway is unavailable") from e
        except GatewayRequestError as e:
            log.error("gateway_query_failed", error=str(e), timed_out=e.timed_out)
            self._count_confirmation("poll", "error")
            raise

        log.info(
            "gateway_status_received",
            payment_status=status.payment_status,
            description=status.description,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        result = await self._confirm_locked(
            settlement.installment_id,
            settlement.id,
            path="poll",
            log=log,
            approved=status.completed,
            record=lambda stored: stored.record_gateway_status(status),
            reported_amount_cents=status.amount_cents,
            request_id=request_id,
        )
        return PollResult(settlement=result.settlement, status=status, confirmed_now=result.confirmed_now)
