from fastapi import APIRouter, Depends, HTTPException, status, Request, Response, Header
from fastapi.responses import JSONResponse
from typing import Any, AsyncIterator, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
import uuid

from app.schemas.plan_schema import InstallmentResponse, PlanCreate, PlanResponse, SettlementResponse
from app.schemas.settlement_schema import (
    ApproveRequest,
    ConfirmationResponse,
    ManualSettlementCreate,
    PollResponse,
    QrRequest,
    QrResponse,
    RejectRequest,
)
from application.service.delete_plan import DeletePlanService
from application.service.generate_plan import GeneratePlanService
from application.service.ledger_query import LedgerQueryService
from application.service.manual_settlement import ManualSettlementService
from application.service.settlement_orchestrator import SettlementOrchestrator
from domain.config import get_app_config
from domain.entities import Admin, Enrollment
from domain.exceptions import (
    AlreadyPaidError,
    GatewayRequestError,
    GatewayUnavailableError,
    InstallmentNotFoundError,
    InsufficientRemainingError,
    InvalidPlanError,
    InvalidSettlementError,
    PlanAlreadyExistsError,
    PlanLockedError,
    PlanNotFoundError,
    ReconciliationMismatchError,
    SettlementDomainError,
    SettlementInProgressError,
    SettlementNotFoundError,
    SettlementStateError,
)
from domain.interfaces import GatewayPort, LedgerRepository, LoggingPort, MetricsPort, NotificationPort
from domain.services import amount_to_cents, is_approved_status
from infrastructure.clients import NotificationService, NotificationWebhookClient, PagoFacilClient
from infrastructure.db.database import get_db_session
from infrastructure.db.repositories.ledger_repo_sqlalchemy import LedgerRepoSqlalchemy
from infrastructure.logging.logging_adapter import LoggingAdapter
from infrastructure.logging.structlog_logs import logger
from infrastructure.metrics.metrics_adapter import MetricsAdapter

# Callback field names, in lookup order
REFERENCE_KEYS = ("PedidoID", "paymentNumber", "payment_number", "nro_pago")
STATE_KEYS = ("Estado", "status", "estado")
AMOUNT_KEYS = ("Monto", "amount", "monto")

ERROR_STATUS = {
    InvalidPlanError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidSettlementError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AlreadyPaidError: status.HTTP_409_CONFLICT,
    InsufficientRemainingError: status.HTTP_409_CONFLICT,
    PlanAlreadyExistsError: status.HTTP_409_CONFLICT,
    PlanLockedError: status.HTTP_409_CONFLICT,
    SettlementInProgressError: status.HTTP_409_CONFLICT,
    SettlementStateError: status.HTTP_409_CONFLICT,
    ReconciliationMismatchError: status.HTTP_409_CONFLICT,
    PlanNotFoundError: status.HTTP_404_NOT_FOUND,
    InstallmentNotFoundError: status.HTTP_404_NOT_FOUND,
    SettlementNotFoundError: status.HTTP_404_NOT_FOUND,
    GatewayUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    GatewayRequestError: status.HTTP_502_BAD_GATEWAY,
}

ERROR_MESSAGES = {
    "invalid_plan": "The payment plan terms are invalid",
    "invalid_settlement": "The settlement request is invalid",
    "already_paid": "The installment is already paid",
    "insufficient_remaining": "The amount exceeds what remains to be paid",
    "plan_already_exists": "The enrollment already has a payment plan",
    "plan_locked": "The payment plan already has payments and cannot be changed",
    "settlement_in_progress": "A payment request for this installment is still being processed",
    "invalid_settlement_state": "The settlement can no longer change state",
    "reconciliation_mismatch": "The payment does not match the ledger and needs manual review",
    "plan_not_found": "Payment plan not found",
    "installment_not_found": "Installment not found",
    "settlement_not_found": "Settlement not found",
    "gateway_unavailable": "The payment gateway is unavailable, try again later",
    "gateway_request_error": "The payment gateway could not process the request",
}


def to_http_error(error: SettlementDomainError) -> HTTPException:
    status_code = next(
        (ERROR_STATUS[cls] for cls in type(error).__mro__ if cls in ERROR_STATUS),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    message = str(error) if get_app_config().debug else ERROR_MESSAGES.get(error.kind, "The request could not be processed")
    return HTTPException(status_code=status_code, detail={"error": error.kind, "message": message})


# Dependencies (overridable in tests through app.dependency_overrides)

def get_request_id(
    x_request_id: Optional[str] = Header(None, alias="X-Request-ID", description="Request ID for tracing"),
) -> str:
    request_id = x_request_id or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    return request_id


def get_ledger_repo(db: AsyncSession = Depends(get_db_session)) -> LedgerRepository:
    return LedgerRepoSqlalchemy(db)


async def get_gateway() -> AsyncIterator[GatewayPort]:
    client = PagoFacilClient()
    try:
        yield client
    finally:
        await client.close()


async def get_notification_port(db: AsyncSession = Depends(get_db_session)) -> AsyncIterator[NotificationPort]:
    client = NotificationWebhookClient()
    try:
        yield NotificationService(client, db_session=db)
    finally:
        await client.close()


def get_metrics_port() -> MetricsPort:
    return MetricsAdapter()


def get_logging_port() -> LoggingPort:
    return LoggingAdapter()


def get_orchestrator(
    ledger_repo: LedgerRepository = Depends(get_ledger_repo),
    gateway: GatewayPort = Depends(get_gateway),
    notification_port: NotificationPort = Depends(get_notification_port),
    metrics_port: MetricsPort = Depends(get_metrics_port),
    logging_port: LoggingPort = Depends(get_logging_port),
) -> SettlementOrchestrator:
    return SettlementOrchestrator(
        ledger_repo,
        gateway,
        notification_port=notification_port,
        metrics_port=metrics_port,
        logging_port=logging_port,
    )


def get_manual_service(
    ledger_repo: LedgerRepository = Depends(get_ledger_repo),
    notification_port: NotificationPort = Depends(get_notification_port),
    metrics_port: MetricsPort = Depends(get_metrics_port),
    logging_port: LoggingPort = Depends(get_logging_port),
) -> ManualSettlementService:
    return ManualSettlementService(
        ledger_repo,
        notification_port=notification_port,
        metrics_port=metrics_port,
        logging_port=logging_port,
    )


router = APIRouter(prefix="/v1")


@router.post("/plans", status_code=status.HTTP_201_CREATED)
async def create_plan(
    payload: PlanCreate,
    ledger_repo: LedgerRepository = Depends(get_ledger_repo),
    metrics_port: MetricsPort = Depends(get_metrics_port),
    logging_port: LoggingPort = Depends(get_logging_port),
    request_id: str = Depends(get_request_id),
) -> PlanResponse:
    """
    Generate the payment plan of an enrollment.

    Applies discount and agreement percentages to the program cost and splits
    the result into monthly installments (optionally after a 20% deposit).
    Nothing is stored when the terms are invalid.
    """
    enrollment = Enrollment(
        id=payload.enrollment_id,
        payer=payload.payer.to_identity(),
        program_name=payload.program_name,
    )
    srv = GeneratePlanService(ledger_repo, metrics_port=metrics_port, logging_port=logging_port)
    try:
        plan = await srv.execute(
            enrollment,
            payload.program_cost_cents,
            payload.installment_count,
            discount_percent=payload.discount_percent,
            agreement_percent=payload.agreement_percent,
            agreements=[a.to_domain() for a in payload.agreements] if payload.agreements is not None else None,
            include_upfront_deposit=payload.include_upfront_deposit,
            installment_amounts_cents=payload.installment_amounts_cents,
            replace_existing=payload.replace_existing,
            request_id=request_id,
        )
        view = await LedgerQueryService(ledger_repo).get_plan(plan.id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return PlanResponse.from_view(view)


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str, ledger_repo: LedgerRepository = Depends(get_ledger_repo)) -> PlanResponse:
    """Get a plan with its installments, settlements and derived balances."""
    try:
        view = await LedgerQueryService(ledger_repo).get_plan(plan_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return PlanResponse.from_view(view)


@router.delete("/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(
    plan_id: str,
    ledger_repo: LedgerRepository = Depends(get_ledger_repo),
    logging_port: LoggingPort = Depends(get_logging_port),
    request_id: str = Depends(get_request_id),
) -> Response:
    try:
        await DeletePlanService(ledger_repo, logging_port=logging_port).execute(plan_id, request_id=request_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/installments/{installment_id}")
async def get_installment(
    installment_id: str,
    ledger_repo: LedgerRepository = Depends(get_ledger_repo),
) -> InstallmentResponse:
    try:
        view = await LedgerQueryService(ledger_repo).get_installment(installment_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return InstallmentResponse.from_view(view)


@router.post("/installments/{installment_id}/qr", status_code=status.HTTP_201_CREATED)
async def request_qr(
    installment_id: str,
    payload: QrRequest,
    response: Response,
    supersede: bool = False,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    request_id: str = Depends(get_request_id),
) -> QrResponse:
    """
    Issue a QR for the remaining balance of an installment.

    An unexpired QR is returned again (200) unless `supersede=true`.
    """
    try:
        result = await orchestrator.request_qr(
            installment_id,
            payload.to_payer(),
            supersede=supersede,
            request_id=request_id,
        )
    except SettlementDomainError as e:
        raise to_http_error(e) from e

    if result.reused:
        response.status_code = status.HTTP_200_OK
    settlement = result.settlement
    return QrResponse(
        settlement_id=settlement.id,
        reference=settlement.reference,
        amount_cents=settlement.amount_cents,
        qr_base64=result.qr_base64,
        qr_expires_at=settlement.qr_expires_at,
        transaction_id=settlement.gateway_transaction_id,
        reused=result.reused,
    )


@router.post("/installments/{installment_id}/settlements", status_code=status.HTTP_201_CREATED)
async def register_manual_settlement(
    installment_id: str,
    payload: ManualSettlementCreate,
    srv: ManualSettlementService = Depends(get_manual_service),
    request_id: str = Depends(get_request_id),
) -> SettlementResponse:
    """Register a payment made outside the gateway; it counts once an administrator approves it."""
    try:
        settlement = await srv.register(
            installment_id,
            payload.amount_cents,
            payload.payer.to_identity(),
            notes=payload.notes,
            request_id=request_id,
        )
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return SettlementResponse.from_domain(settlement)


@router.get("/settlements/{settlement_id}/status")
async def poll_settlement(
    settlement_id: str,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    request_id: str = Depends(get_request_id),
) -> PollResponse:
    """Ask the gateway for the transaction status and confirm the settlement when it is paid."""
    try:
        result = await orchestrator.poll_status(settlement_id, request_id=request_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return PollResponse(
        settlement=SettlementResponse.from_domain(result.settlement),
        payment_status=result.status.payment_status,
        payment_status_description=result.status.description,
        confirmed_now=result.confirmed_now,
    )


@router.post("/settlements/{settlement_id}/approve")
async def approve_settlement(
    settlement_id: str,
    payload: ApproveRequest,
    srv: ManualSettlementService = Depends(get_manual_service),
    request_id: str = Depends(get_request_id),
) -> ConfirmationResponse:
    try:
        result = await srv.approve(settlement_id, Admin(id=payload.verifier_id), notes=payload.notes,
                                   request_id=request_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return ConfirmationResponse(
        settlement=SettlementResponse.from_domain(result.settlement),
        confirmed_now=result.confirmed_now,
    )


@router.post("/settlements/{settlement_id}/reject")
async def reject_settlement(
    settlement_id: str,
    payload: RejectRequest,
    srv: ManualSettlementService = Depends(get_manual_service),
    request_id: str = Depends(get_request_id),
) -> SettlementResponse:
    try:
        settlement = await srv.reject(settlement_id, Admin(id=payload.verifier_id), payload.reason,
                                      request_id=request_id)
    except SettlementDomainError as e:
        raise to_http_error(e) from e
    return SettlementResponse.from_domain(settlement)


def _first(payload: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


async def _callback_payload(request: Request) -> dict[str, Any]:
    body = await request.body()
    if body:
        try:
            data = await request.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            return data
    return dict(request.query_params)


def _callback_ack(error: int, message: str, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "status": 0 if error else 1, "message": message, "values": not error},
    )


@router.post("/payments/callback")
async def payment_callback(
    request: Request,
    orchestrator: SettlementOrchestrator = Depends(get_orchestrator),
    request_id: str = Depends(get_request_id),
) -> JSONResponse:
    """
    Gateway payment notification.

    Always acknowledged with 200 (errors included, to stop redelivery) except
    when no payment reference can be found in the request.
    """
    payload = await _callback_payload(request)
    reference = _first(payload, REFERENCE_KEYS)
    if reference is None:
        logger.warning("callback_missing_reference", step="callback", keys=sorted(payload.keys()))
        return _callback_ack(1, "Referencia de pago no encontrada", status.HTTP_400_BAD_REQUEST)

    approved = is_approved_status(_first(payload, STATE_KEYS))
    try:
        reported_amount_cents = amount_to_cents(_first(payload, AMOUNT_KEYS))
    except InvalidSettlementError:
        logger.warning("callback_invalid_amount", step="callback", reference=str(reference))
        reported_amount_cents = None

    try:
        await orchestrator.confirm_by_reference(
            str(reference),
            approved=approved,
            callback_payload=payload,
            reported_amount_cents=reported_amount_cents,
            request_id=request_id,
        )
    except SettlementDomainError as e:
        logger.warning("callback_processing_failed", step="callback", reference=str(reference),
                       error_kind=e.kind, error=str(e))
        return _callback_ack(1, ERROR_MESSAGES.get(e.kind, "Error al procesar la notificación"))

    return _callback_ack(0, "Notificación recibida")
