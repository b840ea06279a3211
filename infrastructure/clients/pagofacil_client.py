"""
QR payment gateway client (PagoFacil v2 API) using httpx for async HTTP calls.

Handles the access-token lifecycle, payment-method lookup, QR generation and
transaction queries. Idempotent calls (login, method listing, query) are
retried on transport errors with tenacity; QR generation is never retried.
"""
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from domain.config import GatewayConfig, get_gateway_config
from domain.entities import (
    AccessToken,
    GatewaySession,
    GatewayTransactionStatus,
    PaymentMethod,
    QrCharge,
    QrChargeRequest,
)
from domain.exceptions import GatewayAuthError, GatewayRequestError, InvalidSettlementError
from domain.services import amount_to_cents, cents_to_amount
from infrastructure.logging.structlog_logs import logger
from infrastructure.metrics.metrics import (
    gateway_auth_total,
    gateway_request_failures_total,
    gateway_request_latency_seconds,
)

# One session per process, shared by every client instance
_gateway_session = GatewaySession()

DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%Y-%m-%d")


def get_gateway_session() -> GatewaySession:
    return _gateway_session


def parse_gateway_datetime(value: Any) -> Optional[datetime]:
    """Parse the date formats the gateway uses; returns a naive datetime or None."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _is_error_payload(data: dict) -> bool:
    return str(data.get("error", 0)) == "1" or data.get("success") is False


class PagoFacilClient:
    """
    HTTP client for the QR payment gateway.

    Token refresh is single-flight per process: every client shares the
    session and its refresh lock. Other processes may refresh concurrently,
    which only costs an extra login.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        session: Optional[GatewaySession] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config or get_gateway_config()
        self.base_url = self.config.base_url.rstrip("/")
        self.session = session if session is not None else get_gateway_session()
        self._clock = clock or datetime.now

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=self.config.connect_timeout,
                read=self.config.read_timeout,
                write=self.config.read_timeout,
                pool=self.config.connect_timeout,
            ),
            headers={"Accept": "application/json"},
        )

    @property
    def token_safety_margin(self) -> timedelta:
        return timedelta(minutes=self.config.token_safety_margin_minutes)

    async def _send(self, operation: str, method: str, path: str, retry: bool, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        send = self._client.get if method == "GET" else self._client.post
        start_time = time.time()
        try:
            if not retry:
                return await send(url, **kwargs)
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(self.config.retry_attempts, 1)),
                wait=wait_exponential(multiplier=self.config.retry_backoff_seconds, max=10),
                retry=retry_if_exception_type(httpx.RequestError),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "gateway_request_retry",
                            step="pagofacil_client",
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    return await send(url, **kwargs)
        finally:
            gateway_request_latency_seconds.labels(operation=operation).observe(time.time() - start_time)

    async def authenticate(self) -> AccessToken:
        """
        Log in with the service credentials and cache the access token.

        Raises:
            GatewayAuthError: missing credentials, transport error, non-2xx,
                error flag in the payload or no accessToken returned
        """
        if not self.config.token_service or not self.config.token_secret:
            gateway_auth_total.labels(outcome="failure").inc()
            raise GatewayAuthError("Gateway credentials are not configured")

        headers = {
            "tcTokenService": self.config.token_service,
            "tcTokenSecret": self.config.token_secret,
        }
        try:
            response = await self._send("login", "POST", self.config.login_path, retry=True, headers=headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._auth_failed()
            raise GatewayAuthError(f"Gateway login returned {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            self._auth_failed()
            raise GatewayAuthError(f"Gateway login timed out after {self.config.read_timeout}s") from e
        except httpx.RequestError as e:
            self._auth_failed()
            raise GatewayAuthError(f"Gateway login failed: {str(e)}") from e
        except ValueError as e:
            self._auth_failed()
            raise GatewayAuthError("Gateway login returned invalid JSON") from e

        if not isinstance(data, dict) or _is_error_payload(data):
            self._auth_failed()
            message = data.get("message") if isinstance(data, dict) else None
            raise GatewayAuthError(f"Gateway login rejected: {message or 'unknown error'}")

        values = data.get("values") or {}
        token = values.get("accessToken") if isinstance(values, dict) else None
        if not token:
            self._auth_failed()
            raise GatewayAuthError("Gateway login returned no access token")

        try:
            minutes = int(values.get("expiresInMinutes") or self.config.default_token_minutes)
        except (TypeError, ValueError):
            logger.warning(
                "gateway_token_expiry_invalid",
                step="pagofacil_client",
                expires_in_minutes=repr(values.get("expiresInMinutes")),
            )
            minutes = self.config.default_token_minutes
        expires_at = self._clock() + timedelta(minutes=minutes)
        gateway_auth_total.labels(outcome="success").inc()
        logger.info("gateway_authenticated", step="pagofacil_client", expires_at=expires_at.isoformat())
        return self.session.store_token(token, expires_at)

    def _auth_failed(self) -> None:
        gateway_auth_total.labels(outcome="failure").inc()
        gateway_request_failures_total.labels(operation="login").inc()
        logger.error("gateway_auth_failed", step="pagofacil_client")

    async def get_access_token(self) -> str:
        if self.session.token_valid(self._clock(), self.token_safety_margin):
            return self.session.access_token
        async with self.session.refresh_lock:
            # Another coroutine may have refreshed while we waited
            if self.session.token_valid(self._clock(), self.token_safety_margin):
                return self.session.access_token
            token = await self.authenticate()
            return token.value

    def invalidate_token(self) -> None:
        self.session.clear_token()

    async def _authorized(self, operation: str, method: str, path: str, retry: bool,
                          json: Optional[dict] = None) -> dict:
        token = await self.get_access_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            if json is None:
                response = await self._send(operation, method, path, retry, headers=headers)
            else:
                response = await self._send(operation, method, path, retry, headers=headers, json=json)
            if response.status_code == 401:
                self.invalidate_token()
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            gateway_request_failures_total.labels(operation=operation).inc()
            raise GatewayRequestError(
                f"Gateway {operation} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            gateway_request_failures_total.labels(operation=operation).inc()
            raise GatewayRequestError(
                f"Gateway {operation} timed out after {self.config.read_timeout}s",
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            gateway_request_failures_total.labels(operation=operation).inc()
            raise GatewayRequestError(f"Gateway {operation} failed: {str(e)}") from e
        except ValueError as e:
            gateway_request_failures_total.labels(operation=operation).inc()
            raise GatewayRequestError(f"Gateway {operation} returned invalid JSON") from e

        if not isinstance(data, dict) or _is_error_payload(data):
            gateway_request_failures_total.labels(operation=operation).inc()
            message = data.get("message") if isinstance(data, dict) else None
            raise GatewayRequestError(f"Gateway {operation} rejected: {message or 'unknown error'}")
        return data

    @staticmethod
    def pick_payment_method(entries: Any) -> Optional[PaymentMethod]:
        """First method whose name mentions QR, otherwise the first listed one."""
        methods = []
        for entry in entries if isinstance(entries, list) else []:
            if not isinstance(entry, dict):
                continue
            try:
                method_id = int(entry.get("paymentMethodId"))
            except (TypeError, ValueError):
                continue
            methods.append(PaymentMethod(id=method_id, name=str(entry.get("paymentMethodName") or "")))
        for method in methods:
            if "qr" in method.name.lower():
                return method
        return methods[0] if methods else None

    async def resolve_payment_method_id(self) -> int:
        now = self._clock()
        if self.session.method_valid(now):
            return self.session.payment_method_id

        default_id = self.config.default_payment_method_id
        try:
            data = await self._authorized("list_methods", "GET", self.config.list_methods_path, retry=True)
        except GatewayRequestError as e:
            # Fall back without caching so the next call asks again
            logger.warning(
                "gateway_method_lookup_failed",
                step="pagofacil_client",
                error=str(e),
                payment_method_id=default_id,
            )
            return default_id

        method = self.pick_payment_method(data.get("values"))
        method_id = method.id if method else default_id
        logger.info(
            "gateway_payment_method_resolved",
            step="pagofacil_client",
            payment_method_id=method_id,
            payment_method_name=method.name if method else None,
        )
        return self.session.store_method(method_id, now + timedelta(hours=self.config.method_cache_hours))

    def build_qr_body(self, request: QrChargeRequest) -> dict[str, Any]:
        return {
            "paymentMethod": request.payment_method_id,
            "clientName": request.client_name,
            "documentType": self.config.document_type,
            "documentId": request.document_id,
            "phoneNumber": request.phone or "",
            "email": request.email or "",
            "paymentNumber": request.reference,
            "amount": float(cents_to_amount(request.amount_cents)),
            "currency": self.config.currency_code,
            "clientCode": self.config.client_code,
            "callbackUrl": self.config.callback_url,
            "orderDetail": [
                {
                    "serial": serial,
                    "product": line.product,
                    "quantity": line.quantity,
                    "price": float(cents_to_amount(line.price_cents)),
                    "discount": 0,
                    "total": float(cents_to_amount(line.total_cents)),
                }
                for serial, line in enumerate(request.order_lines, start=1)
            ],
        }

    async def generate_qr(self, request: QrChargeRequest) -> QrCharge:
        start_time = time.time()
        data = await self._authorized(
            "generate_qr", "POST", self.config.generate_qr_path, retry=False, json=self.build_qr_body(request)
        )
        values = data.get("values") or {}
        if not isinstance(values, dict) or not values.get("qrBase64"):
            gateway_request_failures_total.labels(operation="generate_qr").inc()
            raise GatewayRequestError("Gateway generate_qr returned no QR image")

        transaction_id = values.get("transactionId")
        charge = QrCharge(
            qr_base64=values["qrBase64"],
            transaction_id=str(transaction_id) if transaction_id is not None else None,
            expires_at=parse_gateway_datetime(values.get("expirationDate")),
            raw=data,
        )
        logger.info(
            "gateway_qr_generated",
            step="pagofacil_client",
            reference=request.reference,
            transaction_id=charge.transaction_id,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return charge

    async def query_transaction(
        self,
        transaction_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> GatewayTransactionStatus:
        if transaction_id:
            body = {"pagofacilTransactionId": transaction_id}
        elif reference:
            body = {"companyTransactionId": reference}
        else:
            raise GatewayRequestError("A transaction id or a reference is required to query the gateway")

        data = await self._authorized("query_transaction", "POST", self.config.query_path, retry=True, json=body)
        values = data.get("values") or {}
        if not isinstance(values, dict):
            values = {}

        try:
            payment_status = int(values["paymentStatus"]) if values.get("paymentStatus") is not None else None
        except (TypeError, ValueError):
            payment_status = None
        try:
            amount_cents = amount_to_cents(values.get("amount"))
        except InvalidSettlementError:
            amount_cents = None

        paid_at = None
        if values.get("paymentDate"):
            paid_at = parse_gateway_datetime(f"{values['paymentDate']} {values.get('paymentTime') or ''}".strip())

        gateway_tid = values.get("pagofacilTransactionId")
        company_tid = values.get("companyTransactionId")
        return GatewayTransactionStatus(
            payment_status=payment_status,
            description=values.get("paymentStatusDescription"),
            amount_cents=amount_cents,
            currency_code=str(values["currencyCode"]) if values.get("currencyCode") is not None else None,
            transaction_id=str(gateway_tid) if gateway_tid is not None else transaction_id,
            reference=str(company_tid) if company_tid is not None else reference,
            paid_at=paid_at,
            payer_name=values.get("payerName"),
            payer_document=values.get("payerDocument"),
            payer_account=values.get("payerAccount"),
            payer_bank=values.get("payerBank"),
            raw=data,
        )

    async def close(self):
        """Close the httpx client."""
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
