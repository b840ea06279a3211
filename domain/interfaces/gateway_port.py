from typing import Optional

from typing_extensions import Protocol

from domain.entities import GatewayTransactionStatus, QrCharge, QrChargeRequest


class GatewayPort(Protocol):
    """Protocol for the external QR payment gateway."""

    async def get_access_token(self) -> str:
        """
        Return a valid access token, authenticating when the cached one is missing or stale.

        Raises:
            GatewayAuthError: credentials rejected or gateway unreachable
        """
        ...

    async def resolve_payment_method_id(self) -> int:
        """Payment method id to use for QR charges (cached, falls back to the configured default)."""
        ...

    async def generate_qr(self, request: QrChargeRequest) -> QrCharge:
        """
        Ask the gateway for a QR charge. Not idempotent, never retried.

        Raises:
            GatewayAuthError: no access token could be obtained
            GatewayRequestError: transport or application-level failure
        """
        ...

    async def query_transaction(
        self,
        transaction_id: Optional[str] = None,
        reference: Optional[str] = None,
    ) -> GatewayTransactionStatus:
        """
        Query a transaction by gateway transaction id (preferred) or by our reference.

        Raises:
            GatewayAuthError: no access token could be obtained
            GatewayRequestError: transport or application-level failure
        """
        ...
