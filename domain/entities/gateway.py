import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: datetime


@dataclass(frozen=True)
class PaymentMethod:
    id: int
    name: str


@dataclass
class GatewaySession:
    """
    Process-wide, best-effort cache of gateway credentials.

    Losing it only costs one extra login; it is never the source of truth.
    """
    access_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    payment_method_id: Optional[int] = None
    method_expires_at: Optional[datetime] = None
    # Serializes logins across every client sharing this session
    refresh_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def token_valid(self, now: datetime, safety_margin: timedelta) -> bool:
        if not self.access_token or not self.token_expires_at:
            return False
        return now < self.token_expires_at - safety_margin

    def method_valid(self, now: datetime) -> bool:
        if self.payment_method_id is None or not self.method_expires_at:
            return False
        return now < self.method_expires_at

    def store_token(self, token: str, expires_at: datetime) -> AccessToken:
        self.access_token = token
        self.token_expires_at = expires_at
        return AccessToken(value=token, expires_at=expires_at)

    def store_method(self, method_id: int, expires_at: datetime) -> int:
        self.payment_method_id = method_id
        self.method_expires_at = expires_at
        return method_id

    def clear_token(self) -> None:
        self.access_token = None
        self.token_expires_at = None

    def clear(self) -> None:
        self.clear_token()
        self.payment_method_id = None
        self.method_expires_at = None


@dataclass(frozen=True)
class OrderLine:
    product: str
    quantity: int
    price_cents: int

    @property
    def total_cents(self) -> int:
        return self.quantity * self.price_cents


@dataclass(frozen=True)
class QrChargeRequest:
    payment_method_id: int
    reference: str
    amount_cents: int
    client_name: str
    document_id: str
    phone: str = ""
    email: str = ""
    order_lines: tuple[OrderLine, ...] = ()


@dataclass(frozen=True)
class QrCharge:
    """Result of a successful QR generation."""
    qr_base64: Optional[str]
    transaction_id: Optional[str]
    expires_at: Optional[datetime]
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GatewayTransactionStatus:
    """Transaction status as reported by the gateway's query endpoint."""
    payment_status: Optional[int]
    description: Optional[str] = None
    amount_cents: Optional[int] = None
    currency_code: Optional[str] = None
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    payer_name: Optional[str] = None
    payer_document: Optional[str] = None
    payer_account: Optional[str] = None
    payer_bank: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    COMPLETED = 1

    @property
    def completed(self) -> bool:
        return self.payment_status == self.COMPLETED

    def payer_metadata(self) -> dict[str, Optional[str]]:
        return {
            "payer_name": self.payer_name,
            "payer_document": self.payer_document,
            "payer_account": self.payer_account,
            "payer_bank": self.payer_bank,
        }
