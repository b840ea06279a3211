"""
Configuration module for the installment settlement service.

All configuration values are loaded from environment variables with sensible defaults.
See .env.example for all available configuration options.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal


def _get_float(key: str, default: float) -> float:
    """Get float from environment variable."""
    return float(os.getenv(key, default))


def _get_int(key: str, default: int) -> int:
    """Get int from environment variable."""
    return int(os.getenv(key, default))


def _get_str(key: str, default: str) -> str:
    """Get string from environment variable."""
    return os.getenv(key, default)


def _get_bool(key: str, default: bool) -> bool:
    """Get bool from environment variable ("1", "true", "yes" are truthy)."""
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_decimal(key: str, default: str) -> Decimal:
    """Get Decimal from environment variable."""
    return Decimal(os.getenv(key, default))


@dataclass
class PlanConfig:
    """Payment plan generation rules."""

    # Allowed drift between the plan total and the sum of its installments (cents)
    epsilon_cents: int = field(default_factory=lambda: _get_int("PLAN_EPSILON_CENTS", 1))

    # Up-front deposit share of the final amount and its payment window
    upfront_ratio: Decimal = field(default_factory=lambda: _get_decimal("PLAN_UPFRONT_RATIO", "0.20"))
    upfront_due_days: int = field(default_factory=lambda: _get_int("PLAN_UPFRONT_DUE_DAYS", 15))

    # Installment count bounds offered at enrollment
    min_installments: int = field(default_factory=lambda: _get_int("PLAN_MIN_INSTALLMENTS", 1))
    max_installments: int = field(default_factory=lambda: _get_int("PLAN_MAX_INSTALLMENTS", 12))


@dataclass
class GatewayConfig:
    """QR payment gateway (PagoFacil v2) settings."""

    base_url: str = field(default_factory=lambda: _get_str(
        "PAGO_FACIL_BASE_URL", "https://masterqr.pagofacil.com.bo/api/services/v2"))
    login_path: str = field(default_factory=lambda: _get_str("PAGO_FACIL_LOGIN_PATH", "/login"))
    list_methods_path: str = field(default_factory=lambda: _get_str(
        "PAGO_FACIL_LIST_METHODS_PATH", "/list-enabled-services"))
    generate_qr_path: str = field(default_factory=lambda: _get_str("PAGO_FACIL_QR_PATH", "/generate-qr"))
    query_path: str = field(default_factory=lambda: _get_str("PAGO_FACIL_QUERY_PATH", "/query-transaction"))

    # Static service credentials sent as headers on login
    token_service: str = field(default_factory=lambda: _get_str("PAGO_FACIL_TCTOKEN_SERVICE", ""))
    token_secret: str = field(default_factory=lambda: _get_str("PAGO_FACIL_TCTOKEN_SECRET", ""))

    client_code: str = field(default_factory=lambda: _get_str("PAGO_FACIL_CLIENT_CODE", ""))
    callback_url: str = field(default_factory=lambda: _get_str(
        "PAGO_FACIL_CALLBACK_URL", "http://localhost:8000/v1/payments/callback"))

    default_payment_method_id: int = field(default_factory=lambda: _get_int("PAGO_FACIL_PAYMENT_METHOD_ID", 4))
    currency_code: int = field(default_factory=lambda: _get_int("PAGO_FACIL_CURRENCY", 2))  # 2 = BOB
    document_type: int = field(default_factory=lambda: _get_int("PAGO_FACIL_DOCUMENT_TYPE", 1))  # 1 = CI

    connect_timeout: float = field(default_factory=lambda: _get_float("PAGO_FACIL_CONNECT_TIMEOUT", 3.0))
    read_timeout: float = field(default_factory=lambda: _get_float("PAGO_FACIL_READ_TIMEOUT", 15.0))

    # Token is renewed this many minutes before the gateway-reported expiry
    token_safety_margin_minutes: int = field(default_factory=lambda: _get_int("PAGO_FACIL_TOKEN_MARGIN_MINUTES", 5))
    default_token_minutes: int = field(default_factory=lambda: _get_int("PAGO_FACIL_TOKEN_MINUTES", 200))
    method_cache_hours: int = field(default_factory=lambda: _get_int("PAGO_FACIL_METHOD_CACHE_HOURS", 24))

    # Retries for idempotent calls (login, list methods, query transaction)
    retry_attempts: int = field(default_factory=lambda: _get_int("PAGO_FACIL_RETRY_ATTEMPTS", 3))
    retry_backoff_seconds: float = field(default_factory=lambda: _get_float("PAGO_FACIL_RETRY_BACKOFF", 0.5))


@dataclass
class SettlementConfig:
    """Settlement orchestration settings."""

    reference_min: int = field(default_factory=lambda: _get_int("SETTLEMENT_REFERENCE_MIN", 188888889))
    reference_max: int = field(default_factory=lambda: _get_int("SETTLEMENT_REFERENCE_MAX", 999999999))
    reference_attempts: int = field(default_factory=lambda: _get_int("SETTLEMENT_REFERENCE_ATTEMPTS", 20))

    # A QR request without an issued QR counts as in flight for this long
    in_flight_seconds: int = field(default_factory=lambda: _get_int("SETTLEMENT_IN_FLIGHT_SECONDS", 60))

    # Allowed drift between the expected and the gateway-reported amount (cents)
    reconciliation_epsilon_cents: int = field(default_factory=lambda: _get_int("SETTLEMENT_EPSILON_CENTS", 1))


@dataclass
class NotificationConfig:
    """Notification sink delivery settings."""

    sink_url: str = field(default_factory=lambda: _get_str("NOTIFICATION_SINK_URL", "http://localhost:8002/notifications"))
    max_attempts: int = field(default_factory=lambda: _get_int("NOTIFICATION_MAX_ATTEMPTS", 5))
    backoff_seconds: float = field(default_factory=lambda: _get_float("NOTIFICATION_BACKOFF", 1.0))
    connect_timeout: float = field(default_factory=lambda: _get_float("NOTIFICATION_CONNECT_TIMEOUT", 2.0))
    read_timeout: float = field(default_factory=lambda: _get_float("NOTIFICATION_READ_TIMEOUT", 5.0))


@dataclass
class AppConfig:
    """Process-level settings."""
    debug: bool = field(default_factory=lambda: _get_bool("APP_DEBUG", False))
    service_name: str = field(default_factory=lambda: _get_str("SERVICE_NAME", "cuotas-gateway"))
    log_level: str = field(default_factory=lambda: _get_str("LOG_LEVEL", "INFO").upper())
    # "json" in deployments, "console" for local runs
    log_format: str = field(default_factory=lambda: _get_str("LOG_FORMAT", "json").lower())


@dataclass
class DatabaseConfig:
    """Relational store settings. DATABASE_URL wins over the DB_* parts."""

    host: str = field(default_factory=lambda: _get_str("DB_HOST", "localhost"))
    port: int = field(default_factory=lambda: _get_int("DB_PORT", 5432))
    user: str = field(default_factory=lambda: _get_str("DB_USER", "postgres"))
    password: str = field(default_factory=lambda: _get_str("DB_PASSWORD", "postgres"))
    name: str = field(default_factory=lambda: _get_str("DB_NAME", "cuotas"))
    explicit_url: str = field(default_factory=lambda: _get_str("DATABASE_URL", ""))
    echo: bool = field(default_factory=lambda: _get_bool("DB_ECHO", False))
    pool_size: int = field(default_factory=lambda: _get_int("DB_POOL_SIZE", 5))

    @property
    def url(self) -> str:
        if self.explicit_url:
            return self.explicit_url
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


# Global config instances (lazy loaded)
_plan_config = None
_gateway_config = None
_settlement_config = None
_notification_config = None
_app_config = None
_database_config = None


def get_plan_config() -> PlanConfig:
    """Get payment plan configuration."""
    global _plan_config
    if _plan_config is None:
        _plan_config = PlanConfig()
    return _plan_config


def get_gateway_config() -> GatewayConfig:
    """Get gateway configuration."""
    global _gateway_config
    if _gateway_config is None:
        _gateway_config = GatewayConfig()
    return _gateway_config


def get_settlement_config() -> SettlementConfig:
    """Get settlement configuration."""
    global _settlement_config
    if _settlement_config is None:
        _settlement_config = SettlementConfig()
    return _settlement_config


def get_notification_config() -> NotificationConfig:
    """Get notification sink configuration."""
    global _notification_config
    if _notification_config is None:
        _notification_config = NotificationConfig()
    return _notification_config


def get_app_config() -> AppConfig:
    """Get process-level configuration."""
    global _app_config
    if _app_config is None:
        _app_config = AppConfig()
    return _app_config


def get_database_config() -> DatabaseConfig:
    """Get database configuration."""
    global _database_config
    if _database_config is None:
        _database_config = DatabaseConfig()
    return _database_config


def reload_config():
    """Force reload of all configuration from environment variables."""
    global _plan_config, _gateway_config, _settlement_config, _notification_config, _app_config, _database_config
    _plan_config = PlanConfig()
    _gateway_config = GatewayConfig()
    _settlement_config = SettlementConfig()
    _notification_config = NotificationConfig()
    _app_config = AppConfig()
    _database_config = DatabaseConfig()
