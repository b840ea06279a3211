from .ledger_repo import LedgerRepository
from .gateway_port import GatewayPort
from .notification_port import NotificationPort
from .metrics_port import MetricsPort
from .logging_port import LoggingPort, BoundLogger

__all__ = ["LedgerRepository", "GatewayPort", "NotificationPort", "MetricsPort", "LoggingPort", "BoundLogger"]
