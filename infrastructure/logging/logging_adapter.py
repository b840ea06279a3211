"""
Logging adapter that implements LoggingPort protocol.

Application services log through this adapter so they never import structlog directly.
"""
from typing import Any
from domain.interfaces import BoundLogger
from infrastructure.logging.structlog_logs import logger as structlog_logger


class StructlogBoundLogger:
    """Wrapper for a structlog bound logger that implements BoundLogger."""

    def __init__(self, bound_logger):
        self._logger = bound_logger

    def debug(self, event: str, **kwargs: Any) -> None:
        self._logger.debug(event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._logger.info(event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._logger.warning(event, **kwargs)

    def error(self, event: str, exc_info: bool = False, **kwargs: Any) -> None:
        self._logger.error(event, exc_info=exc_info, **kwargs)

    def bind(self, **kwargs: Any) -> 'StructlogBoundLogger':
        """Add more context (e.g. settlement_id once it is known)."""
        return StructlogBoundLogger(self._logger.bind(**kwargs))


class LoggingAdapter:
    """
    Adapter that implements LoggingPort for structured JSON logging.

    Args to bind() become fields on every line logged through the returned logger.
    """

    def bind(self, **kwargs: Any) -> BoundLogger:
        bound_logger = structlog_logger.bind(**kwargs)
        return StructlogBoundLogger(bound_logger)
