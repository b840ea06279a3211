from typing_extensions import Protocol
from typing import Any


class BoundLogger(Protocol):
    """Logger carrying bound context (request_id, installment_id, settlement_id, step)."""

    def debug(self, event: str, **kwargs: Any) -> None: ...

    def info(self, event: str, **kwargs: Any) -> None:
        """
        Log an info message.

        Args:
            event: snake_case event name (e.g. "qr_requested")
            **kwargs: Additional context fields
        """
        ...

    def warning(self, event: str, **kwargs: Any) -> None: ...

    def error(self, event: str, exc_info: bool = False, **kwargs: Any) -> None:
        """
        Log an error message.

        Args:
            event: snake_case event name
            exc_info: Whether to include exception info
            **kwargs: Additional context fields
        """
        ...


class LoggingPort(Protocol):
    """Protocol for logging operations."""

    def bind(self, **kwargs: Any) -> BoundLogger:
        """
        Create a bound logger with context.

        Args:
            **kwargs: Context fields to bind to all log messages

        Returns:
            A bound logger with the specified context
        """
        ...
