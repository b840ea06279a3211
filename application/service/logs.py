from typing import Any, Optional

from domain.interfaces import BoundLogger, LoggingPort


class NoOpLogger:
    """Fallback when no LoggingPort is wired (tests, scripts)."""

    def debug(self, event: str, **kwargs: Any) -> None: pass
    def info(self, event: str, **kwargs: Any) -> None: pass
    def warning(self, event: str, **kwargs: Any) -> None: pass
    def error(self, event: str, exc_info: bool = False, **kwargs: Any) -> None: pass


def bind_logger(logging_port: Optional[LoggingPort], request_id: Optional[str] = None, **context: Any) -> BoundLogger:
    if logging_port is None:
        return NoOpLogger()
    return logging_port.bind(request_id=request_id or "unknown", **context)
