import logging, sys
from typing import Any

import structlog

from domain.config import AppConfig, get_app_config

# Gateway credentials that must never reach the log sink
SENSITIVE_KEYS = frozenset({
    "access_token", "accessToken", "authorization", "Authorization",
    "tcTokenService", "tcTokenSecret", "token_secret", "password",
})
MASK = "***"


def redact_sensitive(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = MASK
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = {k: MASK if k in SENSITIVE_KEYS else v for k, v in headers.items()}
    return event_dict


def configure_logging(config: AppConfig) -> None:
    level = getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if config.log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    # request_id arrives through contextvars bound by the HTTP layer
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )


_config = get_app_config()
configure_logging(_config)
logger = structlog.get_logger().bind(service=_config.service_name)
