"""Structured key=value logging for the webhook service.

Every line carries ``service`` and ``env``. Webhook secrets and signatures are
masked before rendering, and receiver-supplied text is escaped onto one line.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, Callable, MutableMapping

import structlog

REDACTED = "***"
# keys whose values must never reach the log sink
SECRET_KEYS = frozenset({"secret", "signing_secret", "signature", "authorization", "x-webhook-signature"})

_CONTROL_CHARS = str.maketrans({"\\": "\\\\", "\n": "\\n", "\r": "\\r", "\t": "\\t"})

EventDict = MutableMapping[str, Any]


def _escape(value: Any) -> Any:
    return value.translate(_CONTROL_CHARS) if isinstance(value, str) else value


def _clean(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in SECRET_KEYS else _clean(v) for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_clean(item) for item in value]
    return _escape(value)


def redact_processor(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask secret-bearing keys and escape control characters in nested values too."""
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _clean(value)
    return event_dict


def service_fields_processor(service: str, env: str) -> Callable[[Any, str, EventDict], EventDict]:
    def add_service_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        event_dict.setdefault("env", env)
        return event_dict

    return add_service_fields


class SingleLineFormatter(logging.Formatter):
    """Keeps stdlib records (aiohttp, asyncpg tracebacks) on a single line."""

    def format(self, record: logging.LogRecord) -> str:
        return super().format(record).replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(
    level: str = "INFO", *, service: str = "webhook-service", env: str = "development"
) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    logging.getLogger("aiohttp.access").setLevel(logging.INFO)
    # outbound POSTs to receivers are logged by the delivery worker itself
    logging.getLogger("aiohttp.client").setLevel(logging.WARNING)

    # timestamp=... level=info logger=webhook_service.services.delivery event="webhook delivered" service=webhook-service ...
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            service_fields_processor(service, env),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # after format_exc_info so tracebacks are escaped too
            redact_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event", "service", "env"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
