"""
Structured Logging with Structlog.

Every event is a snake_case name plus typed key/value context. Context for
the transaction or flow in progress is bound with ``log_context`` and
merged into each entry; signed payloads are never written out in full.
"""

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from storekit_entitlements.config import settings

# Keys whose values are compact JWS strings
_SIGNED_KEYS = frozenset({"jws", "signed_transaction", "signed_renewal_info", "envelope"})
_SIGNED_PREVIEW_CHARS = 16


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with service name and version."""
    event_dict["service"] = settings.service_name
    event_dict["version"] = settings.api_version
    return event_dict


def truncate_signed_payloads(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Replace signed payloads with a short prefix."""
    for key in _SIGNED_KEYS & event_dict.keys():
        value = str(event_dict[key])
        if len(value) > _SIGNED_PREVIEW_CHARS:
            event_dict[key] = f"{value[:_SIGNED_PREVIEW_CHARS]}...({len(value)} chars)"
    return event_dict


def build_processors(log_format: str, log_level: str) -> list[Processor]:
    """Processor chain shared by the JSON and console renderers."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_app_context,
        truncate_signed_payloads,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_level.upper() == "DEBUG":
        processors.append(structlog.processors.ExceptionRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def setup_logging() -> None:
    """
    Configure structlog on top of stdlib logging.

    A JSON entry looks like:
    {
        "event": "consumable_granted",
        "level": "info",
        "timestamp": "2025-11-28T12:00:00.123456Z",
        "logger": "storekit_entitlements.services.reconciler",
        "service": "storekit-entitlements",
        "version": "0.1.0",
        "flow": "purchase",
        "product_id": "com.myapp.coin.100",
        "transaction_id": "2000000123456789",
        "balance_before": 0,
        "balance_after": 100
    }
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    structlog.configure(
        processors=build_processors(settings.log_format, settings.log_level),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structured logger for a module: ``logger = get_logger(__name__)``."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


class log_context:
    """
    Bind structured context for the duration of a block.

    Blocks nest: leaving an inner block restores whatever the outer block
    had bound for the same keys.

    Usage:
        with log_context(flow="purchase", product_id="com.myapp.lifetime"):
            logger.info("purchase_started")
    """

    def __init__(self, **kwargs: Any) -> None:
        self.context = kwargs
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> None:
        self._tokens = structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)
