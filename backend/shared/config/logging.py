"""
Centralized structured logging for the backend.
Uses Python's standard logging with JSON formatting for production.

Every record carries the request correlation id (X-Request-ID) and the
store id when they are bound, so a webhook delivery can be followed
through the background task that reconciles it.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format easily parseable by log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            log_data["request_id"] = request_id
        store_id = getattr(record, "store_id", None)
        if store_id and store_id != "-":
            log_data["store_id"] = store_id

        if hasattr(record, "extra_data") and record.extra_data:
            log_data["data"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if settings.debug:
            log_data["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable colored formatter for development."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    DIM = "\033[2m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now().strftime("%H:%M:%S")

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            request_id_str = f"{self.DIM}[{request_id[:8]}]{self.RESET} "
        else:
            request_id_str = ""

        store_id = getattr(record, "store_id", None)
        store_str = f"{self.DIM}<{store_id}>{self.RESET} " if store_id and store_id != "-" else ""

        message = (
            f"{color}[{timestamp}] {record.levelname:8}{self.RESET} "
            f"{request_id_str}{store_str}{record.name}: {record.getMessage()}"
        )

        if hasattr(record, "extra_data") and record.extra_data:
            data_str = " | ".join(f"{k}={v}" for k, v in record.extra_data.items())
            message += f" ({data_str})"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return message


class StructuredLogger(logging.Logger):
    """
    Logger that accepts keyword context fields:

        logger.info("Order paid", order_id="order_1", source="webhook")
    """

    def _log_with_data(
        self,
        level: int,
        msg: str,
        args: tuple,
        exc_info: Any = None,
        extra: dict | None = None,
        **kwargs: Any,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        if extra is None:
            extra = {}
        extra["extra_data"] = kwargs if kwargs else None
        super()._log(level, msg, args, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.DEBUG, msg, args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.INFO, msg, args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_with_data(logging.WARNING, msg, args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.ERROR, msg, args, exc_info=exc_info, **kwargs)

    def critical(self, msg: str, *args: Any, **kwargs: Any) -> None:
        exc_info = kwargs.pop("exc_info", None)
        self._log_with_data(logging.CRITICAL, msg, args, exc_info=exc_info, **kwargs)


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """
    Configure logging for the application.
    Call this once at application startup.
    """
    # Import here to avoid circular imports
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())

    if settings.environment == "production":
        formatter = StructuredFormatter()
    else:
        formatter = DevelopmentFormatter()

    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a logger instance with the given name.

    Usage:
        from shared.config.logging import get_logger
        logger = get_logger(__name__)

        logger.info("Reserved stock", product_id=12, quantity=2)
        logger.error("Gateway call failed", payment_id="abc", exc_info=True)
    """
    return logging.getLogger(name)  # type: ignore


def mask_token(token: str | None) -> str:
    """
    Mask a gateway access token for logging.

    Shows only the prefix and the last four characters,
    e.g. "APP_USR-1234...-5678" becomes "APP_USR***5678".
    """
    if not token:
        return "<no-token>"
    if len(token) <= 8:
        return "***"
    prefix = token.split("-", 1)[0] if "-" in token else token[:4]
    return f"{prefix}***{token[-4:]}"


# Pre-configured loggers for common modules
rest_api_logger = get_logger("rest_api")
orders_logger = get_logger("rest_api.orders")
payments_logger = get_logger("rest_api.payments")
kitchen_logger = get_logger("rest_api.kitchen")
