from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from wa_bot.config import get_log_path, load_config

TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(correlation_id)s | %(sender_key)s | %(name)s | %(message)s"

# Bound per inbound message so every log line of one dispatch can be grouped,
# and every line of one conversation found by sender.
_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")
_sender_key: ContextVar[str] = ContextVar("sender_key", default="")


def get_correlation_id() -> str:
    """Get the current correlation ID, or generate one if not set."""
    cid = _correlation_id.get()
    if not cid:
        cid = uuid.uuid4().hex[:12]
        _correlation_id.set(cid)
    return cid


def get_sender_key() -> str:
    return _sender_key.get()


@contextmanager
def message_context(message_id: str | None = None, sender_key: str | None = None) -> Generator[str, None, None]:
    """Bind the message's correlation ID and sender while it is handled.

    Messages without an id get a fresh one. Yields the bound correlation ID.
    """
    cid_token = _correlation_id.set(message_id or uuid.uuid4().hex[:12])
    sender_token = _sender_key.set(sender_key or "")
    try:
        yield _correlation_id.get()
    finally:
        _sender_key.reset(sender_token)
        _correlation_id.reset(cid_token)


class MessageContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation_id.get() or "-"
        record.sender_key = _sender_key.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """JSON log lines for machine parsing."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "sender_key": getattr(record, "sender_key", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            log_entry["data"] = record.extra_data
        return json.dumps(log_entry, ensure_ascii=False)


def configure_logging(config: dict[str, Any] | None = None) -> None:
    cfg = config or load_config()
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    if root.handlers:
        # build_bot may run more than once per process (tests, reloads).
        return

    fmt: logging.Formatter
    if log_cfg.get("json_format", False):
        fmt = StructuredFormatter()
    else:
        fmt = logging.Formatter(TEXT_FORMAT)

    log_path = get_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handlers: list[logging.Handler] = [
        logging.StreamHandler(),
        RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"),
    ]
    context_filter = MessageContextFilter()
    for handler in handlers:
        handler.setFormatter(fmt)
        handler.addFilter(context_filter)
        root.addHandler(handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """Log a message with structured context attached as ``extra_data``."""
    if not logger.isEnabledFor(level):
        return
    logger.log(level, message, extra={"extra_data": extra})
