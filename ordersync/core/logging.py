"""Loguru logging for the sync engine.

Loggers bound with sync context (``tenant``, ``sync_class``, ``category``)
render it after the component name, e.g. ``orchestrator [shop-a/full/orders]``.
Warnings and errors that carry a tenant are also kept as JSON lines in
``sync_events.jsonl`` so a tenant's failure trail can be grepped after the fact.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from ordersync.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[name]}{extra[scope]}:{function}:{line} | {message}"

LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
LEVEL_ALIASES = {"WARN": "WARNING", "FATAL": "CRITICAL"}

# Chatty third-party loggers routed through loguru
INTERCEPTED = ["uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "alembic"]

_logging_configured = False


class InterceptHandler(logging.Handler):
    """Redirect stdlib logs to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_name == "emit":
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def sync_scope(extra: dict) -> str:
    """`` [tenant/sync_class/category]`` for records bound to a sync, else empty."""
    tenant = extra.get("tenant")
    if not tenant:
        return ""
    parts = [str(tenant)] + [str(extra[key]) for key in ("sync_class", "category") if extra.get(key)]
    return f" [{'/'.join(parts)}]"


def _add_scope(record: dict) -> None:
    record["extra"]["scope"] = sync_scope(record["extra"])


def _has_tenant(record: dict) -> bool:
    return bool(record["extra"].get("tenant"))


def _slack_sink(message: Any) -> None:
    if not settings.SLACK_WEBHOOK_URL:
        return

    record = message.record
    name = record["extra"].get("name") or record.get("name", "ordersync")
    text = f"[{record['level'].name}] {name}{sync_scope(record['extra'])}: {record['message']}"
    try:
        httpx.post(
            settings.SLACK_WEBHOOK_URL,
            json={"text": text},
            timeout=5.0,
        )
    except httpx.HTTPError:
        # Logging here would re-enter this sink
        pass


def resolve_level(raw: str | None, production: bool = False) -> str:
    """Normalize a LOG_LEVEL value. Production never logs below INFO."""
    level = (raw or "INFO").strip().upper()
    level = LEVEL_ALIASES.get(level, level)
    if level not in LEVELS:
        level = "INFO"
    if production and level in {"TRACE", "DEBUG"}:
        level = "INFO"
    return level


def configure_logging() -> None:
    global _logging_configured

    if _logging_configured:
        return
    _logging_configured = True

    log_dir = Path(settings.LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = resolve_level(settings.LOG_LEVEL, settings.is_production)

    logger.remove()
    logger.configure(extra={"name": "ordersync", "scope": ""}, patcher=_add_scope)
    logger.add(
        sys.stdout,
        level=level,
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    logger.add(
        log_dir / "sync.log",
        level=level,
        format=LOG_FORMAT,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )
    logger.add(
        log_dir / "sync_events.jsonl",
        level="WARNING",
        filter=_has_tenant,
        serialize=True,
        rotation="50 MB",
        retention="30 days",
        enqueue=True,
    )

    if settings.SLACK_WEBHOOK_URL:
        logger.add(_slack_sink, level="ERROR", enqueue=True)

    # Intercept stdlib logging and disable propagation to avoid duplicates
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for logger_name in INTERCEPTED:
        logging.getLogger(logger_name).handlers = [InterceptHandler()]
        logging.getLogger(logger_name).propagate = False


def get_logger(name: str, **context: Any) -> logger.__class__:
    """Component logger; pass ``tenant``/``sync_class``/``category`` to scope it to one sync."""
    return logger.bind(name=name, **context)


configure_logging()
