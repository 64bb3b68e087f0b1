from __future__ import annotations

"""Logging setup for the practice core: context-tagged records, JSON output, dev file logs."""

from typing import Any, Dict, Optional
from pathlib import Path
from enum import Enum
import contextvars
import dataclasses
import json
import logging
import logging.config
import os
from datetime import date, datetime, timezone

from src.backend.config import PROJECT_ROOT

DEV_ENVS = {"dev", "development", "local", "test"}

DEFAULT_LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(filename)s:%(lineno)d "
    "session=%(session_id)s score=%(score_id)s %(message)s"
)

_CONTEXT_FIELDS = ("session_id", "score_id")

_context: Dict[str, contextvars.ContextVar] = {
    name: contextvars.ContextVar(f"log_{name}", default="-") for name in _CONTEXT_FIELDS
}

_STANDARD_LOG_RECORD_KEYS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def summarize_payload(value: Any, *, max_items: int = 20, max_str: int = 200, depth: int = 3) -> Any:
    """Shrink a payload to something safe to put in a log line.

    Dataclasses (sessions, aggregates, extracted notes) are reduced to their
    fields; long sequences collapse to their length plus a short sample.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if depth <= 0:
        return f"<{type(value).__name__}>"
    nested = dict(max_items=max_items, max_str=max_str, depth=depth - 1)
    if isinstance(value, dict):
        summary = {
            str(key): summarize_payload(item, **nested)
            for key, item in list(value.items())[:max_items]
        }
        if len(value) > max_items:
            summary["__len__"] = len(value)
        return summary
    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        if len(items) > max_items:
            return {
                "__len__": len(items),
                "sample": [summarize_payload(item, **nested) for item in items[:5]],
            }
        return [summarize_payload(item, **nested) for item in items]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, str):
        return value if len(value) <= max_str else value[:max_str] + "...(truncated)"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    return value


def set_log_context(*, session_id: Optional[str] = None, score_id: Optional[str] = None) -> None:
    """Tag records emitted from this context with the active session and score."""
    for name, value in (("session_id", session_id), ("score_id", score_id)):
        if value is not None:
            _context[name].set(value)


def clear_log_context() -> None:
    for var in _context.values():
        var.set("-")


class LoggingContextFilter(logging.Filter):
    """Copy the session/score context onto each record."""
    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _context.items():
            setattr(record, name, var.get())
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context fields and ``extra=`` values included."""
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "severity": record.levelname,
            "logger": record.name,
            "location": f"{record.filename}:{record.lineno}",
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            payload[name] = getattr(record, name, "-")
        for key, value in record.__dict__.items():
            if key not in _STANDARD_LOG_RECORD_KEYS and key not in payload:
                payload[key] = summarize_payload(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def app_env() -> str:
    return (os.getenv("APP_ENV") or os.getenv("ENV") or "dev").lower()


def is_dev_env() -> bool:
    return app_env() in DEV_ENVS


def _use_json_logs() -> bool:
    return os.getenv("LOG_FORMAT", "").lower() == "json" or os.getenv(
        "LOG_JSON", ""
    ).lower() in {"1", "true", "yes"}


def build_formatter() -> logging.Formatter:
    if _use_json_logs():
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def attach_context_filter(handler: logging.Handler) -> None:
    if not any(isinstance(f, LoggingContextFilter) for f in handler.filters):
        handler.addFilter(LoggingContextFilter())


def _log_config_path() -> Path:
    override = os.getenv("LOG_CONFIG")
    if override:
        path = Path(override)
        return path if path.is_absolute() else PROJECT_ROOT / path
    name = "logging.prod.json" if app_env() in {"prod", "production"} else "logging.dev.json"
    return PROJECT_ROOT / "config" / name


def configure_logging() -> None:
    """Configure the root logger from ``config/logging.<env>.json``.

    Without a config file the root logger falls back to ``basicConfig`` at
    INFO. ``PRACTICE_LOG_LEVEL`` overrides the root level in both cases and
    every root handler gets the context filter.
    """
    config_path = _log_config_path()
    root = logging.getLogger()
    if config_path.exists():
        config = json.loads(config_path.read_text(encoding="utf-8"))
        if _use_json_logs() and "json" in config.get("formatters", {}):
            for handler in config.get("handlers", {}).values():
                handler["formatter"] = "json"
        logging.config.dictConfig(config)
    else:
        logging.basicConfig(level=logging.INFO)
        formatter = build_formatter()
        for handler in root.handlers:
            handler.setFormatter(formatter)
    level_override = os.getenv("PRACTICE_LOG_LEVEL")
    if level_override:
        root.setLevel(level_override.upper())
    for handler in root.handlers:
        attach_context_filter(handler)


def get_logger(module_name: str) -> logging.Logger:
    """Return a module logger.

    In dev-like environments the logger also writes to
    ``$PRACTICE_LOG_DIR/<module>.log`` (``logs/`` by default); elsewhere it
    only propagates to the root handlers.
    """
    logger = logging.getLogger(module_name)
    logger.propagate = True
    if getattr(logger, "_file_handler_attached", False) or not is_dev_env():
        return logger
    log_dir = Path(os.getenv("PRACTICE_LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)
    filename = module_name.replace(".", "_") + ".log"
    handler = logging.FileHandler(log_dir / filename, encoding="utf-8", delay=True)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(build_formatter())
    attach_context_filter(handler)
    logger.addHandler(handler)
    setattr(logger, "_file_handler_attached", True)
    return logger
