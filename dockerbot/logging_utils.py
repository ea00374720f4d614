"""Shared logging utilities for dockerbot."""

from __future__ import annotations

import contextvars
import json
import logging
import logging.config
import os
from pathlib import Path
from typing import Any, Dict

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "correlation_id", default=None
)


class CorrelationIDFilter(logging.Filter):
    """Inject correlation ID into log records if present."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - tiny
        record.correlation_id = _correlation_id.get(None)
        return True


def set_correlation_id(cid: str | None) -> contextvars.Token:
    """Bind ``cid`` to the current context for log correlation."""
    return _correlation_id.set(cid)


def reset_correlation_id(token: contextvars.Token) -> None:
    _correlation_id.reset(token)


class JSONFormatter(logging.Formatter):
    """Format log records as compact JSON."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        cid = getattr(record, "correlation_id", None)
        if cid:
            data["correlation_id"] = cid
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_ATTRS or key in data or key == "correlation_id":
                continue
            data[key] = value if isinstance(value, (str, int, float, bool)) else repr(value)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data)


_DEFAULT_LOG_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s]: %(message)s"
        },
        "json": {"()": "dockerbot.logging_utils.JSONFormatter"},
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "filters": ["correlation"],
        }
    },
    "root": {"level": "INFO", "handlers": ["console"]},
    "filters": {"correlation": {"()": "dockerbot.logging_utils.CorrelationIDFilter"}},
}


def setup_logging(config_path: str | None = None, level: str | int | None = None) -> None:
    """Configure logging from *config_path* or defaults.

    *config_path* (or ``DOCKERBOT_LOGGING_CONFIG``) names a JSON
    ``dictConfig`` document.  ``DOCKERBOT_JSON_LOGS=1`` switches the console
    handler to :class:`JSONFormatter`.  When *level* is ``None`` the verbosity
    from :func:`dockerbot.config.get_config` is applied."""
    path = Path(config_path or os.getenv("DOCKERBOT_LOGGING_CONFIG", ""))
    cfg: Dict[str, Any] | None = None
    if path.is_file():
        try:
            with open(path, "r", encoding="utf-8") as fh:
                cfg = json.load(fh)
        except (OSError, ValueError) as exc:
            logging.getLogger(__name__).warning(
                "ignoring unreadable logging config %s: %s", path, exc
            )
            cfg = None
    if cfg is None:
        cfg = json.loads(json.dumps(_DEFAULT_LOG_CONFIG))
    if os.getenv("DOCKERBOT_JSON_LOGS") == "1":
        handler = cfg.get("handlers", {}).get("console")
        if isinstance(handler, dict):
            cfg.setdefault("formatters", {})["json"] = {
                "()": "dockerbot.logging_utils.JSONFormatter"
            }
            handler["formatter"] = "json"
    logging.config.dictConfig(cfg)
    if level is None:
        from .config import get_config

        level = get_config().logging.verbosity
    if isinstance(level, int):
        logging.getLogger().setLevel(level)
    else:
        logging.getLogger().setLevel(getattr(logging, str(level).upper(), logging.INFO))


_def_configured = False


def get_logger(name: str) -> logging.Logger:
    """Return logger configured via :func:`setup_logging`."""
    global _def_configured
    if not _def_configured and not logging.getLogger().handlers:
        setup_logging(level=logging.INFO)
        _def_configured = True
    return logging.getLogger(name)


_RESERVED_LOG_ATTRS = set(
    logging.LogRecord(
        name="", level=logging.INFO, pathname="", lineno=0, msg="", args=(), exc_info=None
    ).__dict__
)
# These are injected by the logging framework during formatting.
_RESERVED_LOG_ATTRS.update({"message", "asctime"})


def _safe_key(key: str, existing: Dict[str, Any]) -> str:
    """Return a key that will not clash with :class:`logging.LogRecord` fields."""

    if key not in _RESERVED_LOG_ATTRS and key not in existing:
        return key

    base = f"extra_{key}"
    if base not in _RESERVED_LOG_ATTRS and base not in existing:
        return base

    idx = 1
    candidate = f"{base}_{idx}"
    while candidate in _RESERVED_LOG_ATTRS or candidate in existing:
        idx += 1
        candidate = f"{base}_{idx}"
    return candidate


def log_record(**fields: Any) -> Dict[str, Any]:
    """Return *fields* sanitized for use with ``Logger.extra``."""

    safe: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        safe[_safe_key(key, safe)] = value
    return safe


__all__ = [
    "setup_logging",
    "get_logger",
    "log_record",
    "JSONFormatter",
    "set_correlation_id",
    "reset_correlation_id",
    "CorrelationIDFilter",
]
