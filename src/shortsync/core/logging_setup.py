"""
Central logging for shortsync.

- Console handler: INFO..CRITICAL on stderr
- Timed rotated file handler: DEBUG (logs/app.log, daily rotation)
- Action-based file handler: DEBUG (logs/YYYY-MM-DD/<action>_<run_id>.log)
- Secret redaction: masks API keys/tokens/passwords in msg and % args,
  plus any literal secret passed to `build_logger`
- UTC timestamps in ISO-8601
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

_CONTEXT_FIELDS = ("run_id", "action", "dry_run")


class MaskSecretsFilter(logging.Filter):
    """
    Redact common secrets (authorization headers, API keys, passwords) from log records.
    """

    _patterns = [
        re.compile(r"(authorization['\"]?\s*[=:]\s*['\"]?(?:Bearer\s+)?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(api[_-]?key['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
        re.compile(r"(password['\"]?\s*[=:]\s*['\"]?)([^,\s'\"]+)", re.IGNORECASE),
        re.compile(r"(\btoken['\"]?\s*[=:]\s*['\"]?)([A-Za-z0-9._-]+)", re.IGNORECASE),
    ]

    def __init__(self, secrets: Optional[Iterable[str]] = None) -> None:
        super().__init__()
        self._secrets = [s for s in (secrets or ()) if s]

    def _mask(self, text: str) -> str:
        masked = text
        for secret in self._secrets:
            masked = masked.replace(secret, "***REDACTED***")
        for pat in self._patterns:
            masked = pat.sub(r"\1***REDACTED***", masked)
        return masked

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask(str(v)) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._mask(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._mask(record.msg)
        return True


class ContextDefaultsFilter(logging.Filter):
    """Fill run context fields for records emitted outside the LoggerAdapter."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name in _CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, "-")
        return True


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _utc_formatter(fmt: str) -> logging.Formatter:
    f = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%dT%H:%M:%SZ")
    f.converter = time.gmtime  # type: ignore[attr-defined]
    return f


def _level(name: str, default: int) -> int:
    return getattr(logging, str(name).upper(), default)


def _decorate(handler: logging.Handler, level: int, formatter: logging.Formatter, filters: Iterable[logging.Filter]) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    for f in filters:
        handler.addFilter(f)


def _ensure_single_console_handler(
    base_logger: logging.Logger,
    *,
    console_level: str,
    formatter: logging.Formatter,
    filters: Iterable[logging.Filter],
) -> None:
    """
    Make sure there is exactly ONE StreamHandler bound to sys.stderr
    (pytest may close/replace stdio between tests; also avoid duplicates).
    """
    for h in list(base_logger.handlers):
        if type(h) is logging.StreamHandler:
            base_logger.removeHandler(h)
            h.close()

    sh = logging.StreamHandler(stream=sys.stderr)
    _decorate(sh, _level(console_level, logging.INFO), formatter, filters)
    base_logger.addHandler(sh)


def _ensure_app_file_handler(
    base_logger: logging.Logger,
    *,
    base_dir: str,
    file_level: str,
    formatter: logging.Formatter,
    filters: Iterable[logging.Filter],
) -> None:
    """
    Ensure a single TimedRotatingFileHandler points to <base_dir>/app.log.
    A handler left over for another directory is replaced.
    """
    _ensure_dir(base_dir)
    desired = os.path.abspath(os.path.join(base_dir, "app.log"))

    for h in list(base_logger.handlers):
        if isinstance(h, logging.handlers.TimedRotatingFileHandler):
            base_logger.removeHandler(h)
            h.close()

    rh = logging.handlers.TimedRotatingFileHandler(
        desired,
        when="midnight",
        backupCount=14,
        encoding="utf-8",
        utc=True,
        delay=False,
    )
    _decorate(rh, _level(file_level, logging.DEBUG), formatter, filters)
    base_logger.addHandler(rh)


def build_logger(
    *,
    name: str = "shortsync",
    run_id: str,
    action: str,
    base_dir: str = "logs",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    dry_run: bool = False,
    secrets: Optional[Iterable[str]] = None,
) -> logging.LoggerAdapter:
    """
    Configure and return a LoggerAdapter.

    Design:
      - A base logger `<name>` holds console + rotating file handlers; the
        component loggers (`shortsync.http`, `shortsync.fetch`, ...) are its
        children and reach the same sinks.
      - A child logger `<name>.<action>.<run_id>` holds a per-run file handler.
      - Records propagate to the base logger so they appear in all sinks.
    """
    filters = [ContextDefaultsFilter(), MaskSecretsFilter(secrets)]

    fmt = (
        "%(asctime)s | %(levelname)-8s | %(name)s | "
        "run=%(run_id)s action=%(action)s dry_run=%(dry_run)s | "
        "%(message)s"
    )
    formatter = _utc_formatter(fmt)

    base = logging.getLogger(name)
    base.setLevel(logging.DEBUG)

    _ensure_single_console_handler(base, console_level=console_level, formatter=formatter, filters=filters)
    _ensure_app_file_handler(base, base_dir=base_dir, file_level=file_level, formatter=formatter, filters=filters)

    child = logging.getLogger(f"{name}.{action}.{run_id}")
    child.setLevel(logging.DEBUG)
    child.propagate = True

    if not getattr(child, "_shortsync_action_configured", False):
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        dated_dir = os.path.join(base_dir, today)
        _ensure_dir(dated_dir)

        action_file = os.path.join(dated_dir, f"{action}_{run_id}.log")
        Path(action_file).touch(exist_ok=True)
        fh = logging.FileHandler(action_file, encoding="utf-8", delay=False)
        _decorate(fh, _level(file_level, logging.DEBUG), formatter, filters)

        child.addHandler(fh)
        child._shortsync_action_configured = True  # type: ignore[attr-defined]

    adapter = logging.LoggerAdapter(
        child,
        {"run_id": run_id, "action": action, "dry_run": dry_run},
    )
    adapter.debug("Logger initialised")
    return adapter


def component_logger(adapter: logging.LoggerAdapter, component: str) -> logging.LoggerAdapter:
    """Adapter for a component logger (`shortsync.<component>`) sharing the run context."""
    base_name = adapter.logger.name.split(".", 1)[0]
    return logging.LoggerAdapter(logging.getLogger(f"{base_name}.{component}"), dict(adapter.extra or {}))
