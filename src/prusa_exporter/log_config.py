"""Logging setup for the exporter.

Installs a console handler (and optionally a rotating log file) on the
root logger, with a filter that keeps printer credentials out of the
output.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

ENV_LOG_LEVEL = "PRUSA_EXPORTER_LOG_LEVEL"

_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_REDACTED = r"\1***REDACTED***"

# Patterns that match credentials in log messages.
_SCRUB_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r'(api_?key["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE), _REDACTED),
    (re.compile(r'(password["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE), _REDACTED),
    (re.compile(r'(X-Api-Key["\x27]?\s*[:=]\s*["\x27]?)([^"\x27\s,}{\]]+)', re.IGNORECASE), _REDACTED),
    (re.compile(r'(Authorization["\x27]?\s*[:=]\s*["\x27]?Digest\s+)([^\x27\n]+)', re.IGNORECASE), _REDACTED),
]


class ScrubFilter(logging.Filter):
    """Redact API keys, passwords and auth headers as ``***REDACTED***``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg and isinstance(record.msg, str):
            record.msg = scrub(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: scrub(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(scrub(a) if isinstance(a, str) else a for a in record.args)
        return True


def scrub(text: str) -> str:
    """Apply every scrub pattern to *text*."""
    for pattern, replacement in _SCRUB_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def resolve_level(level: Optional[str] = None) -> int:
    """Map a level name (argument, then env, then ``INFO``) to a number."""
    name = level or os.environ.get(ENV_LOG_LEVEL) or "INFO"
    resolved = logging.getLevelName(name.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    *,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """Configure root logging with credential scrubbing.

    Safe to call more than once: handlers are only added the first time
    and the level is updated on every call.

    :param level: Log level name.  Reads ``PRUSA_EXPORTER_LOG_LEVEL``, then
        falls back to ``"INFO"``.
    :param log_file: Optional path of a rotating log file.
    :param max_bytes: Maximum log file size before rotation (default 10 MB).
    :param backup_count: Number of rotated log files to keep (default 5).
    """
    log_level = resolve_level(level)
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    root = logging.getLogger()
    root.setLevel(log_level)

    has_stream = any(
        type(h) is logging.StreamHandler and getattr(h, "_prusa_exporter", False)
        for h in root.handlers
    )
    if not has_stream:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler._prusa_exporter = True  # type: ignore[attr-defined]
        root.addHandler(stream_handler)

    if log_file:
        has_rotating = any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        if not has_rotating:
            directory = os.path.dirname(os.path.abspath(log_file))
            os.makedirs(directory, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    for handler in root.handlers:
        if not any(isinstance(f, ScrubFilter) for f in handler.filters):
            handler.addFilter(ScrubFilter())
