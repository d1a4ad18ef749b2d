"""
Secure Logging Module
=====================

Logger setup for the credential subsystem. Every handler carries a
``SecureLogFilter`` so that a password, digest, salt or session token that
reaches a log call is masked before it is written anywhere.

Module loggers are plain ``logging.getLogger("ballotvault.<area>")``
children; ``configure_root_logger`` attaches the handlers once to the
``ballotvault`` parent at process start.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Final, Iterable, Optional, Pattern

from ballotvault.core.config import LoggingConfig


REDACTED: Final[str] = "[REDACTED]"

# (pattern, replacement); keyed patterns keep the key so the line stays readable
_REDACTIONS: Final[tuple[tuple[Pattern[str], str], ...]] = (
    (
        re.compile(
            r'(?i)\b(password|passwd|pwd|password_hash|digest|salt|secret|private[_-]?key)'
            r'(\s*[=:]\s*)["\']?[^\s"\',]+["\']?'
        ),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r'(?i)\b(bearer|token)(\s*[=:]?\s*)[A-Za-z0-9_\-.]{16,}'), rf"\1\2{REDACTED}"),
    # bare digests and salts (base64) or token hashes (hex)
    (re.compile(r'[A-Za-z0-9+/]{40,}={0,2}'), REDACTED),
    (re.compile(r'\b[0-9a-fA-F]{32,}\b'), REDACTED),
)

_FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class SecureLogFilter(logging.Filter):
    """
    Masks credentials in the message template and in string arguments.

    The filter rewrites records in place and always lets them through.
    """

    def __init__(self, name: str = "", extra_patterns: Iterable[Pattern[str]] = ()) -> None:
        super().__init__(name)
        self._extra = tuple(extra_patterns)

    def redact(self, text: str) -> str:
        for pattern, replacement in _REDACTIONS:
            text = pattern.sub(replacement, text)
        for pattern in self._extra:
            text = pattern.sub(REDACTED, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.redact(record.msg)

        args = record.args
        if isinstance(args, dict):
            record.args = {k: self.redact(v) if isinstance(v, str) else v for k, v in args.items()}
        elif isinstance(args, tuple):
            record.args = tuple(self.redact(a) if isinstance(a, str) else a for a in args)

        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, UTC timestamps."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _rotating_file(path: Path, max_bytes: int, backups: int) -> RotatingFileHandler:
    if ".." in path.parts:
        raise ValueError(f"Refusing log path with traversal: {path}")
    path = path.resolve()
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups, encoding="utf-8")


def _attach_handlers(
    logger: logging.Logger,
    log_file: Optional[Path],
    config: LoggingConfig,
) -> None:
    """Add the console and/or file handler selected by ``config`` to ``logger``."""
    secure_filter = SecureLogFilter()
    handlers: list[logging.Handler] = []

    if config.enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(config.format, datefmt="%H:%M:%S"))
        handlers.append(console)

    if config.enable_file and log_file is not None:
        file_handler = _rotating_file(log_file, config.max_file_size_bytes, config.backup_count)
        file_handler.setFormatter(
            JsonLogFormatter() if config.enable_json
            else logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
        )
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(secure_filter)
        logger.addHandler(handler)


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
) -> logging.Logger:
    """
    Return a standalone logger with its own filtered handlers.

    The file, when ``log_dir`` is given, is ``<log_dir>/<name with dots as
    underscores>.log``. Calling again with the same name returns the
    already-configured logger unchanged.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    config = LoggingConfig(
        level=level,
        enable_console=enable_console,
        enable_file=enable_file,
        enable_json=enable_json,
    )
    logger.setLevel(config.level.upper())
    log_file = log_dir / f"{name.replace('.', '_')}.log" if log_dir else None
    _attach_handlers(logger, log_file, config)
    logger.propagate = False
    return logger


def configure_root_logger(
    log_dir: Optional[Path] = None,
    config: Optional[LoggingConfig] = None,
) -> None:
    """
    Replace the handlers of the ``ballotvault`` logger.

    Module loggers reach these handlers through propagation; output goes
    to ``<log_dir>/ballotvault.log`` when a directory is given.
    """
    config = config or LoggingConfig()
    root = logging.getLogger("ballotvault")
    root.setLevel(config.level.upper())
    root.handlers.clear()
    _attach_handlers(root, log_dir / "ballotvault.log" if log_dir else None, config)
