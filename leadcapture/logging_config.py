"""
Logging setup for the leadcapture package.

Everything logs through children of the 'leadcapture' logger, which writes to
a size-rotated file (logs/leadcapture.log, 5 MB, 3 backups). LOG_LEVEL picks
the level; unknown names fall back to INFO.

Commands and schema setup are wrapped with @log_call, which writes:

    2026-09-17 14:32:01 | DEBUG    | CALL leads_submit | nome='Ana Souza', email='a***@example.com'
    2026-09-17 14:32:01 | INFO     | OK   leads_submit | 42ms
    2026-09-17 14:32:01 | ERROR    | FAIL leads_status | NotFound: lead 9 not found | 3ms

Lead contact data is masked before it reaches the log file.
"""

import functools
import logging
import logging.handlers
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

LOGGER_NAME = "leadcapture"

_LOG_DIR = Path(__file__).parent.parent / "logs"
_LOG_FILE = _LOG_DIR / "leadcapture.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ROTATE_BYTES = 5 * 1024 * 1024
_ROTATE_KEEP = 3

_MASKED_ARGS = {"email", "telefone", "ip_address", "user_agent"}
_EMAIL_RE = re.compile(r"([^\s@'\"]{1})[^\s@'\"]*@([^\s@'\"]+)")
_MAX_ARG_LEN = 80


def _level_from_env(override: Optional[str]) -> int:
    name = (override or os.environ.get("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Attach the rotating file handler to the package logger.

    Safe to call on every CLI invocation: the handler is only added once.
    `level` overrides LOG_LEVEL when given.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if logger.handlers:
        return logger

    _LOG_DIR.mkdir(parents=True, exist_ok=True)
    logger.setLevel(_level_from_env(level))

    handler = logging.handlers.RotatingFileHandler(
        _LOG_FILE, maxBytes=_ROTATE_BYTES, backupCount=_ROTATE_KEEP, encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def mask(value: Any) -> str:
    """repr() of a value with e-mail addresses masked and long output cut short."""
    text = _EMAIL_RE.sub(r"\1***@\2", repr(value))
    if len(text) > _MAX_ARG_LEN:
        text = text[:_MAX_ARG_LEN - 3] + "..."
    return text


def _describe(args, kwargs) -> str:
    parts = [mask(a) for a in args]
    for key, value in kwargs.items():
        if key in _MASKED_ARGS and value:
            parts.append(f"{key}='***'" if key != "email" else f"{key}={mask(value)}")
        else:
            parts.append(f"{key}={mask(value)}")
    return ", ".join(parts) if parts else "(none)"


def log_call(func):
    """Log CALL at DEBUG, OK with elapsed ms at INFO, FAIL at ERROR (re-raised)."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        logger = logging.getLogger(LOGGER_NAME)
        name = func.__name__
        logger.debug(f"CALL {name} | {_describe(args, kwargs)}")
        started = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            elapsed = int((time.perf_counter() - started) * 1000)
            logger.error(f"FAIL {name} | {type(exc).__name__}: {exc} | {elapsed}ms")
            raise
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.info(f"OK   {name} | {elapsed}ms")
        return result

    return wrapper
