"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (machine-parseable)
    • Pretty console logs for development (human-readable)
    • Service / environment fields on every line
    • Context fields (trace_id, request_id, user_id) via contextvars
    • Per-message sampling and a size/age/count-bounded rotating file sink
    • Key/value "sugared" logging

Logging is configured once, explicitly, by the entry point. Nothing here
configures itself on first use: a module that logs before init_logging()
ran gets the stdlib defaults.

Usage:
    from backend.app.core.logging_config import init_logging, prod_config, get_logger

    init_logging(prod_config())
    logger = get_logger(__name__)
    logger.info("MinIO client initialised")

    log = get_sugared_logger(__name__)
    log.info("bucket created", bucket="raw-data", region="us-east-1")
"""

from __future__ import annotations

import gzip
import json
import logging
import logging.handlers
import os
import shutil
import sys
import threading
import time
import traceback
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

SERVICE_LOGGER = "backend"

# Defaults applied to unset rotation values
DEFAULT_MAX_SIZE_MB = 128
DEFAULT_MAX_BACKUPS = 7
DEFAULT_MAX_AGE_DAYS = 7

# Sampling: per message per tick, let the first N through, then every Mth
SAMPLING_TICK_SECONDS = 1.0
SAMPLING_INITIAL = 100
SAMPLING_THEREAFTER = 100


# ═══════════════════════════════════════════════════════════════════════════
# Configuration
# ═══════════════════════════════════════════════════════════════════════════

class FileRotateConfig(BaseModel):
    filename: str = ""
    max_size: int = 0  # MB
    max_backups: int = 0
    max_age: int = 0  # days
    compress: bool = False
    enable: bool = False


class LogConfig(BaseModel):
    level: str = "info"  # debug | info | warn | error
    encoding: str = "json"  # json | console
    development: bool = False
    enable_caller: bool = False
    enable_stacktrace: bool = False
    sampling: bool = False
    output_paths: List[str] = Field(default_factory=lambda: ["stdout"])
    error_output_paths: List[str] = Field(default_factory=list)
    service_name: str = ""
    environment: str = ""
    file: FileRotateConfig = Field(default_factory=FileRotateConfig)


def dev_config() -> LogConfig:
    """Verbose, human-readable, no file."""
    return LogConfig(
        level="debug",
        encoding="console",
        development=True,
        enable_caller=True,
        enable_stacktrace=False,
        sampling=False,
        output_paths=["stdout"],
        error_output_paths=["stderr"],
        service_name="backend",
        environment="dev",
    )


def prod_config() -> LogConfig:
    """Info-level, structured, sampled, rotating file enabled."""
    return LogConfig(
        level="info",
        encoding="json",
        development=False,
        enable_caller=True,
        enable_stacktrace=True,
        sampling=True,
        output_paths=["stdout"],
        error_output_paths=["stderr"],
        service_name="backend",
        environment="prod",
        file=FileRotateConfig(
            enable=True,
            filename="./logs/app.log",
            max_size=256,
            max_backups=10,
            max_age=14,
            compress=True,
        ),
    )


PRESETS = {
    "dev": dev_config,
    "development": dev_config,
    "prod": prod_config,
    "production": prod_config,
}


def preset(name: str) -> LogConfig:
    """Look up a named preset (dev | prod)."""
    try:
        return PRESETS[name.lower()]()
    except KeyError:
        raise ValueError(f"unknown log preset {name!r}, expected one of {sorted(PRESETS)}") from None


def parse_level(lv: str) -> int:
    """Map a level name to a logging level; unknown names fall back to INFO."""
    return {
        "debug": logging.DEBUG,
        "warn": logging.WARNING,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }.get((lv or "").lower(), logging.INFO)


# ═══════════════════════════════════════════════════════════════════════════
# Context fields
# ═══════════════════════════════════════════════════════════════════════════

CONTEXT_KEYS = ("trace_id", "request_id", "user_id")

_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def bind_context(**kwargs: Any) -> None:
    """Attach trace_id / request_id / user_id to every record in this context."""
    unknown = set(kwargs) - set(CONTEXT_KEYS)
    if unknown:
        raise ValueError(f"unsupported context keys: {sorted(unknown)}")
    merged = {**_log_context.get(), **{k: v for k, v in kwargs.items() if v}}
    _log_context.set(merged)


def clear_context() -> None:
    _log_context.set({})


def get_context() -> Dict[str, Any]:
    return _log_context.get()


# ═══════════════════════════════════════════════════════════════════════════
# Filters
# ═══════════════════════════════════════════════════════════════════════════

class ServiceFieldsFilter(logging.Filter):
    """Stamp svc / env and the bound context onto each record."""

    def __init__(self, service_name: str, environment: str):
        super().__init__()
        self.service_name = service_name
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.svc = self.service_name
        record.env = self.environment
        if not hasattr(record, "context"):
            record.context = dict(get_context())
        return True


class SamplingFilter(logging.Filter):
    """
    Drop repeated messages under load.

    Within each tick, the first `initial` records with a given
    (level, message) pass; after that only every `thereafter`-th does.
    Counters only cover the current tick and are dropped when it advances.
    The decision is cached on the record so one filter instance can be
    shared by several handlers.
    """

    def __init__(
        self,
        initial: int = SAMPLING_INITIAL,
        thereafter: int = SAMPLING_THEREAFTER,
        tick: float = SAMPLING_TICK_SECONDS,
    ):
        super().__init__()
        self.initial = initial
        self.thereafter = thereafter
        self.tick = tick
        self._window: Optional[int] = None
        self._counts: Dict[Tuple[int, str], int] = {}
        self._lock = threading.Lock()

    def filter(self, record: logging.LogRecord) -> bool:
        keep = getattr(record, "_sample_keep", None)
        if keep is None:
            keep = self._decide(record)
            record._sample_keep = keep
        return keep

    def _decide(self, record: logging.LogRecord) -> bool:
        window = int(record.created // self.tick)
        key = (record.levelno, str(record.msg))
        with self._lock:
            if self._window is None or window > self._window:
                self._window = window
                self._counts.clear()
            n = self._counts.get(key, 0) + 1
            self._counts[key] = n
        if n <= self.initial:
            return True
        return (n - self.initial) % self.thereafter == 0


class StacktraceFilter(logging.Filter):
    """Attach the caller's stack to ERROR and above when none is present."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR and not record.exc_info and not record.stack_info:
            record.stack_info = _stack_outside_logging()
        return True


_INTERNAL_FILES = {
    os.path.normcase(logging.__file__),
    os.path.normcase(__file__),
}


def _stack_outside_logging() -> str:
    frame = sys._getframe(1)
    while frame is not None and os.path.normcase(frame.f_code.co_filename) in _INTERNAL_FILES:
        frame = frame.f_back
    return "Stack (most recent call last):\n" + "".join(traceback.format_stack(frame)).rstrip()


# ═══════════════════════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════════════════════

def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created).astimezone().isoformat()


class JSONFormatter(logging.Formatter):
    """Machine-parseable JSON log output for log aggregation (ELK, Loki)."""

    def __init__(self, enable_caller: bool = False):
        super().__init__()
        self.enable_caller = enable_caller

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
            "svc": getattr(record, "svc", ""),
            "env": getattr(record, "env", ""),
        }

        if self.enable_caller:
            log_entry["caller"] = f"{record.module}.py:{record.lineno}"
            log_entry["function"] = record.funcName

        # Context and user fields never overwrite the keys above
        for extras in (getattr(record, "context", None), getattr(record, "fields", None)):
            for key, value in (extras or {}).items():
                log_entry.setdefault(key, value)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
            log_entry["stack"] = self.formatException(record.exc_info)
        elif record.stack_info:
            log_entry["stack"] = record.stack_info

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    """Coloured human-readable format for local development."""

    COLORS = {
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "CRITICAL": "\033[35m", # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True, enable_caller: bool = False):
        super().__init__()
        self.color = color
        self.enable_caller = enable_caller

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%H:%M:%S")
        level = f"{record.levelname:8s}"
        if self.color:
            level = f"{self.COLORS.get(record.levelname, self.RESET)}{level}{self.RESET}"

        parts = [ts, level]
        if self.enable_caller:
            parts.append(f"{record.module}.py:{record.lineno}")
        parts.append(f"{record.name}: {record.getMessage()}")
        formatted = " ".join(parts)

        extras = {**(getattr(record, "context", None) or {}), **(getattr(record, "fields", None) or {})}
        if extras:
            formatted += " " + " ".join(f"{k}={v}" for k, v in extras.items())

        if record.exc_info and record.exc_info[1]:
            formatted += "\n" + self.formatException(record.exc_info)
        elif record.stack_info:
            formatted += "\n" + record.stack_info

        return formatted


# ═══════════════════════════════════════════════════════════════════════════
# Handlers
# ═══════════════════════════════════════════════════════════════════════════

def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as f_in, gzip.open(dest, "wb") as f_out:
        shutil.copyfileobj(f_in, f_out)
    os.remove(source)


class RotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Size-bounded rotation with a backup count, age-based pruning and optional gzip."""

    def __init__(
        self,
        filename: str,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        max_backups: int = DEFAULT_MAX_BACKUPS,
        max_age_days: int = DEFAULT_MAX_AGE_DAYS,
        compress: bool = False,
    ):
        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        super().__init__(
            filename,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=max_backups,
            encoding="utf-8",
            delay=True,
        )
        self.max_age_days = max_age_days
        if compress:
            self.namer = lambda name: name + ".gz"
            self.rotator = _gzip_rotator

    def doRollover(self) -> None:
        super().doRollover()
        self.prune_expired()

    def prune_expired(self) -> int:
        """Delete rotated backups older than max_age_days. Returns the count removed."""
        if self.max_age_days <= 0:
            return 0
        cutoff = time.time() - self.max_age_days * 86400
        base = Path(self.baseFilename)
        removed = 0
        for backup in base.parent.glob(base.name + ".*"):
            if backup.stat().st_mtime < cutoff:
                backup.unlink()
                removed += 1
        return removed


def _default_int(v: int, default: int) -> int:
    return v if v > 0 else default


def handler_for(path: str) -> logging.Handler:
    """stdout / stderr stream, or a rotating file with default bounds."""
    lowered = path.lower()
    if lowered == "stdout":
        return logging.StreamHandler(sys.stdout)
    if lowered == "stderr":
        return logging.StreamHandler(sys.stderr)
    return RotatingFileHandler(path, compress=True)


def build_handlers(config: LogConfig) -> List[logging.Handler]:
    """
    Build handlers from a LogConfig without touching global logging state.

    Every record at or above the level reaches every output path and the
    rotating file. error_output_paths are extra sinks that also receive
    ERROR and above.
    """
    level = parse_level(config.level)

    if config.encoding.lower() == "console":
        formatter: logging.Formatter = PrettyFormatter(
            color=config.development, enable_caller=config.enable_caller,
        )
    else:
        formatter = JSONFormatter(enable_caller=config.enable_caller)

    filters: List[logging.Filter] = [
        ServiceFieldsFilter(config.service_name, config.environment),
    ]
    if config.sampling:
        filters.append(SamplingFilter())
    if config.enable_stacktrace:
        filters.append(StacktraceFilter())

    handlers: List[logging.Handler] = []

    for p in config.output_paths or ["stdout"]:
        handlers.append(handler_for(p))

    for p in config.error_output_paths:
        h = handler_for(p)
        h.setLevel(max(level, logging.ERROR))
        handlers.append(h)

    if config.file.enable and config.file.filename:
        handlers.append(RotatingFileHandler(
            config.file.filename,
            max_size_mb=_default_int(config.file.max_size, DEFAULT_MAX_SIZE_MB),
            max_backups=_default_int(config.file.max_backups, DEFAULT_MAX_BACKUPS),
            max_age_days=_default_int(config.file.max_age, DEFAULT_MAX_AGE_DAYS),
            compress=config.file.compress,
        ))

    for h in handlers:
        if h.level == logging.NOTSET:
            h.setLevel(level)
        h.setFormatter(formatter)
        for f in filters:
            h.addFilter(f)

    return handlers


# ═══════════════════════════════════════════════════════════════════════════
# Global state
# ═══════════════════════════════════════════════════════════════════════════

_lock = threading.Lock()
_installed: List[logging.Handler] = []
_active_config: Optional[LogConfig] = None


def init_logging(config: LogConfig) -> None:
    """
    Build handlers from `config` and install them on the root logger.

    Replaces whatever a previous call installed; loggers already handed
    out keep working and pick up the new handlers.
    """
    global _active_config

    handlers = build_handlers(config)
    root = logging.getLogger()

    with _lock:
        for h in _installed:
            root.removeHandler(h)
            h.close()
        _installed.clear()

        root.setLevel(parse_level(config.level))
        for h in handlers:
            root.addHandler(h)
        _installed.extend(handlers)
        _active_config = config

    # Quieten noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def reset_logging() -> None:
    """Remove installed handlers and return to the uninitialised state."""
    global _active_config
    root = logging.getLogger()
    with _lock:
        for h in _installed:
            root.removeHandler(h)
            h.close()
        _installed.clear()
        _active_config = None


def is_initialized() -> bool:
    return _active_config is not None


def active_config() -> Optional[LogConfig]:
    return _active_config


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a named logger — call once per module."""
    return logging.getLogger(name or SERVICE_LOGGER)


# ═══════════════════════════════════════════════════════════════════════════
# Sugared logger
# ═══════════════════════════════════════════════════════════════════════════

_RESERVED_KWARGS = {"exc_info", "stack_info", "stacklevel", "extra"}


class SugaredLogger(logging.LoggerAdapter):
    """
    Logger accepting arbitrary key/value fields.

        log.info("client initialised", service="mysql", latency_ms=12.4)
    """

    def __init__(self, logger: logging.Logger, fields: Optional[Dict[str, Any]] = None):
        super().__init__(logger, {})
        self.fields = dict(fields or {})

    def process(self, msg: Any, kwargs: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
        fields = dict(self.fields)
        for key in list(kwargs):
            if key not in _RESERVED_KWARGS:
                fields[key] = kwargs.pop(key)
        extra = dict(kwargs.get("extra") or {})
        if fields:
            extra["fields"] = {**extra.get("fields", {}), **fields}
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **fields: Any) -> "SugaredLogger":
        """Child logger with extra fields on every line."""
        return SugaredLogger(self.logger, {**self.fields, **fields})


def get_sugared_logger(name: Optional[str] = None) -> SugaredLogger:
    return SugaredLogger(get_logger(name))
