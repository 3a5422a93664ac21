"""Structured logging setup for the transcript relay.

Configures the ``transcript_relay`` logger namespace once at process start
(console plus a rotating JSON file) and a separate JSON Lines audit trail of
deliveries. Components receive their loggers by injection.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Any

ROOT_LOGGER = "transcript_relay"
AUDIT_LOGGER = "transcript_relay.audit"

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "taskName",
        "extras",
    ]
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    extras: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS:
            continue
        try:
            json.dumps(value)
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, extra fields included."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_obj.update(_extra_fields(record))
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


class LoggingManager:
    """Owns handler configuration for the relay's loggers."""

    def __init__(
        self,
        log_dir: str | Path = "/tmp/transcript_relay_logs",
        log_level: str = "INFO",
        console: bool = True,
    ):
        """Initialize logging.

        Args:
            log_dir: Directory for the JSON log and the audit trail.
            log_level: Console level; the file always captures DEBUG.
            console: Whether to attach a console handler.
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.audit_dir = self.log_dir / "audit"
        self.audit_dir.mkdir(exist_ok=True)

        self._setup_root_logger(console)
        self._setup_audit_logger()

    def _setup_root_logger(self, console: bool) -> None:
        logger = logging.getLogger(ROOT_LOGGER)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers.clear()

        if console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            logger.addHandler(console_handler)

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / "relay.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonLineFormatter())
        logger.addHandler(file_handler)

        self.root_logger = logger

    def _setup_audit_logger(self) -> None:
        logger = logging.getLogger(AUDIT_LOGGER)
        logger.setLevel(logging.INFO)
        logger.propagate = False
        logger.handlers.clear()

        handler = logging.handlers.TimedRotatingFileHandler(
            self.audit_dir / "deliveries.jsonl",
            when="midnight",
            interval=1,
            backupCount=30,
        )
        handler.setLevel(logging.INFO)
        handler.setFormatter(JsonLineFormatter())
        logger.addHandler(handler)

        self.audit_logger = logger

    def get_component_logger(self, name: str) -> logging.Logger:
        """Logger for one component, e.g. ``"checkpoint"``."""
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")

    def shutdown(self) -> None:
        for logger in (self.root_logger, self.audit_logger):
            for handler in list(logger.handlers):
                handler.flush()
                handler.close()
                logger.removeHandler(handler)
            logger.propagate = True


def log_delivery(
    record_id: str | None,
    kind: str,
    chunks: int,
    success: bool,
    error: str | None = None,
    audit_logger: logging.Logger | None = None,
) -> None:
    """Append one delivery event to the audit trail."""
    logger = audit_logger if audit_logger is not None else logging.getLogger(AUDIT_LOGGER)
    logger.info(
        "delivery",
        extra={
            "record_id": record_id,
            "kind": kind,
            "chunks": chunks,
            "success": success,
            "error": error,
        },
    )
