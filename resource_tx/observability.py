"""
Structured Logging

JSON log events with correlation ids for the transaction pipeline. One
correlation id follows a transaction from parameter validation through Merkle
path resolution, proving and assembly, so all records of one request can be
joined.

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │                    Pipeline Code                         │
    │  log.info("msg", tags=n)   log.operation("prove", ms)    │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │                       TxLogger                           │
    │      layer, operation, error_code, correlation id        │
    └───────────────────────┬─────────────────────────────────┘
                            │
    ┌───────────────────────▼─────────────────────────────────┐
    │              StructuredHandler (JSON lines)              │
    └─────────────────────────────────────────────────────────┘

Secrets (nullifier keys, signing keys, rand seeds) must never be passed as
context.

Copyright (c) 2024 Momentum. All rights reserved.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import traceback
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

ROOT_LOGGER_NAME = "resource_tx"


class LogLevel(Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Layer(Enum):
    """Pipeline layers for categorization."""
    RESOURCE = "resource"
    TREE = "tree"
    WITNESS = "witness"
    INDEXER = "indexer"
    PROVER = "prover"
    ASSEMBLER = "assembler"
    SUBMISSION = "submission"
    CONFIG = "config"
    CLI = "cli"


@dataclass
class LogEvent:
    """Structured log event."""
    timestamp: str
    level: str
    logger: str
    message: str
    correlation_id: str = ""
    layer: str = ""
    operation: str = ""
    duration_ms: Optional[float] = None
    error_code: str = ""
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding empty values."""
        d = asdict(self)
        return {k: v for k, v in d.items() if v is not None and v != "" and v != {}}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class StructuredHandler(logging.Handler):
    """Logging handler that outputs one JSON object per record."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = LogEvent(
                timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                level=record.levelname.lower(),
                logger=record.name,
                message=record.getMessage(),
                correlation_id=getattr(record, "correlation_id", "") or correlation_id_var.get(),
                layer=getattr(record, "layer", ""),
                operation=getattr(record, "operation", ""),
                duration_ms=getattr(record, "duration_ms", None),
                error_code=getattr(record, "error_code", ""),
                context=getattr(record, "context", {}),
            )

            if record.exc_info:
                event.exception = "".join(traceback.format_exception(*record.exc_info))

            self.stream.write(event.to_json() + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


class TxLogger:
    """
    Structured logger for pipeline components.

    Wraps `logging.getLogger("resource_tx.<layer>.<name>")`; handlers are
    installed once on the package root by configure_logging().
    """

    def __init__(self, name: str, layer: Layer):
        self.name = name
        self.layer = layer
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{layer.value}.{name}")

    def _log(
        self,
        level: int,
        message: str,
        operation: str = "",
        error_code: str = "",
        duration_ms: Optional[float] = None,
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        extra = {
            "layer": self.layer.value,
            "operation": operation,
            "error_code": error_code,
            "duration_ms": duration_ms,
            "context": context,
            "correlation_id": correlation_id_var.get(),
        }
        self._logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **context: Any) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(logging.WARNING, message, **context)

    def error(
        self,
        message: str,
        error_code: str = "",
        exc_info: bool = False,
        **context: Any,
    ) -> None:
        self._log(logging.ERROR, message, error_code=error_code, exc_info=exc_info, **context)

    def operation(
        self,
        name: str,
        duration_ms: float,
        success: bool = True,
        **context: Any,
    ) -> None:
        """Log an operation completion."""
        level = logging.INFO if success else logging.WARNING
        status = "completed" if success else "failed"
        self._log(
            level,
            f"Operation {name} {status}",
            operation=name,
            duration_ms=duration_ms,
            **context,
        )


def generate_correlation_id() -> str:
    return f"tx-{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """Set the correlation ID for the current context."""
    return correlation_id_var.set(correlation_id)


def get_logger(name: str, layer: Layer) -> TxLogger:
    return TxLogger(name, layer)


def configure_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    fmt: str = "json",
    stream: Any = None,
) -> logging.Logger:
    """
    Install a single handler on the package root logger.

    Raises ValueError for a level outside LogLevel.
    """
    level = LogLevel(level.lower()) if isinstance(level, str) else level
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, level.value.upper()))
    for handler in list(root.handlers):
        if getattr(handler, "_resource_tx", False):
            root.removeHandler(handler)

    if fmt == "json":
        handler: logging.Handler = StructuredHandler(stream)
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._resource_tx = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root

