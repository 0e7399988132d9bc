"""
Structured Logging for veil-client.

This module provides:
- Structured JSON logging with consistent fields
- Operation logging with trace correlation
- State transition and retry logging
- Log level filtering and formatting options
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

# =============================================================================
# Log Record Types
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    operation_id: str | None = None
    operation: str | None = None
    chain_id: int | None = None
    signer: str | None = None
    contract: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            operation_id=kwargs.get("operation_id", self.operation_id),
            operation=kwargs.get("operation", self.operation),
            chain_id=kwargs.get("chain_id", self.chain_id),
            signer=kwargs.get("signer", self.signer),
            contract=kwargs.get("contract", self.contract),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


@dataclass
class TransitionLog:
    """Log record for a controller state transition."""

    phase: str
    operation: str | None = None
    step: str | None = None
    reason: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class AttemptLog:
    """Log record for one attempt of a retried step."""

    attempt: int
    max_attempts: int
    success: bool = True
    error: str | None = None
    retryable: bool | None = None
    duration_ms: float | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured JSON output and context tracking.

    Example:
        ```python
        logger = StructuredLogger("veil_client")

        with logger.operation_context("increment", chain_id=31337):
            logger.log_transition(TransitionLog(phase="busy", operation="increment"))
        ```
    """

    def __init__(
        self,
        name: str = "veil_client",
        level: str = "INFO",
        json_output: bool = False,
        include_timestamp: bool = True,
        redact_addresses: bool = True,
    ):
        self.name = name
        self.json_output = json_output
        self.include_timestamp = include_timestamp
        self.redact_addresses = redact_addresses

        self._logger = logging.getLogger(name)
        self._logger.setLevel(getattr(logging, level.upper()))

        self._context: LogContext = LogContext()

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            if json_output:
                handler.setFormatter(JSONFormatter())
            else:
                handler.setFormatter(TextFormatter())
            self._logger.addHandler(handler)

    @property
    def context(self) -> LogContext:
        return self._context

    def set_context(self, **kwargs) -> None:
        """Update the current log context."""
        self._context = self._context.with_update(**kwargs)

    @contextmanager
    def trace_context(
        self,
        trace_id: str | None = None,
        **kwargs,
    ) -> Iterator[str]:
        """
        Context manager for trace correlation.

        Args:
            trace_id: Trace ID (auto-generated if not provided)
            **kwargs: Additional context fields

        Yields:
            The trace ID
        """
        trace_id = trace_id or generate_trace_id()
        old_context = self._context

        try:
            self._context = old_context.with_update(trace_id=trace_id, **kwargs)
            yield trace_id
        finally:
            self._context = old_context

    @contextmanager
    def operation_context(
        self,
        operation: str,
        *,
        operation_id: str | None = None,
        chain_id: int | None = None,
        signer: str | None = None,
        contract: str | None = None,
    ) -> Iterator[str]:
        """
        Context manager for a single controller operation.

        Yields:
            The operation ID
        """
        operation_id = operation_id or generate_operation_id()
        if signer is not None and self.redact_addresses:
            signer = redact_address(signer)

        with self.trace_context(
            operation_id=operation_id,
            operation=operation,
            chain_id=chain_id,
            signer=signer,
            contract=contract,
        ):
            yield operation_id

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        """Internal logging method."""
        if not self._logger.isEnabledFor(level):
            return

        record_data = {
            "message": message,
            **self._context.to_dict(),
        }

        if event_type:
            record_data["event_type"] = event_type

        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str))
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip())

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    # Typed logging methods

    def log_transition(self, transition: TransitionLog) -> None:
        """Log a controller state transition."""
        self._log(
            logging.DEBUG,
            f"State -> {transition.phase}",
            event_type="transition",
            data=transition.to_dict(),
        )

    def log_attempt(self, attempt: AttemptLog) -> None:
        """Log one attempt of a retried step."""
        level = logging.DEBUG if attempt.success else logging.WARNING
        self._log(
            level,
            f"Attempt {attempt.attempt}/{attempt.max_attempts} "
            + ("succeeded" if attempt.success else "failed"),
            event_type="attempt",
            data=attempt.to_dict(),
        )

    def log_stale(self, changed: str) -> None:
        """Log a result discarded because identity changed mid-operation."""
        self._log(
            logging.WARNING,
            f"Discarding stale result: {changed} changed",
            event_type="stale",
            data={"changed": changed},
        )

    def log_error(
        self,
        error: Exception,
        message: str | None = None,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        if hasattr(error, "code"):
            error_data["error_code"] = str(error.code.value)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable

        self._log(
            logging.ERROR,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
            log_data.update(message_data)
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        return f"{timestamp} {color}{record.levelname:8}{reset} {record.getMessage()}"


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    """Generate a unique trace ID."""
    return f"trace_{uuid.uuid4().hex[:16]}"


def generate_operation_id() -> str:
    """Generate a unique operation ID."""
    return f"op_{uuid.uuid4().hex[:12]}"


def redact_address(address: str | None) -> str:
    """Shorten an account address for safe logging."""
    if not address:
        return "<none>"
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    """Truncate text for logging."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... ({len(text)} chars total)"


# =============================================================================
# Timing Utilities
# =============================================================================


@dataclass
class Timer:
    """Simple timer for measuring durations."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        """Stop the timer and return duration in milliseconds."""
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds."""
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    """Context manager for timing operations."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


# =============================================================================
# Global Logger
# =============================================================================

_default_logger: StructuredLogger | None = None


def get_logger(name: str = "veil_client") -> StructuredLogger:
    """Get or create a structured logger."""
    global _default_logger
    if _default_logger is None or _default_logger.name != name:
        _default_logger = StructuredLogger(name)
    return _default_logger


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    **kwargs: Any,
) -> StructuredLogger:
    """Configure the default logger."""
    global _default_logger
    _default_logger = StructuredLogger(
        level=level,
        json_output=json_output,
        **kwargs,
    )
    return _default_logger


__all__ = [
    # Context
    "LogContext",
    # Log records
    "TransitionLog",
    "AttemptLog",
    # Logger
    "StructuredLogger",
    # Formatters
    "JSONFormatter",
    "TextFormatter",
    # Timing
    "Timer",
    "timed",
    # Utilities
    "generate_trace_id",
    "generate_operation_id",
    "redact_address",
    "truncate_for_log",
    # Global
    "get_logger",
    "configure_logging",
]
