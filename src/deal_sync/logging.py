"""
Structured logging configuration for the deal sync engine.

Uses structlog for structured, context-aware logging with:
- JSON output for production
- Pretty console output for development
- Automatic timing context
- Run / partition / loan code propagation via context variables

Log lines go to stderr; stdout carries command output.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Generator

import structlog
from structlog.types import Processor

from .config import get_config

# Context variables for run-scoped data
_run_id: ContextVar[str | None] = ContextVar('run_id', default=None)
_partition_id: ContextVar[str | None] = ContextVar('partition_id', default=None)
_loan_code: ContextVar[str | None] = ContextVar('loan_code', default=None)


def get_run_id() -> str | None:
    """Get the current batch run ID from context."""
    return _run_id.get()


def get_partition_id() -> str | None:
    """Get the current partition ID from context."""
    return _partition_id.get()


def get_loan_code() -> str | None:
    """Get the current loan code from context."""
    return _loan_code.get()


def add_context_info(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor that adds context variables to log entries."""
    run_id = get_run_id()
    partition_id = get_partition_id()
    loan_code = get_loan_code()

    if run_id:
        event_dict['run_id'] = run_id
    if partition_id:
        event_dict.setdefault('partition_id', partition_id)
    if loan_code:
        event_dict.setdefault('loan_code', loan_code)

    return event_dict


def configure_logging(
    json_output: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: If True, output JSON logs (for production).
                    If False, output pretty console logs (for development).
                    Defaults to config.LOG_JSON.
        log_level: Override log level (defaults to config.LOG_LEVEL)
    """
    config = get_config()
    level = log_level or config.LOG_LEVEL
    level_num = getattr(logging, level.upper(), logging.INFO)
    if json_output is None:
        json_output = config.LOG_JSON

    logging.basicConfig(
        format='%(message)s',
        stream=sys.stderr,
        level=level_num,
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_context_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


@contextmanager
def logging_context(
    run_id: str | None = None,
    partition_id: str | None = None,
    loan_code: str | None = None,
) -> Generator[None, None, None]:
    """
    Context manager for setting logging context variables.

    Usage:
        with logging_context(run_id="abc123", partition_id="broker_1"):
            logger.info("scheduler.partition_started")  # Includes both ids
    """
    tokens = []
    if run_id is not None:
        tokens.append((_run_id, _run_id.set(run_id)))
    if partition_id is not None:
        tokens.append((_partition_id, _partition_id.set(partition_id)))
    if loan_code is not None:
        tokens.append((_loan_code, _loan_code.set(loan_code)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class PipelineTimer:
    """
    Timer for tracking pipeline stage durations.

    Repeated entries into the same stage accumulate, so a partition that
    fetches five yearly windows reports one total 'fetch' duration.

    Usage:
        timer = PipelineTimer()
        with timer.stage("fetch"):
            # fetch windows
        with timer.stage("reconcile"):
            # write deals
        print(timer.summary())
    """

    def __init__(self):
        self.stages: dict[str, float] = {}
        self.start_time: float = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time a pipeline stage."""
        stage_start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = (time.perf_counter() - stage_start) * 1000
            self.stages[name] = self.stages.get(name, 0.0) + elapsed

    def record(self, name: str, duration_ms: float) -> None:
        """Manually record a stage duration."""
        self.stages[name] = duration_ms

    @property
    def total_ms(self) -> float:
        """Total elapsed time since timer creation in milliseconds."""
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        """Get timing summary as a dictionary."""
        return {
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
        }


# Initialize logging on module import (settings-driven defaults)
# Entry points may call configure_logging() again with overrides
configure_logging()
