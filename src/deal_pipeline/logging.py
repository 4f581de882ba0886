"""
Structured logging for the Deal Pipeline engine.

structlog renders JSON in production and a colored console in development.
Store operations layer their identifiers (user, deal, move correlation id)
into a context that every log entry emitted inside it picks up, so a
background stage command can be traced back to the drag that queued it.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any, Generator, Mapping

import structlog
from structlog.types import Processor

from .config import config

STORE_CONTEXT_KEYS = ('user_id', 'deal_id', 'correlation_id')

# Chatty client libraries log every pooled connection / HTTP request.
_QUIET_LOGGERS = ('sqlalchemy.engine', 'asyncpg', 'httpx', 'openai')

_store_context: ContextVar[Mapping[str, str]] = ContextVar(
    'store_context', default=MappingProxyType({})
)


def current_store_context() -> dict[str, str]:
    """Identifiers bound by the enclosing logging_context() blocks."""
    return dict(_store_context.get())


def add_store_context(
    logger: structlog.types.WrappedLogger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Processor: copy bound store identifiers onto the entry without overriding."""
    for key, value in _store_context.get().items():
        event_dict.setdefault(key, value)
    return event_dict


def configure_logging(
    json_output: bool = False,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog for the application.

    Args:
        json_output: JSON lines for production, console rendering otherwise
        log_level: Override log level (defaults to config.LOG_LEVEL)
    """
    level = log_level or config.LOG_LEVEL
    level_num = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level_num)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level_num, logging.WARNING))

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_store_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=[*shared_processors, *renderer],
        wrapper_class=structlog.make_filtering_bound_logger(level_num),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def logging_context(
    user_id: str | None = None,
    deal_id: str | None = None,
    correlation_id: str | None = None,
) -> Generator[None, None, None]:
    """
    Bind store identifiers for every log entry emitted inside the block.

    Blocks nest: inner values override outer ones, None leaves the outer
    value in place, and the outer context is restored on exit.

    Usage:
        with logging_context(user_id="user_1", deal_id="deal-1"):
            logger.info("pipeline_store.insight_generated")  # carries both IDs
    """
    bound = {
        key: value
        for key, value in zip(STORE_CONTEXT_KEYS, (user_id, deal_id, correlation_id))
        if value is not None
    }
    token = _store_context.set(MappingProxyType({**_store_context.get(), **bound}))
    try:
        yield
    finally:
        _store_context.reset(token)


class OperationTimer:
    """
    Times one store operation and emits its completion event.

    Usage:
        timer = OperationTimer('fetch')
        with timer.stage('gateway'):
            records = await gateway.list(user_id)
        timer.emit(logger, 'fetched', deal_count=len(records))
        # -> pipeline_store.fetched operation=fetch total_ms=... stages={...}
    """

    namespace = 'pipeline_store'

    def __init__(self, operation: str):
        self.operation = operation
        self.stages: dict[str, float] = {}
        self.start_time = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        """Time a named stage; a stage that raises is still recorded."""
        stage_start = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = (time.perf_counter() - stage_start) * 1000

    @property
    def total_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def summary(self) -> dict[str, Any]:
        return {
            'operation': self.operation,
            'total_ms': round(self.total_ms, 2),
            'stages': {k: round(v, 2) for k, v in self.stages.items()},
        }

    def emit(self, logger: Any, event: str, **fields: Any) -> None:
        """Log ``pipeline_store.<event>`` at info with the timing summary attached."""
        logger.info(f'{self.namespace}.{event}', **fields, **self.summary())


# Development console output until the API (or a script) reconfigures.
configure_logging(json_output=False)
