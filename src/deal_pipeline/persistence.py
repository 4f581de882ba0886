"""
Optimistic command persistence.

A stage move is applied to local state first; the persistence half is a
StageChangeCommand carrying a correlation id. The PersistenceQueue runs each
command against the gateway in the background with exponential backoff, and
reports the final outcome through callbacks so the store can record a failed
move for undo.

When no event loop is running (a synchronous caller), commands are parked
until drain() is awaited.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import config
from .errors import GatewayError, wrap_gateway_error
from .gateway.base import DealGateway, StageUpdate
from .logging import logging_context

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StageChangeCommand:
    """Persist one optimistic stage move."""

    correlation_id: str
    deal_id: str
    change: StageUpdate
    issued_at: datetime


@dataclass
class CommandOutcome:
    """What happened to a command once the queue is done with it."""

    command: StageChangeCommand
    success: bool
    attempts: int
    error: GatewayError | None = None


OutcomeCallback = Callable[[CommandOutcome], None]


@dataclass
class PersistenceQueue:
    """
    Runs StageChangeCommands in the background with retry-with-backoff.

    Non-gateway exceptions are wrapped into GatewayError first, so every
    failure is retried the same way. Outcomes are delivered to ``on_outcome``
    exactly once per command.
    """

    gateway: DealGateway
    on_outcome: OutcomeCallback | None = None
    max_attempts: int = field(default_factory=lambda: config.PERSIST_MAX_ATTEMPTS)
    backoff_min: float = field(default_factory=lambda: config.PERSIST_BACKOFF_MIN)
    backoff_max: float = field(default_factory=lambda: config.PERSIST_BACKOFF_MAX)

    _tasks: set[asyncio.Task] = field(default_factory=set, init=False, repr=False)
    _parked: list[StageChangeCommand] = field(default_factory=list, init=False, repr=False)

    @property
    def pending(self) -> int:
        """Commands not yet finished (running or parked)."""
        return len(self._tasks) + len(self._parked)

    def submit(self, command: StageChangeCommand) -> None:
        """Start persisting ``command`` without waiting for it."""
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._parked.append(command)
            logger.debug(
                'persistence.parked',
                correlation_id=command.correlation_id,
                deal_id=command.deal_id,
            )
            return
        self._spawn(command)

    def _spawn(self, command: StageChangeCommand) -> None:
        task = asyncio.create_task(self._run(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until every submitted command has finished."""
        while self._parked:
            self._spawn(self._parked.pop(0))
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, command: StageChangeCommand) -> CommandOutcome:
        attempts = 0
        with logging_context(deal_id=command.deal_id, correlation_id=command.correlation_id):
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    wait=wait_exponential(
                        multiplier=self.backoff_min,
                        min=self.backoff_min,
                        max=self.backoff_max,
                    ),
                    retry=retry_if_exception_type(GatewayError),
                    reraise=True,
                ):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        try:
                            await self.gateway.update_stage(command.deal_id, command.change)
                        except GatewayError:
                            logger.warning(
                                'persistence.attempt_failed',
                                deal_id=command.deal_id,
                                attempt=attempts,
                                max_attempts=self.max_attempts,
                            )
                            raise
                        except Exception as e:
                            raise wrap_gateway_error(
                                e, context={'deal_id': command.deal_id}
                            ) from e
            except GatewayError as e:
                logger.error(
                    'persistence.failed',
                    deal_id=command.deal_id,
                    stage=command.change.stage,
                    attempts=attempts,
                    error=str(e),
                )
                outcome = CommandOutcome(command=command, success=False, attempts=attempts, error=e)
            else:
                logger.info(
                    'persistence.persisted',
                    deal_id=command.deal_id,
                    stage=command.change.stage,
                    attempts=attempts,
                )
                outcome = CommandOutcome(command=command, success=True, attempts=attempts)

        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome
