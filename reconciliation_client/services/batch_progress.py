"""
Batch Progress Tracker

Polls a batch until the backend reports a terminal status.

States:
    IDLE -> POLLING -> COMPLETED | FAILED | ABANDONED

Rules:
- the first fetch is issued immediately on start
- the next fetch is scheduled only after the previous one resolved
- success resets the error counter and waits `interval`
- failure waits `interval * consecutive_errors`; at `max_consecutive_errors`
  polling is abandoned until retry()
- every successful fetch is published through the BatchStore
"""

import asyncio
import copy
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from reconciliation_client.clients.api_gateway import ApiClientError
from reconciliation_client.logging_config import clear_batch_context, set_batch_context
from reconciliation_client.models import BatchStatus, ReconciliationBatch
from reconciliation_client.services.batch_store import BatchStore
from reconciliation_client.services.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

FAILED_MESSAGE = "Reconciliation failed. Please try again."
ABANDONED_MESSAGE = "Failed to fetch progress. Please check your connection."


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    ABANDONED = "abandoned"


@dataclass
class ProgressState:
    batch_id: Optional[str] = None
    state: PollState = PollState.IDLE
    consecutive_errors: int = 0
    error: Optional[str] = None
    last_batch: Optional[ReconciliationBatch] = None
    poll_count: int = 0
    next_delay: Optional[float] = None


class BatchProgressTracker:
    """
    Polling state machine for a single batch.

    Callbacks (all optional, called synchronously):
        on_update(batch)   after every successful fetch
        on_complete(batch) when the batch reaches COMPLETED
        on_error(message)  on FAILED or ABANDONED
    """

    def __init__(
        self,
        batch_store: BatchStore,
        scheduler: Scheduler,
        interval: float = 2.0,
        max_consecutive_errors: int = 3,
        on_update: Optional[Callable[[ReconciliationBatch], None]] = None,
        on_complete: Optional[Callable[[ReconciliationBatch], None]] = None,
        on_error: Optional[Callable[[str], None]] = None
    ):
        self.batch_store = batch_store
        self.scheduler = scheduler
        self.interval = interval
        self.max_consecutive_errors = max_consecutive_errors
        self.on_update = on_update
        self.on_complete = on_complete
        self.on_error = on_error

        self._state = ProgressState()
        self._generation = 0
        self._timer: Optional[TimerHandle] = None
        self._inflight_generation: Optional[int] = None
        self._abort: Optional[asyncio.Event] = None
        self._alive = True

    # ==================== READ ====================

    def snapshot(self) -> ProgressState:
        return copy.deepcopy(self._state)

    @property
    def state(self) -> PollState:
        return self._state.state

    @property
    def is_polling(self) -> bool:
        return self._state.state == PollState.POLLING

    @property
    def has_pending_poll(self) -> bool:
        return self._timer is not None and self._timer.pending

    # ==================== CONTROL ====================

    async def start(self, batch_id: str):
        """Begin polling `batch_id`. A no-op when already polling that batch."""
        if not self._alive:
            return
        if self.is_polling and self._state.batch_id == batch_id:
            return

        self._cancel_pending()
        self._generation += 1
        self._state = ProgressState(batch_id=batch_id, state=PollState.POLLING)
        set_batch_context(batch_id)
        logger.info(f"Polling batch {batch_id}", extra={"batch_id": batch_id})
        await self._poll(self._generation)

    def stop(self):
        """Cancel any scheduled or in-flight fetch. No callback fires afterwards."""
        self._generation += 1
        self._cancel_pending()
        if self._state.state == PollState.POLLING:
            self._state.state = PollState.IDLE
        self._state.next_delay = None
        clear_batch_context()

    async def retry(self) -> bool:
        """Re-enter POLLING from ABANDONED with an immediate fetch."""
        if not self._alive or self._state.state != PollState.ABANDONED:
            return False

        self._cancel_pending()
        self._generation += 1
        self._state.state = PollState.POLLING
        self._state.consecutive_errors = 0
        self._state.error = None
        set_batch_context(self._state.batch_id)
        logger.info(f"Retrying batch {self._state.batch_id}", extra={"batch_id": self._state.batch_id})
        await self._poll(self._generation)
        return True

    def clear_error(self):
        self._state.error = None

    def close(self):
        self.stop()
        self._alive = False

    # ==================== INTERNALS ====================

    def _cancel_pending(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._abort is not None:
            self._abort.set()
            self._abort = None

    def _is_current(self, generation: int) -> bool:
        return (
            self._alive
            and generation == self._generation
            and self._state.state == PollState.POLLING
        )

    def _schedule(self, generation: int, delay: float):
        self._state.next_delay = delay
        self._timer = self.scheduler.call_later(delay, functools.partial(self._poll, generation))

    async def _poll(self, generation: int):
        if not self._is_current(generation):
            return
        if self._inflight_generation == generation:
            logger.debug(f"Poll already in flight for batch {self._state.batch_id}")
            return

        batch_id = self._state.batch_id
        abort = asyncio.Event()
        self._abort = abort
        self._timer = None
        self._inflight_generation = generation
        self._state.poll_count += 1
        self._state.next_delay = None

        try:
            batch = await self.batch_store.fetch_batch(batch_id, signal=abort)
        except ApiClientError as e:
            if self._is_current(generation):
                self._handle_failure(generation, e)
            return
        finally:
            if self._inflight_generation == generation:
                self._inflight_generation = None
            if self._abort is abort:
                self._abort = None

        if self._is_current(generation):
            self._handle_success(generation, batch)

    def _handle_success(self, generation: int, batch: ReconciliationBatch):
        self._state.consecutive_errors = 0
        self._state.error = None
        self._state.last_batch = batch

        if self.on_update:
            self.on_update(batch)

        if batch.status == BatchStatus.COMPLETED:
            self._state.state = PollState.COMPLETED
            logger.info(f"Batch {batch.id} completed", extra={"batch_id": batch.id})
            clear_batch_context()
            if self.on_complete:
                self.on_complete(batch)
            return

        if batch.status == BatchStatus.FAILED:
            self._state.state = PollState.FAILED
            self._state.error = FAILED_MESSAGE
            logger.warning(f"Batch {batch.id} failed on the backend", extra={"batch_id": batch.id})
            clear_batch_context()
            if self.on_error:
                self.on_error(FAILED_MESSAGE)
            return

        self._schedule(generation, self.interval)

    def _handle_failure(self, generation: int, error: ApiClientError):
        self._state.consecutive_errors += 1
        count = self._state.consecutive_errors
        batch_id = self._state.batch_id

        if count >= self.max_consecutive_errors:
            self._state.state = PollState.ABANDONED
            self._state.error = ABANDONED_MESSAGE
            self._state.next_delay = None
            logger.error(
                f"Abandoned polling batch {batch_id} after {count} consecutive errors: {error.message}",
                extra={"batch_id": batch_id}
            )
            clear_batch_context()
            if self.on_error:
                self.on_error(ABANDONED_MESSAGE)
            return

        delay = self.interval * count
        logger.warning(
            f"Poll {count}/{self.max_consecutive_errors} for batch {batch_id} failed "
            f"({error.code}), retrying in {delay:.1f}s",
            extra={"batch_id": batch_id}
        )
        self._schedule(generation, delay)
