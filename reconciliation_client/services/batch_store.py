"""
Batch Store

Sole owner of batch state: the batch list, the batch currently on screen,
and the CSV upload lifecycle. Every other component reads snapshots or asks
the store to refresh; none of them writes batch fields.

Published snapshots only move forward:
- a status never regresses (uploading -> processing -> completed|failed)
- processed_count never decreases while processing
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from reconciliation_client.clients.api_gateway import ApiClientError, ErrorCode
from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.models import BatchStatus, ReconciliationBatch, UploadStatus

logger = logging.getLogger(__name__)


@dataclass
class BatchState:
    batches: List[ReconciliationBatch] = field(default_factory=list)
    total: int = 0
    loading: bool = False
    current_batch: Optional[ReconciliationBatch] = None
    current_batch_loading: bool = False
    error: Optional[str] = None
    upload_status: UploadStatus = UploadStatus.IDLE
    uploaded_batch_id: Optional[str] = None


def is_forward_update(current: Optional[ReconciliationBatch], incoming: ReconciliationBatch) -> bool:
    """True when `incoming` may replace `current` without moving the batch backwards."""
    if current is None or current.id != incoming.id:
        return True
    if incoming.status.rank < current.status.rank:
        return False
    if current.status.is_terminal and incoming.status != current.status:
        return False
    if (
        incoming.status == BatchStatus.PROCESSING
        and current.status == BatchStatus.PROCESSING
        and incoming.processed_count < current.processed_count
    ):
        return False
    return True


class BatchStore:
    """
    Batch listing, batch snapshots and upload tracking.
    """

    def __init__(self, api: ReconciliationApi):
        self.api = api
        self._state = BatchState()
        self._alive = True

    # ==================== READ ====================

    def snapshot(self) -> BatchState:
        return copy.deepcopy(self._state)

    @property
    def current_batch(self) -> Optional[ReconciliationBatch]:
        return self._state.current_batch

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    # ==================== UPLOAD ====================

    async def upload(self, filename: str, content: bytes) -> Optional[str]:
        """
        Upload a bank statement CSV.

        Returns the new batch id, or None if the upload failed (see error).
        """
        self._state.upload_status = UploadStatus.UPLOADING
        self._state.uploaded_batch_id = None
        self._state.error = None

        try:
            batch_id = await self.api.upload_statement(filename, content)
        except ApiClientError as e:
            if self._alive:
                self._state.upload_status = UploadStatus.ERROR
                self._state.error = e.message or "Upload failed"
            logger.warning(f"Upload of {filename} failed: {e.code} {e.message}")
            return None

        if self._alive:
            self._state.upload_status = UploadStatus.PROCESSING
            self._state.uploaded_batch_id = batch_id
        logger.info(f"Uploaded {filename} as batch {batch_id}", extra={"batch_id": batch_id})
        return batch_id

    def mark_upload_complete(self):
        if self._state.upload_status == UploadStatus.PROCESSING:
            self._state.upload_status = UploadStatus.COMPLETE

    def reset_upload(self):
        self._state.upload_status = UploadStatus.IDLE
        self._state.uploaded_batch_id = None
        self._state.error = None

    # ==================== FETCH ====================

    async def fetch_all(
        self,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> bool:
        self._state.loading = True
        self._state.error = None

        try:
            result = await self.api.list_batches(status=status, limit=limit, offset=offset)
        except ApiClientError as e:
            if self._alive:
                self._state.loading = False
                self._state.error = e.message or "Failed to fetch batches"
            return False

        if self._alive:
            self._state.loading = False
            self._state.batches = result.batches
            self._state.total = result.total
        return True

    async def fetch_batch(self, batch_id: str, signal: Optional[asyncio.Event] = None) -> ReconciliationBatch:
        """
        Fetch one batch and publish it.

        The failure is recorded in `error` and re-raised so callers can apply
        their own retry policy. Aborted requests are re-raised without
        touching `error`.
        """
        self._state.current_batch_loading = True
        self._state.error = None

        try:
            batch = await self.api.get_batch(batch_id, signal=signal)
        except ApiClientError as e:
            if self._alive:
                self._state.current_batch_loading = False
                if e.code != ErrorCode.ABORT_ERROR.value:
                    self._state.error = e.message or "Failed to fetch batch"
            raise

        if self._alive:
            self._state.current_batch_loading = False
            self.publish(batch)
        return batch

    def publish(self, batch: ReconciliationBatch) -> bool:
        """Make `batch` the current snapshot and update it in the list."""
        if not self._alive:
            return False

        if not is_forward_update(self._state.current_batch, batch):
            current = self._state.current_batch
            logger.warning(
                f"Ignoring stale snapshot for batch {batch.id}: "
                f"{batch.status.value}/{batch.processed_count} after "
                f"{current.status.value}/{current.processed_count}",
                extra={"batch_id": batch.id}
            )
            return False

        self._state.current_batch = batch
        for index, existing in enumerate(self._state.batches):
            if existing.id == batch.id:
                self._state.batches[index] = batch
                break
        return True

    # ==================== RESET ====================

    def clear_current(self):
        self._state.current_batch = None
        self._state.current_batch_loading = False
        self._state.error = None

    def clear_error(self):
        self._state.error = None

    def close(self):
        self._alive = False
