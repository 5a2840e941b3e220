"""
Dashboard Session

Explicitly constructed state container for one dashboard view. It wires the
components together and exposes the entry points the presentation layer
calls; state is read back only through snapshot accessors.

Usage:
    async with DashboardSession.from_settings() as session:
        batch_id = await session.upload("statement.csv", content)
        await session.load_page()
        await session.dispatch_action(ActionKind.CONFIRM, txn_id, confirmed=True)
"""

import logging
from typing import Optional, Tuple

import httpx

from reconciliation_client.clients.api_gateway import ApiGateway
from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.config import Settings, get_settings
from reconciliation_client.logging_config import setup_logging
from reconciliation_client.models import MatchStatus, ReconciliationBatch
from reconciliation_client.sentry_integration import init_sentry
from reconciliation_client.services.action_coordinator import (
    ActionCoordinator,
    ActionKind,
    ActionResult,
    ActionState,
    BulkConfirmOutcome,
)
from reconciliation_client.services.batch_progress import BatchProgressTracker, ProgressState
from reconciliation_client.services.batch_store import BatchState, BatchStore
from reconciliation_client.services.export import export_filename, generate_csv
from reconciliation_client.services.invoice_search import InvoiceSearchSession, SearchState
from reconciliation_client.services.scheduler import AsyncioScheduler, Scheduler
from reconciliation_client.services.transaction_collection import (
    CollectionState,
    TransactionCollectionManager,
)

logger = logging.getLogger(__name__)


def configure_observability(settings: Settings) -> bool:
    """
    Configure logging and error tracking from settings.

    Returns True if Sentry was initialized.
    """
    setup_logging(
        level="DEBUG" if settings.debug_enabled else settings.LOG_LEVEL,
        json_format=settings.log_json_enabled,
        service_name="reconciliation-client"
    )
    if settings.SENTRY_DSN:
        return init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            sample_rate=1.0,
        )
    return False


class DashboardSession:
    def __init__(
        self,
        api: ReconciliationApi,
        scheduler: Optional[Scheduler] = None,
        poll_interval: float = 2.0,
        max_consecutive_errors: int = 3,
        search_debounce: float = 0.3,
        search_limit: int = 20,
        page_size: int = 20,
        gateway: Optional[ApiGateway] = None
    ):
        self.api = api
        self.gateway = gateway
        self.scheduler = scheduler or AsyncioScheduler()

        self.batches = BatchStore(api)
        self.progress = BatchProgressTracker(
            self.batches,
            self.scheduler,
            interval=poll_interval,
            max_consecutive_errors=max_consecutive_errors,
            on_complete=self._on_batch_complete,
        )
        self.collection = TransactionCollectionManager(api, page_size=page_size)
        self.actions = ActionCoordinator(api, self.collection, self.batches)
        self.search_session = InvoiceSearchSession(
            api,
            self.scheduler,
            debounce=search_debounce,
            limit=search_limit,
        )
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        scheduler: Optional[Scheduler] = None,
        observability: bool = False
    ) -> "DashboardSession":
        settings = settings or get_settings()
        if observability:
            configure_observability(settings)
        gateway = ApiGateway.from_settings(settings, client=client)
        return cls(
            ReconciliationApi(gateway),
            scheduler=scheduler,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            max_consecutive_errors=settings.POLL_MAX_CONSECUTIVE_ERRORS,
            search_debounce=settings.SEARCH_DEBOUNCE_SECONDS,
            search_limit=settings.SEARCH_RESULT_LIMIT,
            page_size=settings.PAGE_SIZE,
            gateway=gateway,
        )

    # ==================== SNAPSHOTS ====================

    def batch_state(self) -> BatchState:
        return self.batches.snapshot()

    def progress_state(self) -> ProgressState:
        return self.progress.snapshot()

    def collection_state(self) -> CollectionState:
        return self.collection.snapshot()

    def action_state(self) -> ActionState:
        return self.actions.snapshot()

    def search_state(self) -> SearchState:
        return self.search_session.snapshot()

    def is_row_locked(self, transaction_id: str) -> bool:
        return self.actions.is_locked(transaction_id)

    # ==================== BATCHES ====================

    async def upload(self, filename: str, content: bytes, track: bool = True) -> Optional[str]:
        """Upload a statement and, unless `track` is False, start polling it."""
        batch_id = await self.batches.upload(filename, content)
        if batch_id and track:
            await self.start_polling(batch_id)
        return batch_id

    async def load_batches(self, status: Optional[str] = None, limit: Optional[int] = None, offset: Optional[int] = None) -> bool:
        return await self.batches.fetch_all(status=status, limit=limit, offset=offset)

    async def start_polling(self, batch_id: str):
        if self.collection.batch_id != batch_id:
            self.batches.clear_current()
        self.collection.set_batch(batch_id)
        await self.progress.start(batch_id)

    def stop_polling(self):
        self.progress.stop()

    async def retry_polling(self) -> bool:
        return await self.progress.retry()

    def _on_batch_complete(self, batch: ReconciliationBatch):
        self.batches.mark_upload_complete()

    # ==================== TRANSACTIONS ====================

    async def load_page(self, page: Optional[int] = None) -> bool:
        return await self.collection.load_page(page)

    async def load_more(self) -> bool:
        return await self.collection.load_more()

    async def set_filter(self, status: Optional[MatchStatus]) -> bool:
        return await self.collection.change_filter(status)

    async def retry_load(self) -> bool:
        return await self.collection.retry()

    async def open_transaction(self, transaction_id: str):
        return await self.collection.fetch_transaction(transaction_id)

    # ==================== ACTIONS ====================

    async def dispatch_action(
        self,
        kind: ActionKind,
        transaction_id: str,
        *,
        confirmed: bool = False,
        invoice_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> ActionResult:
        result = await self.actions.dispatch(
            kind,
            transaction_id,
            confirmed=confirmed,
            invoice_id=invoice_id,
            reason=reason,
        )
        if result.success and ActionKind(kind) == ActionKind.MATCH:
            self.search_session.reset()
        return result

    async def bulk_confirm(self, *, confirmed: bool = False) -> BulkConfirmOutcome:
        return await self.actions.bulk_confirm(self.collection.batch_id, confirmed=confirmed)

    # ==================== SEARCH ====================

    async def open_search(self, transaction_id: str) -> bool:
        txn = self.collection.get(transaction_id)
        if txn is None:
            logger.info(f"Cannot search for unknown transaction {transaction_id}")
            return False
        return await self.search_session.open(txn)

    def search(self, raw: str):
        self.search_session.set_query(raw)

    def close_search(self):
        self.search_session.reset()

    # ==================== EXPORT ====================

    def export_csv(self, prefix: str = "unmatched_transactions") -> Tuple[str, str]:
        """(filename, content) for the rows currently loaded."""
        return export_filename(prefix), generate_csv(self.collection.transactions)

    # ==================== LIFECYCLE ====================

    def clear_errors(self):
        self.batches.clear_error()
        self.progress.clear_error()
        self.collection.clear_error()
        self.actions.clear_error()
        self.search_session.clear_error()

    async def close(self):
        """Tear down the view: cancel timers, abort requests, block late writes."""
        if self._closed:
            return
        self._closed = True
        self.progress.close()
        self.search_session.close()
        self.collection.close()
        self.actions.close()
        self.batches.close()
        if self.gateway is not None:
            await self.gateway.aclose()
        logger.debug("Dashboard session closed")

    async def __aenter__(self) -> "DashboardSession":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
