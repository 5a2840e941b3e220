"""
Transaction Collection Manager

Owns the transaction list shown for one batch: rows in server order,
pagination position, active status filter and loading flags.

Pagination modes (chosen per fetch):
- cursor: {data, nextCursor, hasMore}; "load more" appends
- page:   {transactions, pagination}; always replaces

Each fetch is tagged with the generation, filter and batch it was issued
under. A completion whose tag no longer matches is discarded.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from reconciliation_client.clients.api_gateway import ApiClientError
from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.models import BankTransaction, MatchStatus, PaginationMeta

logger = logging.getLogger(__name__)


@dataclass
class CollectionState:
    batch_id: Optional[str] = None
    transactions: List[BankTransaction] = field(default_factory=list)
    filter_status: Optional[MatchStatus] = None
    next_cursor: Optional[str] = None
    has_more: bool = False
    pagination: Optional[PaginationMeta] = None
    loading: bool = False
    loading_more: bool = False
    error: Optional[str] = None
    current_transaction: Optional[BankTransaction] = None
    current_transaction_loading: bool = False


@dataclass(frozen=True)
class FetchRequest:
    """Parameters of one list fetch, kept so retry() can re-issue it."""
    batch_id: str
    filter_status: Optional[MatchStatus]
    page: Optional[int] = None
    cursor: Optional[str] = None
    append: bool = False

    @property
    def page_mode(self) -> bool:
        return self.page is not None


class TransactionCollectionManager:
    """
    Paginated, filterable transaction list for the batch on screen.
    """

    def __init__(self, api: ReconciliationApi, page_size: int = 20):
        self.api = api
        self.page_size = page_size
        self._state = CollectionState()
        self._generation = 0
        self._abort: Optional[asyncio.Event] = None
        self._last_request: Optional[FetchRequest] = None
        self._alive = True

    # ==================== READ ====================

    def snapshot(self) -> CollectionState:
        return copy.deepcopy(self._state)

    @property
    def batch_id(self) -> Optional[str]:
        return self._state.batch_id

    @property
    def filter_status(self) -> Optional[MatchStatus]:
        return self._state.filter_status

    @property
    def transactions(self) -> List[BankTransaction]:
        return list(self._state.transactions)

    @property
    def page_mode(self) -> bool:
        return self._state.pagination is not None

    @property
    def can_load_more(self) -> bool:
        return (
            not self.page_mode
            and self._state.has_more
            and bool(self._state.next_cursor)
            and not self._state.loading
            and not self._state.loading_more
        )

    def get(self, transaction_id: str) -> Optional[BankTransaction]:
        for txn in self._state.transactions:
            if txn.id == transaction_id:
                return txn
        return None

    # ==================== VIEW CHANGES ====================

    def set_batch(self, batch_id: Optional[str]):
        """Point the collection at another batch, dropping rows of the old one."""
        if batch_id == self._state.batch_id:
            return
        self._invalidate()
        self._state = CollectionState(batch_id=batch_id, filter_status=self._state.filter_status)
        self._last_request = None

    def set_filter(self, status: Optional[MatchStatus]):
        """
        Switch the status filter.

        Rows, cursor and has_more are cleared before any fetch is issued, and
        fetches running under the previous filter are invalidated.
        """
        self._invalidate()
        self._state.filter_status = MatchStatus(status) if status is not None else None
        self._state.transactions = []
        self._state.next_cursor = None
        self._state.has_more = False
        self._state.pagination = None
        self._state.loading_more = False
        self._state.error = None

    async def change_filter(self, status: Optional[MatchStatus]) -> bool:
        self.set_filter(status)
        return await self.load_page()

    # ==================== FETCH ====================

    async def load_page(self, page: Optional[int] = None) -> bool:
        """
        Replace the rows with a fresh first page.

        With `page` the page-numbered endpoint shape is used; otherwise the
        cursor shape starting from the beginning.
        """
        if not self._alive or not self._state.batch_id:
            return False
        request = FetchRequest(
            batch_id=self._state.batch_id,
            filter_status=self._state.filter_status,
            page=page,
        )
        return await self._fetch(request)

    async def load_more(self) -> bool:
        """Append the next cursor page. Returns False when nothing was issued."""
        if not self._alive or not self._state.batch_id:
            return False
        if not self.can_load_more:
            return False
        request = FetchRequest(
            batch_id=self._state.batch_id,
            filter_status=self._state.filter_status,
            cursor=self._state.next_cursor,
            append=True,
        )
        return await self._fetch(request)

    async def refresh(self) -> bool:
        """Re-fetch the current view from the first page (or current page number)."""
        page = self._state.pagination.page if self._state.pagination else None
        return await self.load_page(page)

    async def retry(self) -> bool:
        """Re-issue the last fetch with the same parameters."""
        request = self._last_request
        if request is None or not self._alive:
            return False
        if request.batch_id != self._state.batch_id or request.filter_status != self._state.filter_status:
            return await self.load_page()
        if request.append and self._state.loading_more:
            return False
        return await self._fetch(request)

    async def _fetch(self, request: FetchRequest) -> bool:
        if request.append:
            generation = self._generation
            self._state.loading_more = True
            signal = self._abort
        else:
            self._invalidate()
            generation = self._generation
            self._state.loading = True
            self._state.loading_more = False
            signal = self._abort = asyncio.Event()

        self._state.error = None
        self._last_request = request

        try:
            if request.page_mode:
                result = await self.api.list_transactions_page(
                    request.batch_id,
                    request.page,
                    status=request.filter_status,
                    limit=self.page_size,
                    signal=signal,
                )
            else:
                result = await self.api.list_transactions_cursor(
                    request.batch_id,
                    status=request.filter_status,
                    cursor=request.cursor,
                    limit=self.page_size,
                    signal=signal,
                )
        except ApiClientError as e:
            if not self._is_current(generation, request):
                return False
            self._finish(request)
            self._state.error = e.message or "Failed to fetch transactions"
            logger.warning(
                f"Fetching transactions for batch {request.batch_id} failed: {e.code} {e.message}",
                extra={"batch_id": request.batch_id}
            )
            return False

        if not self._is_current(generation, request):
            logger.debug(f"Discarding stale transaction page for batch {request.batch_id}")
            return False

        self._finish(request)
        if request.page_mode:
            self._state.transactions = list(result.transactions)
            self._state.pagination = result.pagination
            self._state.next_cursor = None
            self._state.has_more = result.pagination.page < result.pagination.total_pages
        else:
            rows = list(result.data)
            if request.append:
                seen = {txn.id for txn in self._state.transactions}
                rows = self._state.transactions + [txn for txn in rows if txn.id not in seen]
            self._state.transactions = rows
            self._state.pagination = None
            self._state.next_cursor = result.next_cursor
            self._state.has_more = result.can_load_more
        return True

    def _is_current(self, generation: int, request: FetchRequest) -> bool:
        return (
            self._alive
            and generation == self._generation
            and request.batch_id == self._state.batch_id
            and request.filter_status == self._state.filter_status
        )

    def _finish(self, request: FetchRequest):
        if request.append:
            self._state.loading_more = False
        else:
            self._state.loading = False

    def _invalidate(self):
        self._generation += 1
        if self._abort is not None:
            self._abort.set()
            self._abort = None
        self._state.loading = False
        self._state.loading_more = False

    # ==================== SERVER UPDATES ====================

    def apply_server_update(self, transaction: BankTransaction) -> bool:
        """
        Replace the row with the same id by the server's copy.

        Other rows and their order are untouched. Returns False if the row is
        not loaded.
        """
        if not self._alive:
            return False
        if self._state.current_transaction and self._state.current_transaction.id == transaction.id:
            self._state.current_transaction = transaction
        for index, existing in enumerate(self._state.transactions):
            if existing.id == transaction.id:
                self._state.transactions[index] = transaction
                return True
        return False

    async def fetch_transaction(self, transaction_id: str) -> Optional[BankTransaction]:
        self._state.current_transaction_loading = True
        self._state.error = None
        try:
            txn = await self.api.get_transaction(transaction_id)
        except ApiClientError as e:
            if self._alive:
                self._state.current_transaction_loading = False
                self._state.error = e.message or "Failed to fetch transaction"
            return None

        if not self._alive:
            return None
        self._state.current_transaction_loading = False
        self._state.current_transaction = txn
        return txn

    # ==================== RESET ====================

    def clear(self):
        self._invalidate()
        self._state = CollectionState(batch_id=self._state.batch_id, filter_status=self._state.filter_status)
        self._last_request = None

    def clear_error(self):
        self._state.error = None

    def close(self):
        self._invalidate()
        self._alive = False
