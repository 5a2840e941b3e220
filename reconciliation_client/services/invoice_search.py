"""
Invoice Search Session

Debounced invoice lookup used while manually matching one transaction.

Query interpretation of a settled input:
- parses entirely as a number  -> search by exact amount
- other non-empty text         -> free-text search (customer name, number)
- empty                        -> search by the transaction's own amount
"""

import asyncio
import copy
import functools
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from reconciliation_client.clients.api_gateway import ApiClientError
from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.models import BankTransaction, Invoice
from reconciliation_client.services.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchQuery:
    q: Optional[str] = None
    amount: Optional[float] = None


def interpret_query(raw: Optional[str], fallback_amount: Optional[float] = None) -> Optional[SearchQuery]:
    """Turn raw input into amount or text criteria. None means nothing to search."""
    text = (raw or "").strip()
    if text:
        try:
            number = Decimal(text)
        except InvalidOperation:
            number = None
        if number is not None and number.is_finite():
            return SearchQuery(amount=float(number))
        return SearchQuery(q=text)
    if fallback_amount is not None:
        return SearchQuery(amount=float(fallback_amount))
    return None


@dataclass
class SearchState:
    transaction_id: Optional[str] = None
    raw_query: str = ""
    debounced_query: str = ""
    results: List[Invoice] = field(default_factory=list)
    count: int = 0
    searching: bool = False
    error: Optional[str] = None
    has_searched: bool = False
    last_params: Dict[str, Any] = field(default_factory=dict)


class InvoiceSearchSession:
    """
    One search session per transaction being matched.

    open() resets the session and seeds it with an amount search; each
    settled input after that triggers a fresh search.
    """

    def __init__(
        self,
        api: ReconciliationApi,
        scheduler: Scheduler,
        debounce: float = 0.3,
        limit: int = 20,
        include_paid: bool = False
    ):
        self.api = api
        self.scheduler = scheduler
        self.debounce = debounce
        self.limit = limit
        self.include_paid = include_paid

        self._state = SearchState()
        self._transaction: Optional[BankTransaction] = None
        self._session_id = 0
        self._sequence = 0
        self._timer: Optional[TimerHandle] = None
        self._abort: Optional[asyncio.Event] = None
        self._alive = True

    # ==================== READ ====================

    def snapshot(self) -> SearchState:
        return copy.deepcopy(self._state)

    @property
    def has_pending_input(self) -> bool:
        return self._timer is not None and self._timer.pending

    # ==================== SESSION ====================

    async def open(self, transaction: BankTransaction) -> bool:
        """Start a session for `transaction` and run the seed search."""
        if not self._alive:
            return False
        self._reset()
        self._transaction = transaction
        self._state.transaction_id = transaction.id
        return await self._search(self._session_id, "")

    def set_query(self, raw: str):
        """Record an input change; the search runs once the input settles."""
        if not self._alive or self._transaction is None:
            return
        self._state.raw_query = raw
        if self._timer is not None:
            self._timer.cancel()
        self._timer = self.scheduler.call_later(
            self.debounce,
            functools.partial(self._settle, self._session_id, raw)
        )

    async def retry(self) -> bool:
        """Re-run the last settled query."""
        if not self._alive or self._transaction is None:
            return False
        return await self._search(self._session_id, self._state.debounced_query)

    def clear_error(self):
        self._state.error = None

    def reset(self):
        self._reset()

    def close(self):
        self._reset()
        self._alive = False

    # ==================== INTERNALS ====================

    def _reset(self):
        self._session_id += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._abort_inflight()
        self._transaction = None
        self._state = SearchState()

    def _abort_inflight(self):
        if self._abort is not None:
            self._abort.set()
            self._abort = None

    async def _settle(self, session_id: int, raw: str):
        if session_id != self._session_id or not self._alive:
            return
        self._timer = None
        self._state.debounced_query = raw
        if raw.strip() or self._state.has_searched:
            await self._search(session_id, raw)

    async def _search(self, session_id: int, raw: str) -> bool:
        fallback = self._transaction.amount if self._transaction else None
        query = interpret_query(raw, fallback)
        if query is None:
            return False

        self._abort_inflight()
        self._sequence += 1
        sequence = self._sequence
        abort = self._abort = asyncio.Event()

        self._state.searching = True
        self._state.error = None
        self._state.has_searched = True

        try:
            result = await self.api.search_invoices(
                q=query.q,
                amount=query.amount,
                include_paid=self.include_paid or None,
                limit=self.limit,
                signal=abort,
            )
        except ApiClientError as e:
            if not self._is_current(session_id, sequence):
                return False
            self._state.searching = False
            self._state.error = e.message or "Failed to search invoices"
            logger.warning(f"Invoice search failed: {e.code} {e.message}")
            return False

        if not self._is_current(session_id, sequence):
            return False

        self._state.searching = False
        self._state.results = list(result.invoices)
        self._state.count = result.count
        self._state.last_params = dict(result.search_params)
        return True

    def _is_current(self, session_id: int, sequence: int) -> bool:
        return self._alive and session_id == self._session_id and sequence == self._sequence
