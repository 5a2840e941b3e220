"""
Shared fixtures for the reconciliation client tests.

The backend is replaced by an AsyncMock specced on ReconciliationApi;
time is driven by ManualScheduler.
"""

import asyncio
from typing import Any, List

import pytest
from unittest.mock import AsyncMock

from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.models import (
    ActionResponse,
    BankTransaction,
    CursorPage,
    Invoice,
    InvoiceSearchResponse,
    OffsetPage,
    PaginationMeta,
    ReconciliationBatch,
)
from reconciliation_client.services.scheduler import ManualScheduler


def make_batch(batch_id: str = "batch-1", status: str = "processing", processed: int = 0, **overrides) -> ReconciliationBatch:
    data = {
        "id": batch_id,
        "filename": "statement.csv",
        "totalTransactions": 10,
        "processedCount": processed,
        "autoMatchedCount": 0,
        "needsReviewCount": 0,
        "unmatchedCount": 0,
        "status": status,
    }
    data.update(overrides)
    return ReconciliationBatch.model_validate(data)


def make_transaction(txn_id: str = "txn-1", status: str = "needs_review", **overrides) -> BankTransaction:
    data = {
        "id": txn_id,
        "transactionDate": "2024-01-15T00:00:00Z",
        "description": f"Payment {txn_id}",
        "amount": 100.0,
        "status": status,
        "confidenceScore": None,
        "uploadBatchId": "batch-1",
    }
    data.update(overrides)
    return BankTransaction.model_validate(data)


def make_cursor_page(transactions: List[BankTransaction], next_cursor=None, has_more=False) -> CursorPage:
    return CursorPage(data=transactions, next_cursor=next_cursor, has_more=has_more)


def make_offset_page(transactions: List[BankTransaction], page=1, total_pages=1, limit=20) -> OffsetPage:
    return OffsetPage(
        transactions=transactions,
        pagination=PaginationMeta(page=page, limit=limit, total=len(transactions), total_pages=total_pages),
    )


def make_action_response(transaction: BankTransaction, audit_log_id: str = "audit-1") -> ActionResponse:
    return ActionResponse(transaction=transaction, audit_log_id=audit_log_id)


def make_search_response(*invoice_ids: str) -> InvoiceSearchResponse:
    invoices = [
        Invoice(id=invoice_id, invoice_number=f"INV-{invoice_id}", customer_name="ACME Pty Ltd", amount=100.0)
        for invoice_id in invoice_ids
    ]
    return InvoiceSearchResponse(invoices=invoices, count=len(invoices))


class PendingCalls:
    """
    Parks every call on a future the test resolves.

    Use the bound `call` coroutine function as an AsyncMock side_effect.
    """

    def __init__(self):
        self.futures: List[asyncio.Future] = []
        self.calls: List[Any] = []

    async def call(self, *args, **kwargs):
        future = asyncio.get_running_loop().create_future()
        self.futures.append(future)
        self.calls.append((args, kwargs))
        return await future

    def resolve(self, index: int, value: Any):
        self.futures[index].set_result(value)

    def fail(self, index: int, error: Exception):
        self.futures[index].set_exception(error)


async def settle(rounds: int = 5):
    """Let scheduled tasks run up to their next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def api():
    """ReconciliationApi replaced by an AsyncMock."""
    return AsyncMock(spec=ReconciliationApi)


@pytest.fixture
def scheduler():
    return ManualScheduler()
