"""
Unit Tests for the Transaction Collection Manager

Tests:
- Cursor mode: replace on first load, append on load more
- Page mode: always replace, has_more from totalPages
- Filter changes clear rows synchronously and discard stale fetches
- Failure keeps loaded rows; retry re-issues the same fetch
- Server updates replace exactly one row

Run with: pytest tests/test_transaction_collection.py -v
"""

import asyncio

import pytest

from reconciliation_client.clients.api_gateway import ApiClientError, ErrorCode
from reconciliation_client.models import MatchStatus
from reconciliation_client.services.transaction_collection import TransactionCollectionManager

from conftest import (
    PendingCalls,
    make_cursor_page,
    make_offset_page,
    make_transaction,
    settle,
)


@pytest.fixture
def collection(api):
    manager = TransactionCollectionManager(api, page_size=2)
    manager.set_batch("batch-1")
    return manager


def ids(manager):
    return [txn.id for txn in manager.snapshot().transactions]


class TestCursorMode:
    """Test cursor pagination."""

    @pytest.mark.asyncio
    async def test_first_load_replaces(self, collection, api):
        """Test the first page populates the collection in server order."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t2"), make_transaction("t1")], next_cursor="c1", has_more=True
        )

        assert await collection.load_page() is True

        state = collection.snapshot()
        assert ids(collection) == ["t2", "t1"]
        assert state.next_cursor == "c1"
        assert state.has_more is True
        assert state.loading is False
        api.list_transactions_cursor.assert_awaited_once()
        assert api.list_transactions_cursor.await_args.kwargs["cursor"] is None
        assert api.list_transactions_cursor.await_args.kwargs["limit"] == 2

    @pytest.mark.asyncio
    async def test_load_more_appends(self, collection, api):
        """Test load more sends the cursor and appends the rows."""
        api.list_transactions_cursor.side_effect = [
            make_cursor_page([make_transaction("t1"), make_transaction("t2")], next_cursor="c1", has_more=True),
            make_cursor_page([make_transaction("t3")], next_cursor=None, has_more=False),
        ]

        await collection.load_page()
        assert await collection.load_more() is True

        assert ids(collection) == ["t1", "t2", "t3"]
        assert api.list_transactions_cursor.await_args.kwargs["cursor"] == "c1"
        assert collection.can_load_more is False

    @pytest.mark.asyncio
    async def test_has_more_false_suppresses_load_more(self, collection, api):
        """Test hasMore=false disables load more."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1")], next_cursor="c1", has_more=False
        )
        await collection.load_page()

        assert collection.can_load_more is False
        assert await collection.load_more() is False
        assert api.list_transactions_cursor.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_cursor_suppresses_load_more(self, collection, api):
        """Test hasMore=true without nextCursor disables load more."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1")], next_cursor=None, has_more=True
        )
        await collection.load_page()

        assert collection.snapshot().has_more is False
        assert await collection.load_more() is False
        assert api.list_transactions_cursor.await_count == 1

    @pytest.mark.asyncio
    async def test_load_more_not_issued_twice(self, collection, api):
        """Test a second load more while one is in flight is refused."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1")], next_cursor="c1", has_more=True
        )
        await collection.load_page()

        pending = PendingCalls()
        api.list_transactions_cursor.side_effect = pending.call
        task = asyncio.create_task(collection.load_more())
        await settle()

        assert collection.snapshot().loading_more is True
        assert collection.snapshot().loading is False
        assert await collection.load_more() is False

        pending.resolve(0, make_cursor_page([make_transaction("t2")]))
        assert await task is True
        assert len(pending.calls) == 1
        assert ids(collection) == ["t1", "t2"]

    @pytest.mark.asyncio
    async def test_append_skips_duplicate_ids(self, collection, api):
        """Test a row repeated across pages is not shown twice."""
        api.list_transactions_cursor.side_effect = [
            make_cursor_page([make_transaction("t1"), make_transaction("t2")], next_cursor="c1", has_more=True),
            make_cursor_page([make_transaction("t2"), make_transaction("t3")]),
        ]
        await collection.load_page()
        await collection.load_more()

        assert ids(collection) == ["t1", "t2", "t3"]


class TestPageMode:
    """Test page-numbered pagination."""

    @pytest.mark.asyncio
    async def test_page_mode_replaces(self, collection, api):
        """Test jumping between pages replaces the rows."""
        api.list_transactions_page.side_effect = [
            make_offset_page([make_transaction("t1"), make_transaction("t2")], page=1, total_pages=3),
            make_offset_page([make_transaction("t5"), make_transaction("t6")], page=3, total_pages=3),
        ]

        await collection.load_page(1)
        assert collection.snapshot().has_more is True

        await collection.load_page(3)
        state = collection.snapshot()
        assert ids(collection) == ["t5", "t6"]
        assert state.pagination.page == 3
        assert state.has_more is False
        api.list_transactions_cursor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_load_more_unavailable_in_page_mode(self, collection, api):
        """Test page mode never appends."""
        api.list_transactions_page.return_value = make_offset_page(
            [make_transaction("t1")], page=1, total_pages=5
        )
        await collection.load_page(1)

        assert await collection.load_more() is False
        api.list_transactions_cursor.assert_not_awaited()


class TestFilterChanges:
    """Test filter-triggered resets."""

    @pytest.mark.asyncio
    async def test_set_filter_clears_synchronously(self, collection, api):
        """Test rows, cursor and has_more are cleared before the next fetch."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1")], next_cursor="c1", has_more=True
        )
        await collection.load_page()

        collection.set_filter(MatchStatus.UNMATCHED)

        state = collection.snapshot()
        assert state.transactions == []
        assert state.next_cursor is None
        assert state.has_more is False
        assert state.filter_status == MatchStatus.UNMATCHED

    @pytest.mark.asyncio
    async def test_change_filter_fetches_with_new_status(self, collection, api):
        """Test the filter is forwarded to the backend."""
        api.list_transactions_cursor.return_value = make_cursor_page([make_transaction("t9", status="unmatched")])

        await collection.change_filter(MatchStatus.UNMATCHED)

        assert api.list_transactions_cursor.await_args.kwargs["status"] == MatchStatus.UNMATCHED
        assert ids(collection) == ["t9"]

    @pytest.mark.asyncio
    async def test_filter_change_discards_inflight_fetch(self, collection, api):
        """Test a fetch issued under filter X cannot populate the view after a switch to Y."""
        pending = PendingCalls()
        api.list_transactions_cursor.side_effect = pending.call

        collection.set_filter(MatchStatus.AUTO_MATCHED)
        fetch_a = asyncio.create_task(collection.load_page())
        await settle()

        fetch_b = asyncio.create_task(collection.change_filter(MatchStatus.NEEDS_REVIEW))
        await settle()
        assert collection.snapshot().transactions == []

        pending.resolve(0, make_cursor_page([make_transaction("stale", status="auto_matched")], next_cursor="x", has_more=True))
        assert await fetch_a is False
        assert collection.snapshot().transactions == []
        assert collection.snapshot().next_cursor is None

        pending.resolve(1, make_cursor_page([make_transaction("fresh")]))
        assert await fetch_b is True
        assert ids(collection) == ["fresh"]
        assert collection.snapshot().loading is False

    @pytest.mark.asyncio
    async def test_filter_change_discards_inflight_append(self, collection, api):
        """Test an append in flight for the old filter is dropped."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1")], next_cursor="c1", has_more=True
        )
        await collection.load_page()

        pending = PendingCalls()
        api.list_transactions_cursor.side_effect = pending.call
        more = asyncio.create_task(collection.load_more())
        await settle()

        collection.set_filter(MatchStatus.UNMATCHED)
        assert collection.snapshot().loading_more is False

        pending.resolve(0, make_cursor_page([make_transaction("t2")]))
        assert await more is False
        assert collection.snapshot().transactions == []

    @pytest.mark.asyncio
    async def test_filter_change_aborts_previous_request(self, collection, api):
        """Test the abort signal of the superseded fetch is set."""
        pending = PendingCalls()
        api.list_transactions_cursor.side_effect = pending.call

        task = asyncio.create_task(collection.load_page())
        await settle()
        signal = pending.calls[0][1]["signal"]

        collection.set_filter(MatchStatus.CONFIRMED)

        assert signal.is_set()
        pending.fail(0, ApiClientError("Request was cancelled", 0, ErrorCode.ABORT_ERROR))
        assert await task is False
        assert collection.snapshot().error is None

    @pytest.mark.asyncio
    async def test_set_batch_drops_rows(self, collection, api):
        """Test switching batch clears the previous batch's rows."""
        api.list_transactions_cursor.return_value = make_cursor_page([make_transaction("t1")])
        await collection.load_page()

        collection.set_batch("batch-2")

        assert collection.snapshot().transactions == []
        assert collection.batch_id == "batch-2"


class TestFailures:
    """Test failure preservation and retry."""

    @pytest.mark.asyncio
    async def test_failed_load_more_keeps_rows(self, collection, api):
        """Test a failed append keeps what was loaded and records the error."""
        api.list_transactions_cursor.side_effect = [
            make_cursor_page([make_transaction("t1")], next_cursor="c1", has_more=True),
            ApiClientError("Server exploded", 500, ErrorCode.API_ERROR),
        ]
        await collection.load_page()

        assert await collection.load_more() is False

        state = collection.snapshot()
        assert ids(collection) == ["t1"]
        assert state.error == "Server exploded"
        assert state.loading_more is False

    @pytest.mark.asyncio
    async def test_failed_reload_keeps_rows(self, collection, api):
        """Test a failed refresh does not blank the table."""
        api.list_transactions_cursor.side_effect = [
            make_cursor_page([make_transaction("t1")]),
            ApiClientError("Network error. Please check your connection.", 0, ErrorCode.NETWORK_ERROR),
        ]
        await collection.load_page()
        await collection.refresh()

        assert ids(collection) == ["t1"]
        assert collection.snapshot().error == "Network error. Please check your connection."

    @pytest.mark.asyncio
    async def test_retry_reissues_same_parameters(self, collection, api):
        """Test retry repeats the failed append with the same cursor."""
        api.list_transactions_cursor.side_effect = [
            make_cursor_page([make_transaction("t1")], next_cursor="c1", has_more=True),
            ApiClientError("Timeout", 504),
            make_cursor_page([make_transaction("t2")]),
        ]
        await collection.load_page()
        await collection.load_more()

        assert await collection.retry() is True

        assert api.list_transactions_cursor.await_args.kwargs["cursor"] == "c1"
        assert ids(collection) == ["t1", "t2"]
        assert collection.snapshot().error is None

    @pytest.mark.asyncio
    async def test_clear_error(self, collection, api):
        """Test the error banner can be dismissed."""
        api.list_transactions_cursor.side_effect = ApiClientError("Nope", 400)
        await collection.load_page()

        collection.clear_error()

        assert collection.snapshot().error is None


class TestServerUpdates:
    """Test applying server-returned rows."""

    @pytest.mark.asyncio
    async def test_apply_server_update_replaces_only_target(self, collection, api):
        """Test exactly one row changes and order is preserved."""
        api.list_transactions_cursor.return_value = make_cursor_page(
            [make_transaction("t1"), make_transaction("t2"), make_transaction("t3")]
        )
        await collection.load_page()
        before = collection.snapshot().transactions

        updated = make_transaction("t2", status="confirmed", confidenceScore=97.5)
        assert collection.apply_server_update(updated) is True

        after = collection.snapshot().transactions
        assert ids(collection) == ["t1", "t2", "t3"]
        assert after[1] == updated
        assert after[0] == before[0]
        assert after[2] == before[2]

    @pytest.mark.asyncio
    async def test_fetch_transaction_sets_current(self, collection, api):
        """Test the detail view is loaded and later refreshed by updates."""
        api.get_transaction.return_value = make_transaction("t7")

        await collection.fetch_transaction("t7")
        collection.apply_server_update(make_transaction("t7", status="external"))

        current = collection.snapshot().current_transaction
        assert current.id == "t7"
        assert current.status == MatchStatus.EXTERNAL

    @pytest.mark.asyncio
    async def test_closed_collection_ignores_late_results(self, collection, api):
        """Test a result arriving after teardown writes nothing."""
        pending = PendingCalls()
        api.list_transactions_cursor.side_effect = pending.call
        task = asyncio.create_task(collection.load_page())
        await settle()

        collection.close()
        pending.resolve(0, make_cursor_page([make_transaction("late")]))

        assert await task is False
        assert collection.snapshot().transactions == []
