"""
Action Coordinator

Issues the state-changing transaction actions and tracks what is in flight.

- Single-row actions: a map {transaction_id: ActionKind}; at most one
  outstanding action per id, rows with different ids are independent.
- Bulk confirm: one independent flag.

Every check (legality, lock, confirmation gate) happens before the first
await, so a rejected dispatch never issues a request. Successful results
are applied by replacing the row with the server's copy; nothing is
inferred locally.
"""

import copy
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Mapping, Optional, List

from reconciliation_client.clients.api_gateway import ApiClientError
from reconciliation_client.clients.reconciliation_api import ReconciliationApi
from reconciliation_client.models import BankTransaction, MatchStatus
from reconciliation_client.services.batch_store import BatchStore
from reconciliation_client.services.transaction_collection import TransactionCollectionManager

logger = logging.getLogger(__name__)


class ActionKind(str, Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    MATCH = "match"          # Find Match: manual invoice selection
    EXTERNAL = "external"    # Mark External


LEGAL_ACTIONS: Dict[MatchStatus, FrozenSet[ActionKind]] = {
    MatchStatus.AUTO_MATCHED: frozenset({ActionKind.CONFIRM, ActionKind.REJECT}),
    MatchStatus.NEEDS_REVIEW: frozenset({ActionKind.CONFIRM, ActionKind.REJECT, ActionKind.MATCH}),
    MatchStatus.UNMATCHED: frozenset({ActionKind.MATCH, ActionKind.EXTERNAL}),
    MatchStatus.CONFIRMED: frozenset(),
    MatchStatus.EXTERNAL: frozenset(),
}


def allowed_actions(status: MatchStatus) -> FrozenSet[ActionKind]:
    return LEGAL_ACTIONS.get(MatchStatus(status), frozenset())


def is_action_allowed(status: MatchStatus, kind: ActionKind) -> bool:
    return ActionKind(kind) in allowed_actions(status)


def is_row_locked(in_flight: Mapping[str, ActionKind], transaction_id: str) -> bool:
    return transaction_id in in_flight


class RejectionReason(str, Enum):
    NOT_FOUND = "not_found"
    NOT_ALLOWED = "not_allowed"
    IN_FLIGHT = "in_flight"
    CONFIRMATION_REQUIRED = "confirmation_required"
    MISSING_INVOICE = "missing_invoice"
    CLOSED = "closed"


@dataclass
class ActionResult:
    success: bool
    kind: ActionKind
    transaction_id: str
    transaction: Optional[BankTransaction] = None
    error: Optional[str] = None
    rejected: Optional[RejectionReason] = None
    audit_log_id: Optional[str] = None

    @property
    def request_sent(self) -> bool:
        return self.rejected is None


@dataclass
class BulkConfirmOutcome:
    success: bool
    confirmed_count: int = 0
    transaction_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None
    skipped: Optional[str] = None


@dataclass
class ActionState:
    in_flight: Dict[str, ActionKind] = field(default_factory=dict)
    bulk_in_flight: bool = False
    error: Optional[str] = None
    bulk_error: Optional[str] = None
    last_rejection: Optional[RejectionReason] = None


class ActionCoordinator:
    """
    Row and bulk actions against the transactions of the current batch.
    """

    def __init__(
        self,
        api: ReconciliationApi,
        collection: TransactionCollectionManager,
        batch_store: BatchStore
    ):
        self.api = api
        self.collection = collection
        self.batch_store = batch_store
        self._state = ActionState()
        self._alive = True

    # ==================== READ ====================

    def snapshot(self) -> ActionState:
        return copy.deepcopy(self._state)

    def is_locked(self, transaction_id: str) -> bool:
        return is_row_locked(self._state.in_flight, transaction_id)

    def in_flight_kind(self, transaction_id: str) -> Optional[ActionKind]:
        return self._state.in_flight.get(transaction_id)

    @property
    def bulk_in_flight(self) -> bool:
        return self._state.bulk_in_flight

    # ==================== SINGLE ROW ====================

    async def dispatch(
        self,
        kind: ActionKind,
        transaction_id: str,
        *,
        confirmed: bool = False,
        invoice_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> ActionResult:
        """
        Run one action against one transaction.

        `confirmed` must be True: it records that the user accepted the
        confirmation prompt upstream. MATCH additionally requires `invoice_id`.
        """
        kind = ActionKind(kind)

        rejection = self._check(kind, transaction_id, confirmed, invoice_id)
        if rejection is not None:
            self._state.last_rejection = rejection
            logger.info(f"Rejected {kind.value} on {transaction_id}: {rejection.value}")
            return ActionResult(False, kind, transaction_id, rejected=rejection)

        self._state.in_flight[transaction_id] = kind
        self._state.error = None
        self._state.last_rejection = None

        try:
            response = await self._send(kind, transaction_id, invoice_id, reason)
        except ApiClientError as e:
            message = e.message or f"Failed to {kind.value} transaction"
            if self._alive:
                self._state.error = message
            logger.warning(f"{kind.value} on {transaction_id} failed: {e.code} {e.message}")
            return ActionResult(False, kind, transaction_id, error=message)
        finally:
            self._state.in_flight.pop(transaction_id, None)

        if not self._alive:
            return ActionResult(True, kind, transaction_id, transaction=response.transaction,
                                audit_log_id=response.audit_log_id)

        self.collection.apply_server_update(response.transaction)
        logger.info(
            f"{kind.value} on {transaction_id} -> {response.transaction.status.value}",
            extra={"batch_id": response.transaction.batch_id}
        )
        await self._refresh_batch()
        return ActionResult(
            True,
            kind,
            transaction_id,
            transaction=response.transaction,
            audit_log_id=response.audit_log_id,
        )

    def _check(
        self,
        kind: ActionKind,
        transaction_id: str,
        confirmed: bool,
        invoice_id: Optional[str]
    ) -> Optional[RejectionReason]:
        if not self._alive:
            return RejectionReason.CLOSED
        if self.is_locked(transaction_id):
            return RejectionReason.IN_FLIGHT
        txn = self.collection.get(transaction_id)
        if txn is None:
            return RejectionReason.NOT_FOUND
        if not is_action_allowed(txn.status, kind):
            return RejectionReason.NOT_ALLOWED
        if kind == ActionKind.MATCH and not invoice_id:
            return RejectionReason.MISSING_INVOICE
        if not confirmed:
            return RejectionReason.CONFIRMATION_REQUIRED
        return None

    async def _send(self, kind: ActionKind, transaction_id: str, invoice_id: Optional[str], reason: Optional[str]):
        if kind == ActionKind.CONFIRM:
            return await self.api.confirm(transaction_id)
        if kind == ActionKind.REJECT:
            return await self.api.reject(transaction_id, reason)
        if kind == ActionKind.MATCH:
            return await self.api.match(transaction_id, invoice_id, reason)
        return await self.api.mark_external(transaction_id, reason)

    async def _refresh_batch(self):
        batch_id = self.collection.batch_id
        if not batch_id or not self._alive:
            return
        try:
            await self.batch_store.fetch_batch(batch_id)
        except ApiClientError as e:
            logger.warning(f"Refreshing batch {batch_id} after action failed: {e.message}")

    # ==================== BULK ====================

    async def bulk_confirm(self, batch_id: Optional[str] = None, *, confirmed: bool = False) -> BulkConfirmOutcome:
        """
        Confirm every auto-matched transaction of the batch.

        Skipped without a request when a bulk confirm is already running or
        the batch has no auto-matched transactions. On success the batch and,
        when filtered to AUTO_MATCHED, the visible rows are re-fetched.
        """
        if not self._alive:
            return BulkConfirmOutcome(False, skipped=RejectionReason.CLOSED.value)
        if self._state.bulk_in_flight:
            return BulkConfirmOutcome(False, skipped="bulk_in_flight")

        batch = self.batch_store.current_batch
        batch_id = batch_id or (batch.id if batch else None)
        if batch is None or batch.id != batch_id or batch.auto_matched_count <= 0:
            logger.info(f"Bulk confirm skipped for batch {batch_id}: nothing auto-matched")
            return BulkConfirmOutcome(False, skipped="nothing_to_confirm")
        if not confirmed:
            return BulkConfirmOutcome(False, skipped=RejectionReason.CONFIRMATION_REQUIRED.value)

        self._state.bulk_in_flight = True
        self._state.bulk_error = None

        try:
            result = await self.api.bulk_confirm(batch_id)
        except ApiClientError as e:
            message = e.message or "Failed to confirm transactions"
            if self._alive:
                self._state.bulk_error = message
            logger.warning(f"Bulk confirm for batch {batch_id} failed: {e.code} {e.message}",
                           extra={"batch_id": batch_id})
            return BulkConfirmOutcome(False, error=message)
        finally:
            self._state.bulk_in_flight = False

        logger.info(f"Bulk confirmed {result.confirmed_count} transactions in batch {batch_id}",
                    extra={"batch_id": batch_id})

        if self._alive:
            try:
                await self.batch_store.fetch_batch(batch_id)
            except ApiClientError as e:
                logger.warning(f"Refreshing batch {batch_id} after bulk confirm failed: {e.message}")
            if (
                self._alive
                and self.collection.batch_id == batch_id
                and self.collection.filter_status == MatchStatus.AUTO_MATCHED
            ):
                await self.collection.refresh()

        return BulkConfirmOutcome(
            True,
            confirmed_count=result.confirmed_count,
            transaction_ids=list(result.transaction_ids),
        )

    # ==================== RESET ====================

    def clear_error(self):
        self._state.error = None
        self._state.bulk_error = None

    def close(self):
        self._alive = False
