from reconciliation_client.services.scheduler import (
    Scheduler,
    TimerHandle,
    AsyncioScheduler,
    ManualScheduler,
)
from reconciliation_client.services.batch_store import BatchStore, BatchState, is_forward_update
from reconciliation_client.services.batch_progress import BatchProgressTracker, PollState, ProgressState
from reconciliation_client.services.transaction_collection import (
    TransactionCollectionManager,
    CollectionState,
    FetchRequest,
)
from reconciliation_client.services.action_coordinator import (
    ActionCoordinator,
    ActionKind,
    ActionResult,
    ActionState,
    BulkConfirmOutcome,
    RejectionReason,
    LEGAL_ACTIONS,
    allowed_actions,
    is_action_allowed,
    is_row_locked,
)
from reconciliation_client.services.invoice_search import (
    InvoiceSearchSession,
    SearchQuery,
    SearchState,
    interpret_query,
)
from reconciliation_client.services.export import generate_csv, export_filename, format_date

__all__ = [
    'Scheduler',
    'TimerHandle',
    'AsyncioScheduler',
    'ManualScheduler',
    'BatchStore',
    'BatchState',
    'is_forward_update',
    'BatchProgressTracker',
    'PollState',
    'ProgressState',
    'TransactionCollectionManager',
    'CollectionState',
    'FetchRequest',
    'ActionCoordinator',
    'ActionKind',
    'ActionResult',
    'ActionState',
    'BulkConfirmOutcome',
    'RejectionReason',
    'LEGAL_ACTIONS',
    'allowed_actions',
    'is_action_allowed',
    'is_row_locked',
    'InvoiceSearchSession',
    'SearchQuery',
    'SearchState',
    'interpret_query',
    'generate_csv',
    'export_filename',
    'format_date',
]
