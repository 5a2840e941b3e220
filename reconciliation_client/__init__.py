"""
Reconciliation Dashboard Client

Client-side coordination layer for the bank reconciliation review dashboard:
- Batch upload and progress polling with bounded backoff
- Paginated, filterable transaction collection (cursor or page mode)
- Per-row and bulk match actions with in-flight tracking
- Debounced invoice search for manual matching
- CSV export of loaded transactions
"""

from reconciliation_client.clients import ApiGateway, ApiClientError, ErrorCode, ReconciliationApi
from reconciliation_client.models import (
    MatchStatus,
    BatchStatus,
    UploadStatus,
    ReconciliationBatch,
    BankTransaction,
    Invoice,
)
from reconciliation_client.services import (
    ActionKind,
    ActionResult,
    BulkConfirmOutcome,
    PollState,
    AsyncioScheduler,
    ManualScheduler,
    is_action_allowed,
    is_row_locked,
    interpret_query,
    generate_csv,
)
from reconciliation_client.session import DashboardSession

__version__ = "1.0.0"

__all__ = [
    # Gateway
    'ApiGateway',
    'ApiClientError',
    'ErrorCode',
    'ReconciliationApi',
    # Models
    'MatchStatus',
    'BatchStatus',
    'UploadStatus',
    'ReconciliationBatch',
    'BankTransaction',
    'Invoice',
    # Coordination
    'ActionKind',
    'ActionResult',
    'BulkConfirmOutcome',
    'PollState',
    'AsyncioScheduler',
    'ManualScheduler',
    'is_action_allowed',
    'is_row_locked',
    'interpret_query',
    'generate_csv',
    # Session
    'DashboardSession',
]
