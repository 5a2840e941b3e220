"""
Data model shared by all coordination components.
"""

from reconciliation_client.models.enums import (
    MatchStatus,
    BatchStatus,
    InvoiceStatus,
    UploadStatus,
    confidence_level,
)
from reconciliation_client.models.schemas import (
    ReconciliationBatch,
    BatchListResponse,
    UploadResponse,
    MatchBreakdown,
    MatchDetails,
    MatchedInvoiceSummary,
    BankTransaction,
    CursorPage,
    PaginationMeta,
    OffsetPage,
    ActionResponse,
    BulkConfirmResult,
    Invoice,
    InvoiceSearchResponse,
)

__all__ = [
    'MatchStatus',
    'BatchStatus',
    'InvoiceStatus',
    'UploadStatus',
    'confidence_level',
    'ReconciliationBatch',
    'BatchListResponse',
    'UploadResponse',
    'MatchBreakdown',
    'MatchDetails',
    'MatchedInvoiceSummary',
    'BankTransaction',
    'CursorPage',
    'PaginationMeta',
    'OffsetPage',
    'ActionResponse',
    'BulkConfirmResult',
    'Invoice',
    'InvoiceSearchResponse',
]
