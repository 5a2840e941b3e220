from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List, Any, Dict

from reconciliation_client.models.enums import MatchStatus, BatchStatus, InvoiceStatus


class ApiModel(BaseModel):
    """Base for backend payloads: camelCase on the wire, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ==================== BATCH ====================
class ReconciliationBatch(ApiModel):
    id: str
    filename: str = ""
    total_transactions: int = 0
    processed_count: int = 0
    auto_matched_count: int = 0
    needs_review_count: int = 0
    unmatched_count: int = 0
    status: BatchStatus = BatchStatus.PROCESSING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return BatchStatus.from_wire(value)

    @property
    def progress_percent(self) -> float:
        if self.total_transactions <= 0:
            return 0.0
        return round(min(self.processed_count, self.total_transactions) * 100.0 / self.total_transactions, 1)


class BatchListResponse(ApiModel):
    batches: List[ReconciliationBatch] = Field(default_factory=list)
    total: int = 0
    limit: Optional[int] = None
    offset: Optional[int] = None


class UploadResponse(ApiModel):
    batch_id: str


# ==================== MATCH DETAILS ====================
class MatchBreakdown(ApiModel):
    raw_total: Optional[float] = None
    raw_name_similarity: Optional[float] = None
    weighted_name_score: Optional[float] = None
    date_score: Optional[float] = None
    ambiguity_penalty: Optional[float] = None


class MatchDetails(ApiModel):
    """
    Match explanation payload.

    The backend currently sends either a nested "breakdown" shape or the
    legacy flat fields. Both are kept as received; callers inspect
    has_breakdown / has_legacy_fields rather than merging them.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    breakdown: Optional[MatchBreakdown] = None
    explanation: Optional[str] = None
    candidate_count: Optional[int] = None
    normalized_description: Optional[str] = None
    normalized_customer_name: Optional[str] = None

    # Legacy flat shape
    confidence: Optional[float] = None
    name_similarity: Optional[float] = None
    date_proximity: Optional[float] = None
    amount_match: Optional[bool] = None
    ambiguity_penalty: Optional[float] = None

    @property
    def has_breakdown(self) -> bool:
        return self.breakdown is not None

    @property
    def has_legacy_fields(self) -> bool:
        return any(
            value is not None
            for value in (
                self.confidence,
                self.name_similarity,
                self.date_proximity,
                self.amount_match,
                self.ambiguity_penalty,
            )
        )

    @property
    def shape(self) -> Optional[str]:
        """"breakdown", "legacy", "both" or None when neither is present."""
        if self.has_breakdown and self.has_legacy_fields:
            return "both"
        if self.has_breakdown:
            return "breakdown"
        if self.has_legacy_fields:
            return "legacy"
        return None


# ==================== TRANSACTIONS ====================
class MatchedInvoiceSummary(ApiModel):
    id: str
    invoice_number: str = ""
    customer_name: str = ""
    amount: float = 0.0


class BankTransaction(ApiModel):
    id: str
    transaction_date: str = ""
    description: str = ""
    amount: float = 0.0
    status: MatchStatus = MatchStatus.UNMATCHED
    confidence_score: Optional[float] = None
    matched_invoice: Optional[MatchedInvoiceSummary] = None
    match_details: Optional[MatchDetails] = None
    batch_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("uploadBatchId", "batchId", "batch_id"),
    )
    reference_number: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return MatchStatus.from_wire(value)

    @model_validator(mode="after")
    def default_updated_at(self):
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self


class CursorPage(ApiModel):
    """Cursor-paginated transaction page: {data[], nextCursor?, hasMore}."""
    data: List[BankTransaction] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    has_more: bool = False

    @property
    def can_load_more(self) -> bool:
        return bool(self.has_more and self.next_cursor)


class PaginationMeta(ApiModel):
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0


class OffsetPage(ApiModel):
    """Page-numbered transaction page: {transactions[], pagination{...}}."""
    transactions: List[BankTransaction] = Field(default_factory=list)
    pagination: PaginationMeta = Field(default_factory=PaginationMeta)


class ActionResponse(ApiModel):
    transaction: BankTransaction
    audit_log_id: Optional[str] = None


class BulkConfirmResult(ApiModel):
    confirmed_count: int = 0
    transaction_ids: List[str] = Field(default_factory=list)


# ==================== INVOICES ====================
class Invoice(ApiModel):
    id: str
    invoice_number: str = ""
    customer_name: str = ""
    amount: float = 0.0
    status: Optional[InvoiceStatus] = None
    due_date: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        if value is None:
            return None
        return str(value).upper()


class InvoiceSearchResponse(ApiModel):
    invoices: List[Invoice] = Field(default_factory=list)
    count: int = 0
    search_params: Dict[str, Any] = Field(default_factory=dict)
