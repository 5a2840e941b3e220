"""
Reconciliation Backend Bindings

Typed wrappers over the gateway for every backend endpoint the dashboard uses.
All responses arrive wrapped as {success, data}; errors as
{success: false, error: {message, code, details?}}.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from reconciliation_client.clients.api_gateway import ApiGateway, ApiClientError, ErrorCode
from reconciliation_client.models import (
    MatchStatus,
    ReconciliationBatch,
    BatchListResponse,
    UploadResponse,
    BankTransaction,
    CursorPage,
    OffsetPage,
    ActionResponse,
    BulkConfirmResult,
    InvoiceSearchResponse,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def unwrap_envelope(payload: Any) -> Any:
    """
    Extract `data` from a {success, data} envelope.

    A 2xx envelope carrying success=false is treated as an API error.
    Payloads without an envelope (e.g. 204 bodies) are returned unchanged.
    """
    if isinstance(payload, dict) and "success" in payload:
        if not payload.get("success"):
            error = payload.get("error") or {}
            raise ApiClientError(
                error.get("message") or "Request was not successful",
                200,
                error.get("code") or ErrorCode.API_ERROR,
                error.get("details")
            )
        return payload.get("data")
    return payload


def parse_model(model: Type[ModelT], data: Any) -> ModelT:
    """Validate unwrapped data, reporting schema drift as UNKNOWN_ERROR."""
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.error(f"Unexpected {model.__name__} payload: {e.error_count()} validation errors")
        raise ApiClientError(
            f"Unexpected response shape for {model.__name__}",
            200,
            ErrorCode.UNKNOWN_ERROR,
            e.errors(include_url=False)
        ) from e


def _status_filter(status: Optional[MatchStatus]) -> Optional[str]:
    if status is None:
        return None
    return MatchStatus(status).wire_value


class ReconciliationApi:
    """
    Endpoint bindings for the reconciliation backend.
    """

    def __init__(self, gateway: ApiGateway):
        self.gateway = gateway

    # ==================== BATCHES ====================

    async def upload_statement(self, filename: str, content: bytes) -> str:
        """POST /reconciliation/upload (multipart) -> batch id."""
        payload = await self.gateway.upload("/reconciliation/upload", filename, content, field_name="file")
        return parse_model(UploadResponse, unwrap_envelope(payload)).batch_id

    async def list_batches(
        self,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None
    ) -> BatchListResponse:
        payload = await self.gateway.get(
            "/reconciliation",
            params={"status": status, "limit": limit, "offset": offset}
        )
        return parse_model(BatchListResponse, unwrap_envelope(payload))

    async def get_batch(self, batch_id: str, signal: Optional[asyncio.Event] = None) -> ReconciliationBatch:
        payload = await self.gateway.get(f"/reconciliation/{batch_id}", signal=signal)
        return parse_model(ReconciliationBatch, unwrap_envelope(payload))

    # ==================== TRANSACTIONS ====================

    async def list_transactions_cursor(
        self,
        batch_id: str,
        status: Optional[MatchStatus] = None,
        cursor: Optional[str] = None,
        limit: int = 20,
        signal: Optional[asyncio.Event] = None
    ) -> CursorPage:
        """GET /reconciliation/{id}/transactions?status&cursor&limit."""
        payload = await self.gateway.get(
            f"/reconciliation/{batch_id}/transactions",
            params={"status": _status_filter(status), "cursor": cursor, "limit": limit},
            signal=signal
        )
        return parse_model(CursorPage, unwrap_envelope(payload))

    async def list_transactions_page(
        self,
        batch_id: str,
        page: int,
        status: Optional[MatchStatus] = None,
        limit: int = 20,
        signal: Optional[asyncio.Event] = None
    ) -> OffsetPage:
        """GET /reconciliation/{id}/transactions?status&page&limit."""
        payload = await self.gateway.get(
            f"/reconciliation/{batch_id}/transactions",
            params={"status": _status_filter(status), "page": page, "limit": limit},
            signal=signal
        )
        return parse_model(OffsetPage, unwrap_envelope(payload))

    async def get_transaction(self, transaction_id: str) -> BankTransaction:
        payload = await self.gateway.get(f"/transactions/{transaction_id}")
        return parse_model(BankTransaction, unwrap_envelope(payload))

    # ==================== ACTIONS ====================

    async def confirm(self, transaction_id: str) -> ActionResponse:
        payload = await self.gateway.post(f"/transactions/{transaction_id}/confirm")
        return parse_model(ActionResponse, unwrap_envelope(payload))

    async def reject(self, transaction_id: str, reason: Optional[str] = None) -> ActionResponse:
        payload = await self.gateway.post(f"/transactions/{transaction_id}/reject", body={"reason": reason})
        return parse_model(ActionResponse, unwrap_envelope(payload))

    async def match(self, transaction_id: str, invoice_id: str, reason: Optional[str] = None) -> ActionResponse:
        payload = await self.gateway.post(
            f"/transactions/{transaction_id}/match",
            body={"invoiceId": invoice_id, "reason": reason}
        )
        return parse_model(ActionResponse, unwrap_envelope(payload))

    async def mark_external(self, transaction_id: str, reason: Optional[str] = None) -> ActionResponse:
        payload = await self.gateway.post(f"/transactions/{transaction_id}/external", body={"reason": reason})
        return parse_model(ActionResponse, unwrap_envelope(payload))

    async def bulk_confirm(self, batch_id: str) -> BulkConfirmResult:
        payload = await self.gateway.post("/transactions/bulk-confirm", body={"batchId": batch_id})
        return parse_model(BulkConfirmResult, unwrap_envelope(payload))

    # ==================== INVOICES ====================

    async def search_invoices(
        self,
        q: Optional[str] = None,
        amount: Optional[float] = None,
        status: Optional[str] = None,
        include_paid: Optional[bool] = None,
        limit: int = 20,
        signal: Optional[asyncio.Event] = None
    ) -> InvoiceSearchResponse:
        params: Dict[str, Any] = {"limit": limit}
        if q:
            params["q"] = q
        if amount is not None:
            params["amount"] = amount
        if status:
            params["status"] = status
        if include_paid:
            params["includePaid"] = include_paid
        payload = await self.gateway.get("/invoices/search", params=params, signal=signal)
        return parse_model(InvoiceSearchResponse, unwrap_envelope(payload))
