"""
Request Gateway

Single typed entry point to the reconciliation backend.
Every call either returns the parsed body or raises ApiClientError with:
- status: HTTP status (0 for transport-level failures)
- code: NETWORK_ERROR | ABORT_ERROR | API_ERROR | UNKNOWN_ERROR | UPLOAD_ERROR
- message: human readable message
- details: optional structured details from the backend error body

The gateway performs no retries. Retry policy belongs to callers.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from reconciliation_client.config import Settings, normalize_api_base_url
from reconciliation_client.sentry_integration import capture_exception

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Machine-readable failure classes produced by the gateway."""
    NETWORK_ERROR = "NETWORK_ERROR"
    ABORT_ERROR = "ABORT_ERROR"
    API_ERROR = "API_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    UPLOAD_ERROR = "UPLOAD_ERROR"


class ApiClientError(Exception):
    """API client error with structured information."""

    def __init__(
        self,
        message: str,
        status: int = 0,
        code: str = ErrorCode.API_ERROR.value,
        details: Any = None
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code.value if isinstance(code, ErrorCode) else str(code)
        self.details = details

    @property
    def is_transport_error(self) -> bool:
        return self.status == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"ApiClientError(status={self.status}, code={self.code!r}, message={self.message!r})"


def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None values and stringify booleans the way the backend expects."""
    if not params:
        return {}
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, Enum):
            value = value.value
        cleaned[key] = value
    return cleaned


class ApiGateway:
    """
    Async HTTP gateway over httpx.

    The underlying AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise one is created and owned by the gateway.
    """

    DEFAULT_HEADERS = {"Accept": "application/json"}

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = normalize_api_base_url(base_url)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "ApiGateway":
        return cls(settings.API_BASE_URL, timeout=settings.REQUEST_TIMEOUT_SECONDS, client=client)

    def build_url(self, path: str) -> str:
        """Join an endpoint path onto the versioned base URL."""
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{normalized}"

    # ==================== CORE REQUEST ====================

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        signal: Optional[asyncio.Event] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        """
        Perform a request and return the parsed body.

        Args:
            method: HTTP method
            path: Endpoint path relative to the versioned base URL
            params: Query parameters (None values are dropped)
            body: JSON body, ignored for GET
            signal: Optional abort signal; setting it abandons the request
            headers: Additional headers

        Raises:
            ApiClientError for every failure class
        """
        method = method.upper()
        url = self.build_url(path)
        kwargs: Dict[str, Any] = {
            "params": _clean_params(params),
            "headers": {**self.DEFAULT_HEADERS, **(headers or {})},
        }
        if body is not None and method != "GET":
            kwargs["json"] = body

        try:
            response = await self._send(self._client.request(method, url, **kwargs), signal)
        except ApiClientError:
            raise
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} transport failure: {e}")
            raise ApiClientError(
                "Network error. Please check your connection.",
                0,
                ErrorCode.NETWORK_ERROR
            ) from e
        except Exception as e:
            logger.error(f"{method} {path} unexpected failure: {e}")
            capture_exception(e, method=method, path=path)
            raise ApiClientError(
                str(e) or "An unexpected error occurred",
                0,
                ErrorCode.UNKNOWN_ERROR
            ) from e

        return self._handle_response(response, method, path)

    async def _send(self, request_coro, signal: Optional[asyncio.Event]) -> httpx.Response:
        """Await the request, abandoning it if the abort signal fires first."""
        if signal is None:
            return await request_coro

        if signal.is_set():
            request_coro.close()
            raise ApiClientError("Request was cancelled", 0, ErrorCode.ABORT_ERROR)

        request_task = asyncio.ensure_future(request_coro)
        abort_task = asyncio.ensure_future(signal.wait())
        try:
            done, _ = await asyncio.wait(
                {request_task, abort_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            abort_task.cancel()
            if not request_task.done():
                request_task.cancel()

        if request_task in done:
            return request_task.result()

        raise ApiClientError("Request was cancelled", 0, ErrorCode.ABORT_ERROR)

    def _handle_response(self, response: httpx.Response, method: str, path: str) -> Any:
        status = response.status_code

        if status == 204:
            return {}

        content_type = response.headers.get("content-type", "")
        is_json = "application/json" in content_type

        if not response.is_success:
            if is_json:
                try:
                    payload = response.json()
                except ValueError:
                    payload = None
                error = payload.get("error") if isinstance(payload, dict) else None
                if isinstance(error, dict):
                    logger.info(f"{method} {path} -> {status} {error.get('code')}")
                    raise ApiClientError(
                        error.get("message") or "An error occurred",
                        status,
                        error.get("code") or ErrorCode.API_ERROR,
                        error.get("details")
                    )
            logger.info(f"{method} {path} -> {status}")
            raise ApiClientError(f"Request failed with status {status}", status)

        if is_json:
            try:
                return response.json()
            except ValueError as e:
                logger.error(f"{method} {path} returned malformed JSON")
                raise ApiClientError(
                    "Malformed response from server",
                    status,
                    ErrorCode.UNKNOWN_ERROR
                ) from e

        return response.text

    # ==================== VERB HELPERS ====================

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None, signal: Optional[asyncio.Event] = None) -> Any:
        return await self.request("GET", path, params=params, signal=signal)

    async def post(self, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None, signal: Optional[asyncio.Event] = None) -> Any:
        return await self.request("POST", path, params=params, body=body, signal=signal)

    # ==================== UPLOAD ====================

    async def upload(
        self,
        path: str,
        filename: str,
        content: bytes,
        field_name: str = "file",
        additional_data: Optional[Dict[str, str]] = None,
        content_type: str = "text/csv",
        signal: Optional[asyncio.Event] = None
    ) -> Any:
        """Upload a file using multipart/form-data."""
        url = self.build_url(path)
        files = {field_name: (filename, content, content_type)}

        try:
            response = await self._send(
                self._client.post(
                    url,
                    files=files,
                    data=additional_data or None,
                    headers=dict(self.DEFAULT_HEADERS)
                ),
                signal
            )
        except ApiClientError:
            raise
        except httpx.TransportError as e:
            logger.warning(f"Upload {filename} transport failure: {e}")
            raise ApiClientError(
                "Network error. Please check your connection.",
                0,
                ErrorCode.NETWORK_ERROR
            ) from e
        except Exception as e:
            logger.error(f"Upload {filename} failed: {e}")
            capture_exception(e, path=path)
            raise ApiClientError(str(e) or "Upload failed", 0, ErrorCode.UPLOAD_ERROR) from e

        return self._handle_response(response, "POST", path)

    # ==================== LIFECYCLE ====================

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ApiGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
