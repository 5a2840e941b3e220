from reconciliation_client.clients.api_gateway import ApiGateway, ApiClientError, ErrorCode
from reconciliation_client.clients.reconciliation_api import ReconciliationApi, unwrap_envelope

__all__ = [
    'ApiGateway',
    'ApiClientError',
    'ErrorCode',
    'ReconciliationApi',
    'unwrap_envelope',
]
