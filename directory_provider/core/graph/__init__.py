"""Directory service (Microsoft Graph) client library.

Architecture:
- client.py: HTTP client with token auto-refresh and operation deadlines
- applications.py: Application registrations, passwords and owners
- users.py: User lifecycle operations
- domains.py: Domain listing
- identity_governance.py: Access package resource requests (beta API)
- exceptions.py: Typed exceptions for error handling

Every service method returns ``(result, status)`` and raises GraphAPIError on
failure; a 404 is reported through ``GraphAPIError.not_found``.

Usage:
    from directory_provider.core.graph import GraphClient, UsersClient

    client = GraphClient(tenant_id="contoso.onmicrosoft.com")
    client.authenticate_client_credentials(client_id, client_secret)

    users = UsersClient(client)
    user, status = users.get("00000000-0000-0000-0000-000000000000")
"""
from .client import (
    GraphClient,
    operation_deadline,
    remaining_time,
    odata_equals,
    REQUEST_TIMEOUT,
    DEFAULT_GRAPH_URL,
    DEFAULT_AUTHORITY_URL,
)
from .exceptions import (
    GraphError,
    GraphAPIError,
    GraphAuthError,
    GraphTimeoutError,
)
from .applications import ApplicationsClient
from .users import UsersClient
from .domains import DomainsClient
from .identity_governance import (
    AccessPackageResourceRequestClient,
    REQUEST_TYPE_ADMIN_ADD,
    REQUEST_TYPE_ADMIN_REMOVE,
)

__all__ = [
    # Client
    "GraphClient",
    "operation_deadline",
    "remaining_time",
    "odata_equals",
    "REQUEST_TIMEOUT",
    "DEFAULT_GRAPH_URL",
    "DEFAULT_AUTHORITY_URL",

    # Exceptions
    "GraphError",
    "GraphAPIError",
    "GraphAuthError",
    "GraphTimeoutError",

    # Services
    "ApplicationsClient",
    "UsersClient",
    "DomainsClient",
    "AccessPackageResourceRequestClient",
    "REQUEST_TYPE_ADMIN_ADD",
    "REQUEST_TYPE_ADMIN_REMOVE",
]
