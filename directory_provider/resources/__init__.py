"""Resource adapters and data sources.

Each managed resource type pairs a typed desired-state record with an adapter
for the reconciliation engine:

- application.py: Application registrations (roles, scopes, owners)
- application_password.py: Password credentials of an application
- user.py: User accounts
- access_package.py: Access package resource requests

Read-only data sources:

- domains.py: Tenant domains, filtered
- user_lookup.py: Single user by UPN, object ID or mail nickname
"""
from __future__ import annotations
from typing import Any, Callable, Dict, NamedTuple, Optional

from ..core.graph import (
    AccessPackageResourceRequestClient,
    ApplicationsClient,
    GraphClient,
    UsersClient,
)
from ..core.locks import NameLocks
from ..core.errors import ValidationError
from ..core.reconciler import AuditHook, Reconciler, ResourceAdapter, Timeouts
from .access_package import (
    ACCESS_PACKAGE_RESOURCE_REQUEST_RESOURCE_NAME,
    AccessPackageResourceRequest,
    AccessPackageResourceRequestAdapter,
)
from .application import APPLICATION_RESOURCE_NAME, Application, ApplicationAdapter
from .application_password import (
    APPLICATION_PASSWORD_RESOURCE_NAME,
    ApplicationPassword,
    ApplicationPasswordAdapter,
)
from .domains import DomainFilter, DomainsDataSource
from .user import USER_RESOURCE_NAME, User, UserAdapter
from .user_lookup import UserLookup


class ResourceType(NamedTuple):
    spec_type: Any
    make_adapter: Callable[[GraphClient, Optional[str]], ResourceAdapter]


RESOURCE_TYPES: Dict[str, ResourceType] = {
    APPLICATION_RESOURCE_NAME: ResourceType(
        Application, lambda graph, _: ApplicationAdapter(ApplicationsClient(graph))
    ),
    APPLICATION_PASSWORD_RESOURCE_NAME: ResourceType(
        ApplicationPassword, lambda graph, _: ApplicationPasswordAdapter(ApplicationsClient(graph))
    ),
    USER_RESOURCE_NAME: ResourceType(
        User, lambda graph, _: UserAdapter(UsersClient(graph))
    ),
    ACCESS_PACKAGE_RESOURCE_REQUEST_RESOURCE_NAME: ResourceType(
        AccessPackageResourceRequest,
        lambda graph, api_version: AccessPackageResourceRequestAdapter(
            AccessPackageResourceRequestClient(graph, api_version or "beta")
        ),
    ),
}


def _lookup(resource_type: str) -> ResourceType:
    try:
        return RESOURCE_TYPES[resource_type]
    except KeyError:
        raise ValidationError(
            f"Unknown resource type {resource_type!r}; expected one of {sorted(RESOURCE_TYPES)}",
            field="resource_type",
        ) from None


def parse_spec(resource_type: str, data: Dict[str, Any]):
    """Build the typed desired-state record for ``resource_type``."""
    return _lookup(resource_type).spec_type.from_dict(data)


def build_reconciler(
    resource_type: str,
    graph: GraphClient,
    *,
    identity_governance_api_version: Optional[str] = None,
    locks: Optional[NameLocks] = None,
    timeouts: Optional[Timeouts] = None,
    audit_hook: Optional[AuditHook] = None,
) -> Reconciler:
    """Wire an engine for ``resource_type`` against a directory client."""
    adapter = _lookup(resource_type).make_adapter(graph, identity_governance_api_version)
    return Reconciler(adapter, locks=locks, timeouts=timeouts, audit_hook=audit_hook)


__all__ = [
    # Registry
    "RESOURCE_TYPES",
    "parse_spec",
    "build_reconciler",

    # Managed resources
    "Application",
    "ApplicationAdapter",
    "ApplicationPassword",
    "ApplicationPasswordAdapter",
    "User",
    "UserAdapter",
    "AccessPackageResourceRequest",
    "AccessPackageResourceRequestAdapter",

    # Data sources
    "DomainFilter",
    "DomainsDataSource",
    "UserLookup",
]
