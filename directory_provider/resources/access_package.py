"""Access package resource requests (entitlement management, beta API).

A request adds a resource to a catalog. Requests are immutable: every input
forces a new request, and removal is itself a request.
"""
from __future__ import annotations
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from ..core import validators
from ..core.graph import REQUEST_TYPE_ADMIN_ADD, REQUEST_TYPE_ADMIN_REMOVE, AccessPackageResourceRequestClient
from ..core.reconciler import OperationContext, ResourceAdapter

logger = logging.getLogger(__name__)

ACCESS_PACKAGE_RESOURCE_REQUEST_RESOURCE_NAME = "azuread_access_package_resource_request"

REQUEST_TYPES = (REQUEST_TYPE_ADMIN_ADD, REQUEST_TYPE_ADMIN_REMOVE)
ORIGIN_SYSTEMS = ("AadApplication", "AadGroup", "SharePointOnline")
RESOURCE_TYPES = ("Application", "SharePoint Online Site")


@dataclass
class AccessPackageResource:
    origin_id: str
    origin_system: str
    description: Optional[str] = None
    display_name: Optional[str] = None
    is_pending_onboarding: bool = False
    resource_type: Optional[str] = None
    url: Optional[str] = None


@dataclass
class AccessPackageResourceRequest:
    """Desired state of a resource request."""
    catalog_id: str
    request_type: str
    justification: Optional[str] = None
    expiration_date_time: Optional[str] = None
    access_package_resource: Optional[AccessPackageResource] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessPackageResourceRequest":
        resource = data.get("access_package_resource")
        return cls(
            catalog_id=data.get("catalog_id", ""),
            request_type=data.get("request_type", ""),
            justification=data.get("justification"),
            expiration_date_time=data.get("expiration_date_time"),
            access_package_resource=AccessPackageResource(**resource) if resource else None,
        )


def _normalize_date(value: Optional[str]) -> Optional[str]:
    return validators.format_rfc3339(validators.is_rfc3339(value, "expiration_date_time"))


def expand_access_package_resource(resource: Optional[AccessPackageResource]) -> Optional[dict]:
    if resource is None:
        return None
    return {
        "description": resource.description,
        "displayName": resource.display_name,
        "isPendingOnboarding": resource.is_pending_onboarding,
        "originId": resource.origin_id,
        "originSystem": resource.origin_system,
        "resourceType": resource.resource_type,
        "url": resource.url,
    }


class AccessPackageResourceRequestAdapter(ResourceAdapter[AccessPackageResourceRequest]):
    """Reconciles access package resource requests."""

    resource_type = ACCESS_PACKAGE_RESOURCE_REQUEST_RESOURCE_NAME
    supports_update = False
    # Only sent on create; the service does not echo it back.
    write_only_fields = ("access_package_resource",)

    def __init__(self, client: AccessPackageResourceRequestClient):
        self.client = client

    def validate(self, spec: AccessPackageResourceRequest) -> None:
        validators.required_string(spec.catalog_id, "catalog_id")
        validators.required_string(spec.request_type, "request_type")
        validators.one_of(spec.request_type, REQUEST_TYPES, "request_type")
        validators.no_empty_string(spec.justification, "justification")
        validators.is_rfc3339(spec.expiration_date_time, "expiration_date_time")

        resource = spec.access_package_resource
        if resource is not None:
            path = "access_package_resource.0"
            validators.required_string(resource.origin_id, f"{path}.origin_id")
            validators.one_of(resource.origin_system, ORIGIN_SYSTEMS, f"{path}.origin_system")
            validators.one_of(resource.resource_type, RESOURCE_TYPES, f"{path}.resource_type")
            validators.no_empty_string(resource.description, f"{path}.description")
            validators.no_empty_string(resource.display_name, f"{path}.display_name")
            validators.no_empty_string(resource.url, f"{path}.url")

    def desired_attributes(self, spec: AccessPackageResourceRequest) -> Dict[str, Any]:
        resource = spec.access_package_resource
        return {
            "catalog_id": spec.catalog_id,
            "request_type": spec.request_type,
            "justification": spec.justification,
            "expiration_date_time": _normalize_date(spec.expiration_date_time),
            "access_package_resource": asdict(resource) if resource else None,
        }

    def create(self, spec: AccessPackageResourceRequest, ctx: OperationContext) -> dict:
        payload = {
            "catalogId": spec.catalog_id,
            "requestType": spec.request_type,
            "justification": spec.justification,
            "accessPackageResource": expand_access_package_resource(spec.access_package_resource),
        }
        if spec.expiration_date_time:
            payload["expirationDateTime"] = spec.expiration_date_time
        request, _ = self.client.create(payload, execute_immediately=True)
        return request

    def read(self, identity: str, ctx: OperationContext) -> dict:
        request, _ = self.client.get(identity)
        return request

    def flatten(self, identity: str, record: dict, ctx: OperationContext) -> Dict[str, Any]:
        return {
            "catalog_id": record.get("catalogId"),
            "expiration_date_time": _normalize_date(record.get("expirationDateTime")),
            "justification": record.get("justification"),
            "request_state": record.get("requestState"),
            "request_status": record.get("requestStatus"),
            "request_type": record.get("requestType"),
        }

    def delete(self, identity: str, record: dict, ctx: OperationContext) -> None:
        logger.debug("[access_package] Submitting %s request for %r", REQUEST_TYPE_ADMIN_REMOVE, identity)
        self.client.delete(record)
