"""Entitlement management (access package) operations.

These endpoints only exist on the beta API version.
"""
from __future__ import annotations
from typing import Tuple

from .client import GraphClient, json_body
from .exceptions import GraphError

REQUEST_TYPE_ADMIN_ADD = "AdminAdd"
REQUEST_TYPE_ADMIN_REMOVE = "AdminRemove"

_REQUESTS_PATH = "/identityGovernance/entitlementManagement/accessPackageResourceRequests"


class AccessPackageResourceRequestClient:
    """Service for submitting access package resource requests."""

    def __init__(self, client: GraphClient, api_version: str = "beta"):
        self.client = client
        self.api_version = api_version

    def get(self, request_id: str) -> Tuple[dict, int]:
        """Retrieve a resource request, expanding the referenced resource."""
        resp = self.client.get(
            f"{_REQUESTS_PATH}/{request_id}",
            params={"$expand": "accessPackageResource"},
            api_version=self.api_version,
        )
        return json_body(resp), resp.status_code

    def create(self, request: dict, execute_immediately: bool = True) -> Tuple[dict, int]:
        """Submit a resource request."""
        payload = dict(request)
        payload["executeImmediately"] = execute_immediately
        resp = self.client.post(_REQUESTS_PATH, json=payload, api_version=self.api_version)
        return json_body(resp), resp.status_code

    def delete(self, request: dict) -> int:
        """Undo a resource request by submitting the matching AdminRemove request.

        Resource requests cannot be deleted directly; removing the resource from
        the catalog is itself a request.
        """
        resource = request.get("accessPackageResource") or {}
        if not resource.get("id") or not request.get("catalogId"):
            raise GraphError("Resource request is missing catalogId or accessPackageResource.id")
        payload = {
            "catalogId": request["catalogId"],
            "requestType": REQUEST_TYPE_ADMIN_REMOVE,
            "accessPackageResource": {"id": resource["id"]},
            "executeImmediately": True,
        }
        resp = self.client.post(_REQUESTS_PATH, json=payload, api_version=self.api_version)
        return resp.status_code
