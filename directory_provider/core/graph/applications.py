"""Application registration operations."""
from __future__ import annotations
from typing import List, Optional, Tuple

from .client import GraphClient, json_body


class ApplicationsClient:
    """Service for managing application registrations and their credentials."""

    def __init__(self, client: GraphClient):
        """Initialize applications service.

        Args:
            client: Authenticated directory client
        """
        self.client = client

    def get(self, object_id: str) -> Tuple[dict, int]:
        """Retrieve an application by object ID."""
        resp = self.client.get(f"/applications/{object_id}")
        return json_body(resp), resp.status_code

    def list(self, filter_expr: Optional[str] = None) -> Tuple[List[dict], int]:
        """List applications, optionally restricted by an OData filter."""
        params = {"$filter": filter_expr} if filter_expr else None
        return self.client.get_collection("/applications", params=params)

    def create(self, application: dict) -> Tuple[dict, int]:
        """Create an application and return the server representation."""
        resp = self.client.post("/applications", json=application)
        return json_body(resp), resp.status_code

    def update(self, application: dict) -> int:
        """Patch an application. The payload must carry its object ID as `id`."""
        payload = {k: v for k, v in application.items() if k != "id"}
        resp = self.client.patch(f"/applications/{application['id']}", json=payload)
        return resp.status_code

    def delete(self, object_id: str) -> int:
        """Delete an application."""
        resp = self.client.delete(f"/applications/{object_id}")
        return resp.status_code

    def add_password(self, object_id: str, credential: dict) -> Tuple[dict, int]:
        """Add a password credential; the response carries the generated secret."""
        resp = self.client.post(
            f"/applications/{object_id}/addPassword", json={"passwordCredential": credential}
        )
        return json_body(resp), resp.status_code

    def remove_password(self, object_id: str, key_id: str) -> int:
        """Remove a password credential by key ID."""
        resp = self.client.post(f"/applications/{object_id}/removePassword", json={"keyId": key_id})
        return resp.status_code

    def list_owners(self, object_id: str) -> Tuple[List[str], int]:
        """Return the object IDs of the application's owners."""
        owners, status = self.client.get_collection(
            f"/applications/{object_id}/owners", params={"$select": "id"}
        )
        return [o["id"] for o in owners if o.get("id")], status

    def add_owners(self, object_id: str, owner_ids: List[str]) -> int:
        """Add owners one reference at a time."""
        status = 204
        for owner_id in owner_ids:
            resp = self.client.post(
                f"/applications/{object_id}/owners/$ref",
                json={"@odata.id": self.client.url(f"/directoryObjects/{owner_id}")},
            )
            status = resp.status_code
        return status

    def remove_owners(self, object_id: str, owner_ids: List[str]) -> int:
        """Remove owner references."""
        status = 204
        for owner_id in owner_ids:
            resp = self.client.delete(f"/applications/{object_id}/owners/{owner_id}/$ref")
            status = resp.status_code
        return status
