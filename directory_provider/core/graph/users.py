"""User management operations."""
from __future__ import annotations
from typing import List, Optional, Tuple

from .client import GraphClient, json_body


class UsersClient:
    """Service for managing directory users."""

    def __init__(self, client: GraphClient):
        self.client = client

    def get(self, object_id: str) -> Tuple[dict, int]:
        """Retrieve a user by object ID."""
        resp = self.client.get(f"/users/{object_id}")
        return json_body(resp), resp.status_code

    def list(self, filter_expr: Optional[str] = None) -> Tuple[List[dict], int]:
        """List users, optionally restricted by an OData filter."""
        params = {"$filter": filter_expr} if filter_expr else None
        return self.client.get_collection("/users", params=params)

    def create(self, user: dict) -> Tuple[dict, int]:
        """Create a user and return the server representation."""
        resp = self.client.post("/users", json=user)
        return json_body(resp), resp.status_code

    def update(self, user: dict) -> int:
        """Patch a user. The payload must carry its object ID as `id`."""
        payload = {k: v for k, v in user.items() if k != "id"}
        resp = self.client.patch(f"/users/{user['id']}", json=payload)
        return resp.status_code

    def delete(self, object_id: str) -> int:
        """Delete a user."""
        resp = self.client.delete(f"/users/{object_id}")
        return resp.status_code
