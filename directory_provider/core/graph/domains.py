"""Domain listing."""
from __future__ import annotations
from typing import List, Tuple

from .client import GraphClient


class DomainsClient:
    """Read-only access to the tenant's domains."""

    def __init__(self, client: GraphClient):
        self.client = client

    @property
    def tenant_id(self) -> str:
        return self.client.tenant_id

    def list(self) -> Tuple[List[dict], int]:
        """List all domains registered in the tenant."""
        return self.client.get_collection("/domains")
