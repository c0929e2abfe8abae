"""Domains data source: the tenant's domains, filtered."""
from __future__ import annotations
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..core.errors import NotFound
from ..core.graph import DomainsClient, operation_deadline
from ..core.reconciler import DEFAULT_TIMEOUT, translate_errors

logger = logging.getLogger(__name__)

DOMAINS_DATA_SOURCE_NAME = "azuread_domains"


@dataclass
class DomainFilter:
    admin_managed: bool = False
    only_default: bool = False
    only_initial: bool = False
    only_root: bool = False
    include_unverified: bool = False
    supports_services: List[str] = field(default_factory=list)

    def matches(self, domain: dict) -> bool:
        """Apply the filters to a Graph domain.

        A property the service leaves out never excludes a domain.
        """
        if self.admin_managed and domain.get("isAdminManaged") is False:
            return False
        if self.only_default and domain.get("isDefault") is False:
            return False
        if self.only_initial and domain.get("isInitial") is False:
            return False
        if self.only_root and domain.get("isRoot") is False:
            return False
        if not self.include_unverified and domain.get("isVerified") is False:
            return False
        supported = domain.get("supportedServices")
        if self.supports_services and supported is not None:
            if not set(self.supports_services).issubset(supported):
                return False
        return True


@dataclass
class Domain:
    domain_name: str
    authentication_type: Optional[str] = None
    admin_managed: Optional[bool] = None
    default: Optional[bool] = None
    initial: Optional[bool] = None
    root: Optional[bool] = None
    verified: Optional[bool] = None
    supported_services: List[str] = field(default_factory=list)

    @classmethod
    def from_graph(cls, raw: dict) -> "Domain":
        return cls(
            domain_name=raw["id"],
            authentication_type=raw.get("authenticationType"),
            admin_managed=raw.get("isAdminManaged"),
            default=raw.get("isDefault"),
            initial=raw.get("isInitial"),
            root=raw.get("isRoot"),
            verified=raw.get("isVerified"),
            supported_services=list(raw.get("supportedServices") or []),
        )


@dataclass
class DomainList:
    id: str
    domains: List[Domain]


def domains_id(tenant_id: str, names: List[str]) -> str:
    """Stable ID for a domain list: ``domains#{tenant}#{urlsafe b64 sha1 of names}``."""
    digest = hashlib.sha1("/".join(names).encode("utf-8")).digest()
    return f"domains#{tenant_id}#{base64.urlsafe_b64encode(digest).decode('ascii')}"


class DomainsDataSource:
    """Read-only lookup of the tenant's domains."""

    resource_type = DOMAINS_DATA_SOURCE_NAME

    def __init__(self, client: DomainsClient, timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.timeout = timeout

    def read(self, filters: Optional[DomainFilter] = None) -> DomainList:
        """List domains matching ``filters``.

        Raises:
            NotFound: No domain matched
            TransientRemoteError: Listing failed
        """
        filters = filters or DomainFilter()
        with operation_deadline(self.timeout), translate_errors("read"):
            result, _ = self.client.list()

        domains = [Domain.from_graph(d) for d in result if d.get("id") and filters.matches(d)]
        if not domains:
            raise NotFound("No domains found for the provided filters", operation="read")

        names = [d.domain_name for d in domains]
        logger.debug("[domains] %d domain(s) matched: %s", len(names), ", ".join(names))
        return DomainList(id=domains_id(self.client.tenant_id, names), domains=domains)
