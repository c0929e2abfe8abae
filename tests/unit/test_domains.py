import base64
import hashlib

import pytest

from directory_provider.core.errors import NotFound, TransientRemoteError
from directory_provider.core.graph import GraphAPIError
from directory_provider.resources.domains import DomainFilter, DomainsDataSource, domains_id


def _domain(name, **props):
    base = {
        "id": name,
        "authenticationType": "Managed",
        "isAdminManaged": True,
        "isDefault": False,
        "isInitial": False,
        "isRoot": True,
        "isVerified": True,
        "supportedServices": ["Email", "OfficeCommunicationsOnline"],
    }
    base.update(props)
    return base


@pytest.fixture()
def source(fake_domains):
    fake_domains.domains = [
        _domain("contoso.onmicrosoft.com", isInitial=True),
        _domain("contoso.com", isDefault=True),
        _domain("sub.contoso.com", isRoot=False, supportedServices=["Email"]),
        _domain("pending.example", isVerified=False, isAdminManaged=False),
    ]
    return DomainsDataSource(fake_domains)


def _names(result):
    return [d.domain_name for d in result.domains]


def test_unverified_domains_excluded_by_default(source):
    assert _names(source.read()) == ["contoso.onmicrosoft.com", "contoso.com", "sub.contoso.com"]


def test_include_unverified(source):
    assert "pending.example" in _names(source.read(DomainFilter(include_unverified=True)))


@pytest.mark.parametrize(
    "filters, expected",
    [
        (DomainFilter(only_default=True), ["contoso.com"]),
        (DomainFilter(only_initial=True), ["contoso.onmicrosoft.com"]),
        (DomainFilter(only_root=True), ["contoso.onmicrosoft.com", "contoso.com"]),
        (DomainFilter(admin_managed=True, include_unverified=True), ["contoso.onmicrosoft.com", "contoso.com", "sub.contoso.com"]),
        (DomainFilter(supports_services=["OfficeCommunicationsOnline"]), ["contoso.onmicrosoft.com", "contoso.com"]),
        (DomainFilter(supports_services=["Email"]), ["contoso.onmicrosoft.com", "contoso.com", "sub.contoso.com"]),
    ],
)
def test_filters(source, filters, expected):
    assert _names(source.read(filters)) == expected


def test_missing_property_never_excludes(fake_domains):
    fake_domains.domains = [{"id": "bare.example"}]
    result = DomainsDataSource(fake_domains).read(DomainFilter(only_default=True, supports_services=["Email"]))
    assert _names(result) == ["bare.example"]
    assert result.domains[0].supported_services == []


def test_no_match_is_not_found(source):
    with pytest.raises(NotFound, match="No domains found"):
        source.read(DomainFilter(only_default=True, only_initial=True))


def test_id_is_stable_digest_of_names(source, fake_domains):
    result = source.read(DomainFilter(only_root=True))
    digest = hashlib.sha1(b"contoso.onmicrosoft.com/contoso.com").digest()
    expected = f"domains#{fake_domains.tenant_id}#{base64.urlsafe_b64encode(digest).decode()}"
    assert result.id == expected
    assert result.id == domains_id(fake_domains.tenant_id, ["contoso.onmicrosoft.com", "contoso.com"])
    assert source.read(DomainFilter(only_root=True)).id == result.id


def test_listing_failure_is_transient(source, fake_domains):
    fake_domains.fail["list"] = GraphAPIError(500, "boom", "/domains")
    with pytest.raises(TransientRemoteError) as excinfo:
        source.read()
    assert excinfo.value.operation == "read"
