import pytest

from directory_provider.core.errors import ValidationError
from directory_provider.core.reconciler import Reconciler
from directory_provider.resources.access_package import (
    AccessPackageResource,
    AccessPackageResourceRequest,
    AccessPackageResourceRequestAdapter,
)

CATALOG_ID = "33333333-3333-3333-3333-333333333333"


@pytest.fixture()
def engine(fake_access_packages, locks):
    return Reconciler(AccessPackageResourceRequestAdapter(fake_access_packages), locks=locks)


def _request(**overrides):
    base = dict(
        catalog_id=CATALOG_ID,
        request_type="AdminAdd",
        justification="Onboard the HR portal",
        access_package_resource=AccessPackageResource(
            origin_id="44444444-4444-4444-4444-444444444444",
            origin_system="AadGroup",
            display_name="HR Portal Users",
        ),
    )
    base.update(overrides)
    return AccessPackageResourceRequest(**base)


def test_create_submits_request_immediately(engine, fake_access_packages):
    state = engine.create(_request())

    (payload, execute_immediately), = fake_access_packages.method_calls("create")
    assert execute_immediately is True
    assert payload["catalogId"] == CATALOG_ID
    assert payload["requestType"] == "AdminAdd"
    assert payload["accessPackageResource"]["originSystem"] == "AadGroup"
    assert "expirationDateTime" not in payload

    assert state.attributes["request_state"] == "Delivered"
    assert state.attributes["request_status"] == "Fulfilled"
    assert state.attributes["access_package_resource"]["origin_id"] == "44444444-4444-4444-4444-444444444444"


def test_expiration_is_normalized(engine):
    state = engine.create(_request(expiration_date_time="2030-06-01T10:00:00.1234567Z"))
    assert state.attributes["expiration_date_time"] == "2030-06-01T10:00:00Z"


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"catalog_id": ""}, "catalog_id"),
        ({"request_type": "AdminUpdate"}, "request_type"),
        ({"justification": "   "}, "justification"),
        ({"expiration_date_time": "next week"}, "expiration_date_time"),
        (
            {"access_package_resource": AccessPackageResource(origin_id="x", origin_system="Mainframe")},
            "access_package_resource.0.origin_system",
        ),
    ],
)
def test_validation(engine, calls, overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        engine.create(_request(**overrides))
    assert excinfo.value.field == field
    assert calls == []


def test_every_change_forces_a_new_request(engine):
    state = engine.create(_request())
    with pytest.raises(ValidationError, match="requires replacing"):
        engine.update(state, _request(justification="Different reason"))


def test_delete_submits_removal(engine, fake_access_packages):
    state = engine.create(_request())
    engine.delete(state)
    (record,), = fake_access_packages.method_calls("delete")
    assert record["id"] == state.id
    assert fake_access_packages.requests == {}
    # Gone now; a second delete is a no-op
    engine.delete(state)
    assert len(fake_access_packages.method_calls("delete")) == 1


def test_from_dict():
    request = AccessPackageResourceRequest.from_dict({
        "catalog_id": CATALOG_ID,
        "request_type": "AdminAdd",
        "access_package_resource": {"origin_id": "o", "origin_system": "AadApplication"},
    })
    assert request.access_package_resource.origin_system == "AadApplication"
    assert request.justification is None
