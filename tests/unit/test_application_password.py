import threading
import time
from datetime import datetime, timezone

import pytest

from directory_provider.core.errors import InvalidServerResponse, MalformedIdentifier, ValidationError
from directory_provider.core.reconciler import Reconciler
from directory_provider.core.state import ResourceState
from directory_provider.resources.application_password import (
    ApplicationPassword,
    ApplicationPasswordAdapter,
    password_credential,
    upgrade_password_v0,
)

KEY_ID = "11111111-1111-1111-1111-111111111111"
MISSING_APP = "22222222-2222-2222-2222-222222222222"


@pytest.fixture()
def engine(fake_applications, locks):
    return Reconciler(ApplicationPasswordAdapter(fake_applications), locks=locks)


@pytest.fixture()
def app(fake_applications):
    return fake_applications.seed(displayName="My App")


class TestCreate:
    def test_identity_and_secret(self, engine, app, fake_applications):
        state = engine.create(ApplicationPassword(application_object_id=app["id"], display_name="ci"))

        (key_id,) = [c["keyId"] for c in fake_applications.apps[app["id"]]["passwordCredentials"]]
        assert state.id == f"{app['id']}/password/{key_id}"
        assert state.attributes["value"].startswith("s3cr3t-")
        assert state.attributes["key_id"] == key_id
        assert state.attributes["display_name"] == "ci"
        assert fake_applications.method_calls("add_password") == [(app["id"], {"displayName": "ci"})]

    def test_holds_parent_lock(self, engine, app, fake_applications, locks, monkeypatch):
        acquired_elsewhere = []
        original = fake_applications.add_password

        def add_password(object_id, credential):
            entered = threading.Event()

            def probe():
                with locks.acquire("azuread_application", object_id):
                    entered.set()

            threading.Thread(target=probe, daemon=True).start()
            acquired_elsewhere.append(entered.wait(timeout=0.2))
            return original(object_id, credential)

        monkeypatch.setattr(fake_applications, "add_password", add_password)
        engine.create(ApplicationPassword(application_object_id=app["id"]))
        assert acquired_elsewhere == [False]

    def test_missing_parent_is_validation_error(self, engine, fake_applications):
        with pytest.raises(ValidationError) as excinfo:
            engine.create(ApplicationPassword(application_object_id=MISSING_APP))
        assert excinfo.value.field == "application_object_id"
        assert excinfo.value.operation == "create"
        assert fake_applications.method_calls("add_password") == []

    @pytest.mark.parametrize(
        "response, message",
        [
            ({"secretText": "x"}, "keyId"),
            ({"keyId": KEY_ID}, "password"),
            ({}, "nil credential"),
        ],
    )
    def test_incomplete_response(self, engine, app, fake_applications, monkeypatch, response, message):
        monkeypatch.setattr(fake_applications, "add_password", lambda object_id, credential: (response, 200))
        with pytest.raises(InvalidServerResponse, match=message):
            engine.create(ApplicationPassword(application_object_id=app["id"]))

    def test_relative_end_date(self, engine, app, fake_applications):
        engine.create(ApplicationPassword(
            application_object_id=app["id"], start_date="2024-01-01T00:00:00Z", end_date_relative="240h"
        ))
        ((_, credential),) = fake_applications.method_calls("add_password")
        assert credential == {"startDateTime": "2024-01-01T00:00:00Z", "endDateTime": "2024-01-11T00:00:00Z"}


class TestValidation:
    @pytest.mark.parametrize(
        "spec, field",
        [
            (ApplicationPassword(application_object_id="not-a-uuid"), "application_object_id"),
            (ApplicationPassword(application_object_id=KEY_ID, display_name=" "), "display_name"),
            (ApplicationPassword(application_object_id=KEY_ID, end_date="tomorrow"), "end_date"),
            (ApplicationPassword(application_object_id=KEY_ID, end_date_relative="ten days"), "end_date_relative"),
            (
                ApplicationPassword(
                    application_object_id=KEY_ID, end_date="2030-01-01T00:00:00Z", end_date_relative="1h"
                ),
                "end_date_relative",
            ),
        ],
    )
    def test_rejected_before_remote_calls(self, engine, calls, spec, field):
        with pytest.raises(ValidationError) as excinfo:
            engine.create(spec)
        assert excinfo.value.field == field
        assert calls == []


def test_password_credential_relative_to_now():
    now = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    credential = password_credential(ApplicationPassword(application_object_id=KEY_ID, end_date_relative="1h30m"), now)
    assert credential == {"endDateTime": "2024-03-01T13:30:00Z"}


def test_read_reports_removed_password_as_absent(engine, app, fake_applications):
    state = engine.create(ApplicationPassword(application_object_id=app["id"]))
    fake_applications.apps[app["id"]]["passwordCredentials"] = []
    assert engine.read(state.id) is None


def test_read_rejects_malformed_identity(engine):
    with pytest.raises(MalformedIdentifier) as excinfo:
        engine.read("not-a-credential-id")
    assert excinfo.value.operation == "read"


def test_changes_require_replacement(engine, app, calls):
    state = engine.create(ApplicationPassword(application_object_id=app["id"], display_name="ci"))
    calls.clear()
    with pytest.raises(ValidationError, match="requires replacing") as excinfo:
        engine.update(state, ApplicationPassword(application_object_id=app["id"], display_name="deploy"))
    assert excinfo.value.field == "display_name"
    assert calls == []


def test_delete_removes_credential(engine, app, fake_applications):
    state = engine.create(ApplicationPassword(application_object_id=app["id"]))
    assert not engine.delete(state).exists
    assert fake_applications.apps[app["id"]]["passwordCredentials"] == []
    (object_id, key_id), = fake_applications.method_calls("remove_password")
    assert object_id == app["id"]
    assert key_id == state.attributes["key_id"]


class TestUpgrade:
    def test_flat_id_uses_stored_key_id(self):
        raw = {"id": "abc123", "schema_version": 0, "attributes": {"key_id": KEY_ID, "description": "ci"}}
        upgraded = upgrade_password_v0(raw)
        assert upgraded["id"] == f"abc123/password/{KEY_ID}"
        assert upgraded["attributes"]["application_object_id"] == "abc123"
        assert upgraded["attributes"]["display_name"] == "ci"
        assert "description" not in upgraded["attributes"]

    def test_current_id_is_unchanged(self):
        raw = {"id": f"abc123/password/{KEY_ID}", "attributes": {"key_id": KEY_ID}}
        assert upgrade_password_v0(raw)["id"] == raw["id"]

    def test_is_idempotent(self):
        raw = {"id": "abc123", "attributes": {"key_id": KEY_ID}}
        once = upgrade_password_v0(raw)
        assert upgrade_password_v0(once) == once

    def test_engine_upgrade_sets_version(self, engine):
        state = engine.upgrade_state({"id": f"abc123/{KEY_ID}", "schema_version": 0, "attributes": {}})
        assert isinstance(state, ResourceState)
        assert state.id == f"abc123/password/{KEY_ID}"
        assert state.schema_version == 1
        assert state.resource_type == "azuread_application_password"

    def test_unrecoverable_id(self):
        with pytest.raises(MalformedIdentifier):
            upgrade_password_v0({"id": "abc123", "attributes": {}})


def _track_overlap(fake_applications, monkeypatch, pause=0.05):
    """Make password mutations slow and record the peak number of callers inside them per application."""
    active = {}
    peak = {}
    guard = threading.Lock()

    def tracked(original):
        def call(object_id, *args):
            with guard:
                active[object_id] = active.get(object_id, 0) + 1
                peak[object_id] = max(peak.get(object_id, 0), active[object_id])
            try:
                time.sleep(pause)
                return original(object_id, *args)
            finally:
                with guard:
                    active[object_id] -= 1

        return call

    monkeypatch.setattr(fake_applications, "add_password", tracked(fake_applications.add_password))
    monkeypatch.setattr(fake_applications, "remove_password", tracked(fake_applications.remove_password))
    return peak


def _in_parallel(*jobs):
    start = threading.Barrier(len(jobs))
    errors = []

    def run(job):
        start.wait()
        try:
            job()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=run, args=(job,)) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    assert errors == []


class TestConcurrentMutations:
    def test_creates_on_same_application_are_serialized(self, engine, app, fake_applications, monkeypatch):
        peak = _track_overlap(fake_applications, monkeypatch)
        spec = ApplicationPassword(application_object_id=app["id"])
        _in_parallel(*[lambda: engine.create(spec)] * 4)

        assert peak[app["id"]] == 1
        assert len(fake_applications.apps[app["id"]]["passwordCredentials"]) == 4

    def test_create_and_delete_on_same_application_are_serialized(self, engine, app, fake_applications, monkeypatch):
        existing = engine.create(ApplicationPassword(application_object_id=app["id"], display_name="old"))
        peak = _track_overlap(fake_applications, monkeypatch)
        _in_parallel(
            lambda: engine.create(ApplicationPassword(application_object_id=app["id"], display_name="new")),
            lambda: engine.delete(existing),
        )

        assert peak[app["id"]] == 1
        names = [c["displayName"] for c in fake_applications.apps[app["id"]]["passwordCredentials"]]
        assert names == ["new"]

    def test_different_applications_run_concurrently(self, engine, fake_applications, monkeypatch):
        apps = [fake_applications.seed(displayName=f"App {n}") for n in range(2)]
        both_inside = threading.Barrier(2, timeout=2)
        original = fake_applications.add_password

        def add_password(object_id, credential):
            # Breaks with BrokenBarrierError if the second caller is held back
            both_inside.wait()
            return original(object_id, credential)

        monkeypatch.setattr(fake_applications, "add_password", add_password)
        _in_parallel(*[
            (lambda a=a: engine.create(ApplicationPassword(application_object_id=a["id"]))) for a in apps
        ])

        for a in apps:
            assert len(fake_applications.apps[a["id"]]["passwordCredentials"]) == 1
