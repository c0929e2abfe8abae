"""Pytest shared fixtures: in-memory directory services and network guard rails."""
import copy
import pathlib
import re
import sys
import uuid

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from directory_provider.core.graph import GraphAPIError
from directory_provider.core.locks import NameLocks


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _no_network(monkeypatch, request):
    """Prevent unit tests from reaching a real tenant.

    Tests marked with @pytest.mark.integration are allowed through.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _blocked(*args, **kwargs):
        raise RuntimeError(f"Unexpected network access in tests: {args!r}")

    monkeypatch.setattr(requests, "post", _blocked)
    monkeypatch.setattr(requests, "get", _blocked)
    monkeypatch.setattr(requests.Session, "request", _blocked)


# ─────────────────────────────────────────────────────────────────────────────
# In-memory directory services
# ─────────────────────────────────────────────────────────────────────────────
_EQ_FILTER = re.compile(r"^(\w+) eq '((?:[^']|'')*)'$")


def _parse_filter(filter_expr):
    match = _EQ_FILTER.match(filter_expr or "")
    if not match:
        return None, None
    return match.group(1), match.group(2).replace("''", "'")


class _FakeService:
    """Records every call as (name, args) and can be told to fail."""

    name = ""

    def __init__(self, calls):
        self.calls = calls
        self.fail = {}

    def _record(self, method, *args):
        self.calls.append((f"{self.name}.{method}",) + tuple(copy.deepcopy(a) for a in args))
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def _not_found(self, path):
        raise GraphAPIError(404, "Request_ResourceNotFound: Resource does not exist", path)

    def method_calls(self, method):
        return [c[1:] for c in self.calls if c[0] == f"{self.name}.{method}"]


class FakeApplications(_FakeService):
    name = "applications"

    def __init__(self, calls):
        super().__init__(calls)
        self.apps = {}
        self.owners = {}

    def seed(self, **app):
        object_id = app.setdefault("id", str(uuid.uuid4()))
        app.setdefault("appId", str(uuid.uuid4()))
        app.setdefault("passwordCredentials", [])
        self.apps[object_id] = app
        self.owners.setdefault(object_id, [])
        return app

    def _get(self, object_id):
        if object_id not in self.apps:
            self._not_found(f"/applications/{object_id}")
        return self.apps[object_id]

    def get(self, object_id):
        self._record("get", object_id)
        return copy.deepcopy(self._get(object_id)), 200

    def list(self, filter_expr=None):
        self._record("list", filter_expr)
        field, value = _parse_filter(filter_expr)
        apps = list(self.apps.values())
        if field == "displayName":
            # The service compares case-insensitively
            apps = [a for a in apps if (a.get("displayName") or "").lower() == value.lower()]
        return copy.deepcopy(apps), 200

    def create(self, application):
        self._record("create", application)
        app = self.seed(**copy.deepcopy(application))
        return copy.deepcopy(app), 201

    def update(self, application):
        self._record("update", application)
        app = self._get(application["id"])
        app.update({k: copy.deepcopy(v) for k, v in application.items() if k != "id"})
        return 204

    def delete(self, object_id):
        self._record("delete", object_id)
        self._get(object_id)
        del self.apps[object_id]
        self.owners.pop(object_id, None)
        return 204

    def add_password(self, object_id, credential):
        self._record("add_password", object_id, credential)
        app = self._get(object_id)
        key_id = str(uuid.uuid4())
        stored = {**copy.deepcopy(credential), "keyId": key_id, "hint": "s3c"}
        app["passwordCredentials"].append(stored)
        return {**stored, "secretText": f"s3cr3t-{key_id[:8]}"}, 200

    def remove_password(self, object_id, key_id):
        self._record("remove_password", object_id, key_id)
        app = self._get(object_id)
        app["passwordCredentials"] = [c for c in app["passwordCredentials"] if c.get("keyId") != key_id]
        return 204

    def list_owners(self, object_id):
        self._record("list_owners", object_id)
        self._get(object_id)
        return list(self.owners.get(object_id, [])), 200

    def add_owners(self, object_id, owner_ids):
        self._record("add_owners", object_id, owner_ids)
        self._get(object_id)
        self.owners.setdefault(object_id, []).extend(owner_ids)
        return 204

    def remove_owners(self, object_id, owner_ids):
        self._record("remove_owners", object_id, owner_ids)
        self._get(object_id)
        self.owners[object_id] = [o for o in self.owners.get(object_id, []) if o not in owner_ids]
        return 204


class FakeUsers(_FakeService):
    name = "users"

    def __init__(self, calls):
        super().__init__(calls)
        self.users = {}

    def seed(self, **user):
        object_id = user.setdefault("id", str(uuid.uuid4()))
        user.setdefault("accountEnabled", True)
        user.setdefault("userType", "Member")
        self.users[object_id] = user
        return user

    def _get(self, object_id):
        if object_id not in self.users:
            self._not_found(f"/users/{object_id}")
        return self.users[object_id]

    def get(self, object_id):
        self._record("get", object_id)
        user = copy.deepcopy(self._get(object_id))
        user.pop("passwordProfile", None)
        return user, 200

    def list(self, filter_expr=None):
        self._record("list", filter_expr)
        field, value = _parse_filter(filter_expr)
        users = list(self.users.values())
        if field:
            users = [u for u in users if (u.get(field) or "").lower() == value.lower()]
        result = copy.deepcopy(users)
        for user in result:
            user.pop("passwordProfile", None)
        return result, 200

    def create(self, user):
        self._record("create", user)
        created = self.seed(**copy.deepcopy(user))
        result = copy.deepcopy(created)
        result.pop("passwordProfile", None)
        return result, 201

    def update(self, user):
        self._record("update", user)
        stored = self._get(user["id"])
        stored.update({k: copy.deepcopy(v) for k, v in user.items() if k != "id"})
        return 204

    def delete(self, object_id):
        self._record("delete", object_id)
        self._get(object_id)
        del self.users[object_id]
        return 204


class FakeDomains(_FakeService):
    name = "domains"

    def __init__(self, calls, tenant_id="00000000-0000-0000-0000-00000000beef"):
        super().__init__(calls)
        self.tenant_id = tenant_id
        self.domains = []

    def list(self):
        self._record("list")
        return copy.deepcopy(self.domains), 200


class FakeAccessPackageRequests(_FakeService):
    name = "access_package_requests"

    def __init__(self, calls):
        super().__init__(calls)
        self.requests = {}

    def _get(self, request_id):
        if request_id not in self.requests:
            self._not_found(f"/accessPackageResourceRequests/{request_id}")
        return self.requests[request_id]

    def get(self, request_id):
        self._record("get", request_id)
        return copy.deepcopy(self._get(request_id)), 200

    def create(self, request, execute_immediately=True):
        self._record("create", request, execute_immediately)
        stored = copy.deepcopy(request)
        stored["id"] = str(uuid.uuid4())
        stored["requestState"] = "Delivered"
        stored["requestStatus"] = "Fulfilled"
        if stored.get("accessPackageResource"):
            stored["accessPackageResource"]["id"] = str(uuid.uuid4())
        self.requests[stored["id"]] = stored
        return copy.deepcopy(stored), 201

    def delete(self, request):
        self._record("delete", request)
        self.requests.pop(request["id"], None)
        return 201


@pytest.fixture()
def calls():
    """Shared, ordered log of every call made to the fake services."""
    return []


@pytest.fixture()
def fake_applications(calls):
    return FakeApplications(calls)


@pytest.fixture()
def fake_users(calls):
    return FakeUsers(calls)


@pytest.fixture()
def fake_domains(calls):
    return FakeDomains(calls)


@pytest.fixture()
def fake_access_packages(calls):
    return FakeAccessPackageRequests(calls)


@pytest.fixture()
def locks():
    """A private lock registry per test."""
    return NameLocks()
