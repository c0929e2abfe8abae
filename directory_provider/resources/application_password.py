"""Password credentials owned by an application registration.

A password has no endpoint of its own: it is added to and removed from its
parent application, so every mutation holds the parent's lock.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core import validators
from ..core.errors import InvalidServerResponse, MalformedIdentifier, NotFound, ValidationError
from ..core.graph import ApplicationsClient, GraphAPIError
from ..core.identifiers import CredentialKind, decode, encode, parse_legacy_password_id, parse_password_id
from ..core.reconciler import OperationContext, ResourceAdapter
from ..core.state import StateUpgrader
from .application import APPLICATION_RESOURCE_NAME

logger = logging.getLogger(__name__)

APPLICATION_PASSWORD_RESOURCE_NAME = "azuread_application_password"


@dataclass
class ApplicationPassword:
    """Desired state of an application password.

    Every field forces a new password when changed.
    """
    application_object_id: str
    display_name: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    end_date_relative: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApplicationPassword":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def _normalize_date(value: Optional[str], field: str) -> Optional[str]:
    return validators.format_rfc3339(validators.is_rfc3339(value, field))


def password_credential(spec: ApplicationPassword, now: Optional[datetime] = None) -> dict:
    """Build the passwordCredential payload for addPassword."""
    credential: Dict[str, Any] = {}
    if spec.display_name:
        credential["displayName"] = spec.display_name

    start = validators.is_rfc3339(spec.start_date, "start_date")
    if start is not None:
        credential["startDateTime"] = validators.format_rfc3339(start)

    if spec.end_date:
        credential["endDateTime"] = _normalize_date(spec.end_date, "end_date")
    elif spec.end_date_relative:
        duration = validators.parse_duration(spec.end_date_relative, "end_date_relative")
        base = start or now or datetime.now(timezone.utc)
        credential["endDateTime"] = validators.format_rfc3339(base + duration)
    return credential


def upgrade_password_v0(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite a v0 password ID into ``{object_id}/password/{key_id}``.

    IDs already in the current format are left as they are.
    """
    state = dict(raw)
    attributes = dict(state.get("attributes") or {})
    old_id = state.get("id") or ""
    try:
        decode(old_id)
    except MalformedIdentifier:
        new_id = parse_legacy_password_id(old_id, attributes.get("key_id"))
        logger.debug("[application_password] Migrating ID %r to %r", old_id, str(new_id))
        state["id"] = str(new_id)
        attributes["application_object_id"] = new_id.object_id
        attributes["key_id"] = new_id.key_id
    if "description" in attributes:
        attributes.setdefault("display_name", attributes.pop("description"))
    state["attributes"] = attributes
    return state


class ApplicationPasswordAdapter(ResourceAdapter[ApplicationPassword]):
    """Reconciles application passwords. There is no in-place update."""

    resource_type = APPLICATION_PASSWORD_RESOURCE_NAME
    schema_version = 1
    write_only_fields = ("value", "end_date_relative")
    computed_fields = ("display_name", "start_date", "end_date")
    supports_update = False

    def __init__(self, client: ApplicationsClient):
        self.client = client

    def validate(self, spec: ApplicationPassword) -> None:
        validators.required_string(spec.application_object_id, "application_object_id")
        validators.is_uuid(spec.application_object_id, "application_object_id")
        validators.no_empty_string(spec.display_name, "display_name")
        validators.is_rfc3339(spec.start_date, "start_date")
        validators.is_rfc3339(spec.end_date, "end_date")
        if spec.end_date and spec.end_date_relative:
            raise ValidationError("only one of end_date and end_date_relative can be set", field="end_date_relative")
        if spec.end_date_relative is not None:
            validators.no_empty_string(spec.end_date_relative, "end_date_relative")
            validators.parse_duration(spec.end_date_relative, "end_date_relative")

    def desired_attributes(self, spec: ApplicationPassword) -> Dict[str, Any]:
        return {
            "application_object_id": spec.application_object_id,
            "display_name": spec.display_name,
            "start_date": _normalize_date(spec.start_date, "start_date"),
            "end_date": _normalize_date(spec.end_date, "end_date"),
            "end_date_relative": spec.end_date_relative,
        }

    def create(self, spec: ApplicationPassword, ctx: OperationContext) -> dict:
        object_id = spec.application_object_id
        credential = password_credential(spec)

        with ctx.lock(APPLICATION_RESOURCE_NAME, object_id):
            try:
                app, _ = self.client.get(object_id)
            except GraphAPIError as exc:
                if exc.not_found:
                    raise ValidationError(
                        f"Application with object ID {object_id!r} was not found", field="application_object_id"
                    ) from exc
                raise
            if not app or not app.get("id"):
                raise InvalidServerResponse(
                    f"nil application or application with nil ID was returned for {object_id!r}"
                )

            created, _ = self.client.add_password(app["id"], credential)

        if not created:
            raise InvalidServerResponse(f"nil credential received when adding password to {object_id!r}")
        if not created.get("keyId"):
            raise InvalidServerResponse(f"nil or empty keyId received when adding password to {object_id!r}")
        if not created.get("secretText"):
            raise InvalidServerResponse(f"nil or empty password received when adding password to {object_id!r}")

        return {**created, "id": encode(app["id"], CredentialKind.PASSWORD, created["keyId"])}

    def created_attributes(self, record: dict) -> Dict[str, Any]:
        return {"value": record["secretText"]}

    def read(self, identity: str, ctx: OperationContext) -> dict:
        cred_id = parse_password_id(identity)
        app, _ = self.client.get(cred_id.object_id)
        for credential in app.get("passwordCredentials") or []:
            if credential.get("keyId") == cred_id.key_id:
                return credential
        raise NotFound(f"Password credential {cred_id.key_id!r} was not found on application {cred_id.object_id!r}")

    def flatten(self, identity: str, record: dict, ctx: OperationContext) -> Dict[str, Any]:
        cred_id = parse_password_id(identity)
        return {
            "application_object_id": cred_id.object_id,
            "key_id": cred_id.key_id,
            "display_name": record.get("displayName"),
            "start_date": _normalize_date(record.get("startDateTime"), "start_date"),
            "end_date": _normalize_date(record.get("endDateTime"), "end_date"),
        }

    def delete(self, identity: str, record: dict, ctx: OperationContext) -> None:
        cred_id = parse_password_id(identity)
        with ctx.lock(APPLICATION_RESOURCE_NAME, cred_id.object_id):
            self.client.remove_password(cred_id.object_id, cred_id.key_id)

    def state_upgraders(self) -> List[StateUpgrader]:
        return [StateUpgrader(version=0, upgrade=upgrade_password_v0)]
