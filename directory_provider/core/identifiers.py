"""Composite identifiers for credentials owned by an application.

Current format: ``{object_id}/{kind}/{key_id}``.
Legacy password format (schema v0): ``{object_id}/{key_id}``, or a flat
``{object_id}`` with the key ID persisted beside it.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import MalformedIdentifier

SEPARATOR = "/"


class CredentialKind(str, Enum):
    """Kinds of credential an application can own."""
    PASSWORD = "password"
    CERTIFICATE = "certificate"


def _check_segment(value: str, what: str, raw: str) -> str:
    if not value or value.strip() != value or any(c.isspace() for c in value):
        raise MalformedIdentifier(f"{what} in ID {raw!r} is empty or contains whitespace")
    return value


@dataclass(frozen=True)
class CredentialId:
    """Identity of a credential: parent object, credential kind and key ID."""
    object_id: str
    kind: CredentialKind
    key_id: str

    def __str__(self) -> str:
        return SEPARATOR.join((self.object_id, self.kind.value, self.key_id))


def encode(object_id: str, kind, key_id: str) -> str:
    """Encode a credential identity into its persisted string form."""
    kind = _parse_kind(kind, f"{object_id}/{kind}/{key_id}")
    raw = SEPARATOR.join((object_id, kind.value, key_id))
    _check_segment(object_id, "Object ID", raw)
    _check_segment(key_id, "Key ID", raw)
    if SEPARATOR in object_id or SEPARATOR in key_id:
        raise MalformedIdentifier(f"ID segments may not contain {SEPARATOR!r}: {raw!r}")
    return raw


def _parse_kind(kind, raw: str) -> CredentialKind:
    try:
        return CredentialKind(kind)
    except ValueError:
        raise MalformedIdentifier(f"Unknown credential kind {kind!r} in ID {raw!r}") from None


def decode(raw: str) -> CredentialId:
    """Parse a current-format credential ID.

    Raises:
        MalformedIdentifier: Wrong number of segments, empty segments or an
            unknown credential kind
    """
    if not isinstance(raw, str):
        raise MalformedIdentifier(f"Credential ID must be a string, got {type(raw).__name__}")
    parts = raw.split(SEPARATOR)
    if len(parts) != 3:
        raise MalformedIdentifier(
            f"Credential ID should be in the format {{objectId}}/{{kind}}/{{keyId}} - but got {raw!r}"
        )
    object_id, kind, key_id = parts
    _check_segment(object_id, "Object ID", raw)
    _check_segment(key_id, "Key ID", raw)
    return CredentialId(object_id, _parse_kind(kind, raw), key_id)


def parse_password_id(raw: str) -> CredentialId:
    """Parse a credential ID that must refer to a password."""
    cred_id = decode(raw)
    if cred_id.kind is not CredentialKind.PASSWORD:
        raise MalformedIdentifier(f"ID {raw!r} does not refer to a password credential")
    return cred_id


def parse_legacy_password_id(raw: str, key_id: Optional[str] = None) -> CredentialId:
    """Parse a schema v0 password ID.

    Args:
        raw: ``{object_id}/{key_id}`` or a flat ``{object_id}``
        key_id: Key ID persisted beside a flat ID

    Raises:
        MalformedIdentifier: When neither legacy shape matches
    """
    if not isinstance(raw, str):
        raise MalformedIdentifier(f"Password ID must be a string, got {type(raw).__name__}")
    parts = raw.split(SEPARATOR)
    if len(parts) == 2:
        object_id, legacy_key = parts
        if key_id and key_id != legacy_key:
            raise MalformedIdentifier(f"Key ID {key_id!r} does not match legacy ID {raw!r}")
        key_id = legacy_key
    elif len(parts) == 1:
        object_id = parts[0]
        if not key_id:
            raise MalformedIdentifier(f"Legacy password ID {raw!r} has no key ID to migrate with")
    else:
        raise MalformedIdentifier(
            f"Legacy password ID should be in the format {{objectId}}/{{keyId}} - but got {raw!r}"
        )
    _check_segment(object_id, "Object ID", raw)
    _check_segment(key_id, "Key ID", raw)
    return CredentialId(object_id, CredentialKind.PASSWORD, key_id)
