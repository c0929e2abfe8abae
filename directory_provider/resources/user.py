"""User accounts."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from ..core import validators
from ..core.errors import ValidationError
from ..core.graph import UsersClient
from ..core.reconciler import OperationContext, ResourceAdapter

logger = logging.getLogger(__name__)

USER_RESOURCE_NAME = "azuread_user"

MAX_PASSWORD_LENGTH = 256

# Attribute name -> Graph property for plain string/bool fields
_PROFILE_FIELDS = {
    "account_enabled": "accountEnabled",
    "city": "city",
    "company_name": "companyName",
    "country": "country",
    "department": "department",
    "display_name": "displayName",
    "given_name": "givenName",
    "job_title": "jobTitle",
    "mail": "mail",
    "mail_nickname": "mailNickname",
    "mobile_phone": "mobilePhone",
    "office_location": "officeLocation",
    "onpremises_immutable_id": "onPremisesImmutableId",
    "postal_code": "postalCode",
    "state": "state",
    "street_address": "streetAddress",
    "surname": "surname",
    "usage_location": "usageLocation",
}

# Read-only properties reported back into state
_COMPUTED_PROPERTIES = {
    "object_id": "id",
    "onpremises_sam_account_name": "onPremisesSamAccountName",
    "onpremises_user_principal_name": "onPremisesUserPrincipalName",
    "user_type": "userType",
}


@dataclass
class User:
    """Desired state of a user account."""
    user_principal_name: str
    display_name: str
    password: Optional[str] = None
    force_password_change: bool = False
    account_enabled: bool = True
    mail_nickname: Optional[str] = None
    mail: Optional[str] = None
    city: Optional[str] = None
    company_name: Optional[str] = None
    country: Optional[str] = None
    department: Optional[str] = None
    given_name: Optional[str] = None
    job_title: Optional[str] = None
    mobile_phone: Optional[str] = None
    office_location: Optional[str] = None
    onpremises_immutable_id: Optional[str] = None
    postal_code: Optional[str] = None
    state: Optional[str] = None
    street_address: Optional[str] = None
    surname: Optional[str] = None
    usage_location: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    @property
    def default_mail_nickname(self) -> str:
        """Configured nickname, else the UPN's local part (as the portal does)."""
        return self.mail_nickname or self.user_principal_name.split("@")[0]


def _none_if_empty(value):
    return None if value == "" else value


def expand_user(user: User, fields: Optional[Sequence[str]] = None) -> dict:
    """Build a Graph user payload, optionally restricted to ``fields``."""
    names = _PROFILE_FIELDS.keys() if fields is None else [f for f in fields if f in _PROFILE_FIELDS]
    payload = {}
    for name in names:
        value = getattr(user, name)
        if name == "mail_nickname":
            value = user.default_mail_nickname
        else:
            value = _none_if_empty(value)
        payload[_PROFILE_FIELDS[name]] = value
    if fields is None:
        payload["userPrincipalName"] = user.user_principal_name
        if user.onpremises_immutable_id is None:
            payload.pop("onPremisesImmutableId", None)
    return payload


def flatten_user(raw: dict) -> Dict[str, Any]:
    attributes = {name: raw.get(prop) for name, prop in _PROFILE_FIELDS.items()}
    attributes["account_enabled"] = bool(raw.get("accountEnabled", False))
    attributes["user_principal_name"] = raw.get("userPrincipalName")
    for name, prop in _COMPUTED_PROPERTIES.items():
        attributes[name] = raw.get(prop)
    return attributes


class UserAdapter(ResourceAdapter[User]):
    """Reconciles user accounts. The user principal name forces replacement."""

    resource_type = USER_RESOURCE_NAME
    immutable_fields = ("user_principal_name",)
    write_only_fields = ("password", "force_password_change")
    computed_fields = ("password", "mail_nickname", "onpremises_immutable_id")

    def __init__(self, client: UsersClient):
        self.client = client

    def validate(self, spec: User) -> None:
        validators.required_string(spec.user_principal_name, "user_principal_name")
        validators.is_email(spec.user_principal_name, "user_principal_name")
        validators.required_string(spec.display_name, "display_name")
        validators.no_empty_string(spec.mail_nickname, "mail_nickname")
        if spec.password is not None and not 1 <= len(spec.password) <= MAX_PASSWORD_LENGTH:
            raise ValidationError(
                f"password must be between 1 and {MAX_PASSWORD_LENGTH} characters", field="password"
            )

    def display_name(self, spec: User) -> str:
        return spec.display_name

    def desired_attributes(self, spec: User) -> Dict[str, Any]:
        attributes = {name: _none_if_empty(getattr(spec, name)) for name in _PROFILE_FIELDS}
        attributes["user_principal_name"] = spec.user_principal_name
        attributes["password"] = spec.password
        attributes["force_password_change"] = spec.force_password_change
        return attributes

    def create(self, spec: User, ctx: OperationContext) -> dict:
        if not spec.password:
            raise ValidationError("`password` is required when creating a new user", field="password")
        payload = expand_user(spec)
        payload["passwordProfile"] = {
            "forceChangePasswordNextSignIn": spec.force_password_change,
            "password": spec.password,
        }
        user, _ = self.client.create(payload)
        return user

    def read(self, identity: str, ctx: OperationContext) -> dict:
        user, _ = self.client.get(identity)
        return user

    def flatten(self, identity: str, record: dict, ctx: OperationContext) -> Dict[str, Any]:
        return flatten_user(record)

    def update(self, identity: str, spec: User, changed: Sequence[str], ctx: OperationContext) -> None:
        payload = expand_user(spec, changed)
        if "password" in changed:
            payload["passwordProfile"] = {
                "forceChangePasswordNextSignIn": spec.force_password_change,
                "password": spec.password,
            }
        if not payload:
            logger.debug("[user] Nothing to send for %r (%s)", identity, ", ".join(changed))
            return
        payload["id"] = identity
        self.client.update(payload)

    def delete(self, identity: str, record: dict, ctx: OperationContext) -> None:
        self.client.delete(identity)
