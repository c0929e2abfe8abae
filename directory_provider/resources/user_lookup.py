"""User data source: find one existing user by UPN, object ID or mail nickname."""
from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from ..core.errors import InvalidServerResponse, NotFound, ValidationError
from ..core.graph import UsersClient, odata_equals, operation_deadline
from ..core.reconciler import DEFAULT_TIMEOUT, translate_errors
from .user import flatten_user

logger = logging.getLogger(__name__)

USER_DATA_SOURCE_NAME = "azuread_user"


class UserLookup:
    """Read-only lookup of a single user."""

    resource_type = USER_DATA_SOURCE_NAME

    def __init__(self, client: UsersClient, timeout: float = DEFAULT_TIMEOUT):
        self.client = client
        self.timeout = timeout

    def read(
        self,
        user_principal_name: Optional[str] = None,
        object_id: Optional[str] = None,
        mail_nickname: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return the user's attributes, including ``object_id``.

        Exactly one key must be supplied.

        Raises:
            ValidationError: No key or more than one key given, or the key
                matched more than one user
            NotFound: No user matched
        """
        keys = {
            "user_principal_name": user_principal_name,
            "object_id": object_id,
            "mail_nickname": mail_nickname,
        }
        given = [k for k, v in keys.items() if v]
        if len(given) != 1:
            raise ValidationError(
                "Exactly one of `object_id`, `user_principal_name` or `mail_nickname` must be supplied",
                operation="read",
            )
        field = given[0]
        value = keys[field]

        with operation_deadline(self.timeout), translate_errors("read", field=field):
            if field == "object_id":
                user, _ = self.client.get(value)
                if not user:
                    raise NotFound(f"User not found with object ID: {value!r}")
            else:
                user = self._find_one(field, value)

        if not user.get("id"):
            raise InvalidServerResponse("API returned user with nil object ID", operation="read", field=field)
        logger.debug("[user_lookup] Resolved %s=%r to %r", field, value, user["id"])
        return flatten_user(user)

    def _find_one(self, field: str, value: str) -> dict:
        prop = "userPrincipalName" if field == "user_principal_name" else "mailNickname"
        users, _ = self.client.list(odata_equals(prop, value))
        if users is None:
            raise InvalidServerResponse("API returned nil result")
        if len(users) > 1:
            raise ValidationError(f"More than one user found with {field}: {value!r}")
        if not users:
            raise NotFound(f"User with {field} {value!r} was not found")
        return users[0]
