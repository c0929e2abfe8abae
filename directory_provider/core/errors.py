"""Reconciliation error taxonomy.

Every error carries the operation name, the resource identity and, where it
applies, the attribute path it concerns. Callers render conflicts and
validation errors differently from generic failures, so those are distinct
types.
"""
from __future__ import annotations
from typing import Any, Optional


class ReconcileError(Exception):
    """Base exception for all reconciliation failures.

    Attributes:
        detail: Human readable description
        operation: Operation that failed (create, read, update, delete, ...)
        identity: Resource identity involved, if known
        field: Attribute path the error concerns, if any
        partial_state: State to persist even though the operation failed
            (set when a remote object was created before a follow-up failed)
    """

    def __init__(
        self,
        detail: str,
        *,
        operation: str = "",
        identity: str = "",
        field: str = "",
        partial_state: Optional[Any] = None,
    ):
        self.detail = detail
        self.operation = operation
        self.identity = identity
        self.field = field
        self.partial_state = partial_state
        super().__init__(detail)

    def enrich(self, operation: str = "", identity: str = "", field: str = "") -> "ReconcileError":
        """Fill in context that the raising code did not know about."""
        self.operation = self.operation or operation
        self.identity = self.identity or identity
        self.field = self.field or field
        return self

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(self.operation)
        if self.identity:
            context.append(f"id={self.identity!r}")
        if self.field:
            context.append(f"field={self.field}")
        if not context:
            return self.detail
        return f"[{' '.join(context)}] {self.detail}"


class NotFound(ReconcileError):
    """Resource is absent remotely. Read and Delete treat this as Absent."""
    pass


class DuplicateResourceError(ReconcileError):
    """An object with the same natural key already exists.

    Attributes:
        conflicting_id: Identity of the existing object, for import tooling
        resource_type: Resource type of the existing object
        name: The natural key that collided
    """

    def __init__(self, resource_type: str, conflicting_id: str, name: str, **kwargs):
        self.resource_type = resource_type
        self.conflicting_id = conflicting_id
        self.name = name
        super().__init__(
            f"An existing {resource_type} with name {name!r} (id {conflicting_id!r}) was found; "
            f"import it instead of creating a duplicate",
            **kwargs,
        )


class InvalidServerResponse(ReconcileError):
    """The service reported success but the response lacks a required field."""
    pass


class ValidationError(ReconcileError):
    """Local pre-flight check failed; nothing was sent to the service."""
    pass


class MalformedIdentifier(ReconcileError):
    """Persisted identifier does not parse under any known format."""
    pass


class TransientRemoteError(ReconcileError):
    """Any other directory service failure. Safe for the caller to retry."""

    def __init__(self, detail: str, *, status_code: Optional[int] = None, **kwargs):
        self.status_code = status_code
        super().__init__(detail, **kwargs)
