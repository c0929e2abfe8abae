"""Generic create/read/update/delete reconciliation engine.

One engine instance drives one resource type through a ``ResourceAdapter``
that supplies the remote primitives and the field mapping. The engine owns the
cross-cutting rules:

- local validation and force-replacement checks happen before any remote call
- the optional duplicate-name guard runs before create/update
- a created identity is recorded before follow-up writes, and surfaced on the
  error if a follow-up fails (no rollback)
- not-found on read means Absent, not failure; delete is idempotent
- directory errors are translated into the reconciliation taxonomy and
  enriched with operation, identity and field
- every remote step runs under the operation's deadline; nothing is retried
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

from .errors import (
    DuplicateResourceError,
    InvalidServerResponse,
    NotFound,
    ReconcileError,
    TransientRemoteError,
    ValidationError,
)
from .graph.client import operation_deadline
from .graph.exceptions import GraphAPIError, GraphError
from .locks import NameLocks, default_locks
from .state import Drift, ResourceState, StateUpgrader, diff, upgrade_state

logger = logging.getLogger(__name__)

SpecT = TypeVar("SpecT")

AuditHook = Callable[..., Any]

DEFAULT_TIMEOUT = 5 * 60


@contextmanager
def translate_errors(operation: str, identity: str = "", field: str = "") -> Iterator[None]:
    """Translate directory errors and enrich reconciliation errors."""
    try:
        yield
    except ReconcileError as exc:
        exc.enrich(operation, identity, field)
        raise
    except GraphAPIError as exc:
        if exc.not_found:
            raise NotFound(str(exc), operation=operation, identity=identity, field=field) from exc
        raise TransientRemoteError(
            str(exc), status_code=exc.status_code, operation=operation, identity=identity, field=field
        ) from exc
    except GraphError as exc:
        raise TransientRemoteError(str(exc), operation=operation, identity=identity, field=field) from exc


@dataclass(frozen=True)
class Timeouts:
    """Deadline per operation, in seconds."""
    create: float = DEFAULT_TIMEOUT
    read: float = DEFAULT_TIMEOUT
    update: float = DEFAULT_TIMEOUT
    delete: float = DEFAULT_TIMEOUT


class OperationContext:
    """Per-operation handle given to adapters."""

    def __init__(self, operation: str, locks: NameLocks):
        self.operation = operation
        self.locks = locks

    def lock(self, resource_type: str, name: str):
        """Serialize mutations of ``name``'s sub-collections (context manager)."""
        return self.locks.acquire(resource_type, name)


class ResourceAdapter(ABC, Generic[SpecT]):
    """Resource-specific half of the reconciliation contract.

    ``read`` and ``delete`` may raise GraphAPIError (404 is translated to
    Absent by the engine) or NotFound directly.
    """

    resource_type: str = ""
    schema_version: int = 0
    # Fields that cannot change in place; changing one needs destroy + create.
    immutable_fields: Tuple[str, ...] = ()
    # Fields the service never returns; carried over from the desired state.
    write_only_fields: Tuple[str, ...] = ()
    # Optional fields the service fills in when left unset.
    computed_fields: Tuple[str, ...] = ()
    supports_update: bool = True

    def validate(self, spec: SpecT) -> None:
        """Local pre-flight checks. Raise ValidationError."""

    def duplicate_guard(self, spec: SpecT) -> bool:
        """Whether the duplicate-name guard is enabled for this desired state."""
        return False

    def display_name(self, spec: SpecT) -> str:
        return ""

    def find_by_name(self, name: str, ctx: OperationContext) -> List[dict]:
        """Remote records whose display name equals ``name`` exactly."""
        return []

    @abstractmethod
    def desired_attributes(self, spec: SpecT) -> Dict[str, Any]:
        """Desired state in the same shape ``flatten`` produces."""

    @abstractmethod
    def create(self, spec: SpecT, ctx: OperationContext) -> dict:
        """Call the create primitive and return the server record."""

    def identity_of(self, record: Optional[dict]) -> str:
        return (record or {}).get("id") or ""

    def created_attributes(self, record: dict) -> Dict[str, Any]:
        """Write-only values only available in the create response."""
        return {}

    def after_create(self, identity: str, spec: SpecT, record: dict, ctx: OperationContext) -> None:
        """Follow-up sub-resource writes once the object exists."""

    @abstractmethod
    def read(self, identity: str, ctx: OperationContext) -> dict:
        """Fetch the remote record."""

    @abstractmethod
    def flatten(self, identity: str, record: dict, ctx: OperationContext) -> Dict[str, Any]:
        """Map the remote record to state attributes."""

    def update(self, identity: str, spec: SpecT, changed: Sequence[str], ctx: OperationContext) -> None:
        raise NotImplementedError(f"{self.resource_type} does not support in-place updates")

    @abstractmethod
    def delete(self, identity: str, record: dict, ctx: OperationContext) -> None:
        """Call the delete primitive."""

    def state_upgraders(self) -> List[StateUpgrader]:
        return []


class Reconciler(Generic[SpecT]):
    """Drives one resource type between Absent and Present."""

    def __init__(
        self,
        adapter: ResourceAdapter[SpecT],
        locks: Optional[NameLocks] = None,
        timeouts: Optional[Timeouts] = None,
        audit_hook: Optional[AuditHook] = None,
    ):
        """Initialize reconciler.

        Args:
            adapter: Resource-specific adapter
            locks: Lock registry (defaults to the process-wide registry)
            timeouts: Deadlines per operation
            audit_hook: Called after each mutating operation with
                (operation, resource_type, identity, success=..., details=...)
        """
        self.adapter = adapter
        self.locks = locks if locks is not None else default_locks()
        self.timeouts = timeouts or Timeouts()
        self.audit_hook = audit_hook

    @property
    def resource_type(self) -> str:
        return self.adapter.resource_type

    def _context(self, operation: str) -> OperationContext:
        return OperationContext(operation, self.locks)

    def _empty(self) -> ResourceState:
        return ResourceState(schema_version=self.adapter.schema_version, resource_type=self.resource_type)

    def _errors(self, operation: str, identity: str = "", field: str = ""):
        return translate_errors(operation, identity, field)

    def _audit(self, operation: str, identity: str, success: bool, **details) -> None:
        if self.audit_hook is None:
            return
        self.audit_hook(operation, self.resource_type, identity, success=success, details=details)

    def _check_duplicates(self, spec: SpecT, identity: str, operation: str, ctx: OperationContext) -> None:
        name = self.adapter.display_name(spec)
        with self._errors(operation, identity, "display_name"):
            matches = self.adapter.find_by_name(name, ctx)
        for match in matches:
            match_id = self.adapter.identity_of(match)
            if not match_id:
                raise InvalidServerResponse(
                    f"API returned {self.resource_type} with nil object ID during duplicate name check",
                    operation=operation,
                    identity=identity,
                    field="display_name",
                )
            if match_id != identity:
                raise DuplicateResourceError(
                    self.resource_type, match_id, name, operation=operation, identity=identity, field="display_name"
                )

    def _carry_write_only(self, source: Dict[str, Any], target: ResourceState) -> None:
        for key in self.adapter.write_only_fields:
            if source.get(key) is not None:
                target.attributes[key] = source[key]

    def create(self, spec: SpecT) -> ResourceState:
        """Create the remote object and return its canonical state.

        Raises:
            ValidationError: Pre-flight checks failed (no remote call made)
            DuplicateResourceError: Duplicate-name guard found an existing object
            InvalidServerResponse: The service returned no identity
            ReconcileError: Any failure after the object exists carries the
                new state in ``partial_state``
        """
        operation = "create"
        ctx = self._context(operation)
        with self._errors(operation):
            self.adapter.validate(spec)

        with operation_deadline(self.timeouts.create):
            if self.adapter.duplicate_guard(spec):
                self._check_duplicates(spec, "", operation, ctx)

            try:
                with self._errors(operation):
                    record = self.adapter.create(spec, ctx)
            except ReconcileError as exc:
                self._audit(operation, "", False, error=str(exc))
                raise
            identity = self.adapter.identity_of(record)
            if not identity:
                raise InvalidServerResponse(
                    f"Object ID returned for {self.resource_type} is nil/empty", operation=operation
                )

            state = self._empty()
            state.id = identity
            self._carry_write_only(self.adapter.desired_attributes(spec), state)
            state.attributes.update(self.adapter.created_attributes(record))
            logger.info("[%s] Created %r", self.resource_type, identity)

            try:
                with self._errors(operation, identity):
                    self.adapter.after_create(identity, spec, record, ctx)
            except ReconcileError as exc:
                exc.partial_state = state
                self._audit(operation, identity, False, error=str(exc))
                raise
        self._audit(operation, identity, True)

        try:
            fresh = self.read(identity)
        except ReconcileError as exc:
            exc.partial_state = state
            raise
        if fresh is None:
            logger.warning("[%s] %r not readable right after creation; keeping its ID", self.resource_type, identity)
            return state
        fresh.attributes.update({k: v for k, v in state.attributes.items() if k not in fresh.attributes})
        return fresh

    def read(self, identity: str) -> Optional[ResourceState]:
        """Fetch the remote object; None means Absent.

        Raises:
            TransientRemoteError: Any failure other than not-found
        """
        operation = "read"
        ctx = self._context(operation)
        with operation_deadline(self.timeouts.read):
            try:
                with self._errors(operation, identity):
                    record = self.adapter.read(identity, ctx)
                    attributes = self.adapter.flatten(identity, record, ctx)
            except NotFound:
                logger.debug("[%s] %r was not found - removing from state", self.resource_type, identity)
                return None
        state = self._empty()
        state.id = identity
        state.attributes = attributes
        return state

    def refresh(self, state: ResourceState) -> Tuple[ResourceState, Drift]:
        """Re-read a known resource and report drift against the stored snapshot."""
        if not state.exists:
            return state, Drift()
        fresh = self.read(state.id)
        if fresh is None:
            return self._empty(), Drift(absent=True)
        self._carry_write_only(state.attributes, fresh)
        return fresh, diff(state, fresh)

    def changed_fields(self, state: ResourceState, desired: Dict[str, Any]) -> List[str]:
        """Desired attributes that differ from the stored snapshot."""
        changed = []
        for key, value in desired.items():
            if value is None and key in self.adapter.computed_fields:
                continue
            if state.attributes.get(key) != value:
                changed.append(key)
        return changed

    def update(self, state: ResourceState, spec: SpecT) -> ResourceState:
        """Apply the changed fields of ``spec`` to an existing object.

        Raises:
            ValidationError: Pre-flight checks failed or an immutable field
                changed (force-replacement); no remote call made
            DuplicateResourceError: Another object already uses the display name
        """
        operation = "update"
        if not state.exists:
            raise ValidationError(f"Cannot update an absent {self.resource_type}; create it instead",
                                  operation=operation)
        identity = state.id
        ctx = self._context(operation)
        with self._errors(operation, identity):
            self.adapter.validate(spec)

        desired = self.adapter.desired_attributes(spec)
        changed = self.changed_fields(state, desired)
        forced = [f for f in changed if f in self.adapter.immutable_fields or not self.adapter.supports_update]
        if forced:
            raise ValidationError(
                f"Changing {', '.join(forced)} requires replacing the {self.resource_type}",
                operation=operation,
                identity=identity,
                field=forced[0],
            )
        if not changed:
            logger.debug("[%s] %r is up to date", self.resource_type, identity)
            return state

        with operation_deadline(self.timeouts.update):
            if self.adapter.duplicate_guard(spec):
                self._check_duplicates(spec, identity, operation, ctx)
            try:
                with self._errors(operation, identity):
                    self.adapter.update(identity, spec, changed, ctx)
            except ReconcileError as exc:
                self._audit(operation, identity, False, changed=changed, error=str(exc))
                raise
        logger.info("[%s] Updated %r (%s)", self.resource_type, identity, ", ".join(changed))
        self._audit(operation, identity, True, changed=changed)

        fresh = self.read(identity)
        if fresh is None:
            return self._empty()
        self._carry_write_only(state.attributes, fresh)
        self._carry_write_only(desired, fresh)
        return fresh

    def delete(self, state: ResourceState) -> ResourceState:
        """Delete the remote object. Succeeds as a no-op when already gone."""
        operation = "delete"
        if not state.exists:
            return self._empty()
        identity = state.id
        ctx = self._context(operation)
        with operation_deadline(self.timeouts.delete):
            try:
                with self._errors(operation, identity):
                    record = self.adapter.read(identity, ctx)
            except NotFound:
                logger.debug("[%s] %r already deleted", self.resource_type, identity)
                return self._empty()
            except ReconcileError as exc:
                self._audit(operation, identity, False, error=str(exc))
                raise
            try:
                with self._errors(operation, identity):
                    self.adapter.delete(identity, record, ctx)
            except NotFound:
                logger.debug("[%s] %r disappeared while deleting", self.resource_type, identity)
            except ReconcileError as exc:
                self._audit(operation, identity, False, error=str(exc))
                raise
        logger.info("[%s] Deleted %r", self.resource_type, identity)
        self._audit(operation, identity, True)
        return self._empty()

    def upgrade_state(self, raw: Dict[str, Any]) -> ResourceState:
        """Bring a persisted state document up to the adapter's schema version."""
        stored_type = raw.get("resource_type")
        if stored_type and stored_type != self.resource_type:
            raise ValidationError(
                f"State belongs to {stored_type}, not {self.resource_type}",
                operation="upgrade",
                identity=raw.get("id", ""),
            )
        upgraded = upgrade_state(raw, self.adapter.state_upgraders(), self.adapter.schema_version)
        state = ResourceState.from_dict(upgraded)
        state.resource_type = self.resource_type
        return state
