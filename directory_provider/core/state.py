"""Persisted resource state, drift detection and schema upgrades."""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from .errors import MalformedIdentifier

logger = logging.getLogger(__name__)


@dataclass
class ResourceState:
    """Identity plus the last-read snapshot of a resource's attributes.

    An empty ``id`` means the resource is Absent.
    """
    id: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    schema_version: int = 0
    resource_type: str = ""

    @property
    def exists(self) -> bool:
        return bool(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "schema_version": self.schema_version,
            "id": self.id,
            "attributes": self.attributes,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ResourceState":
        return cls(
            id=raw.get("id") or "",
            attributes=dict(raw.get("attributes") or {}),
            schema_version=int(raw.get("schema_version") or 0),
            resource_type=raw.get("resource_type") or "",
        )


@dataclass
class Drift:
    """Difference between the last known state and a fresh read.

    Attributes:
        absent: The object was deleted upstream; local state must be dropped
        changes: attribute -> (previous value, current value)
    """
    absent: bool = False
    changes: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)

    @property
    def drifted(self) -> bool:
        return self.absent or bool(self.changes)


def diff(prior: ResourceState, current: ResourceState, ignore: Sequence[str] = ()) -> Drift:
    """Compare two snapshots of the same resource."""
    if prior.exists and not current.exists:
        return Drift(absent=True)
    changes = {}
    for key in sorted(set(prior.attributes) | set(current.attributes)):
        if key in ignore:
            continue
        before = prior.attributes.get(key)
        after = current.attributes.get(key)
        if before != after:
            changes[key] = (before, after)
    return Drift(absent=False, changes=changes)


@dataclass(frozen=True)
class StateUpgrader:
    """Migrates raw state from ``version`` to ``version + 1``."""
    version: int
    upgrade: Callable[[Dict[str, Any]], Dict[str, Any]]


def upgrade_state(
    raw: Dict[str, Any],
    upgraders: Sequence[StateUpgrader],
    target_version: int,
) -> Dict[str, Any]:
    """Run upgraders one version at a time until ``target_version``.

    Raises:
        MalformedIdentifier: The stored version is newer than supported, or no
            upgrader covers an intermediate version
    """
    by_version = {u.version: u for u in upgraders}
    current = dict(raw)
    current["attributes"] = dict(current.get("attributes") or {})
    version = int(current.get("schema_version") or 0)
    if version > target_version:
        raise MalformedIdentifier(
            f"State schema version {version} is newer than supported version {target_version}",
            operation="upgrade",
            identity=current.get("id", ""),
        )
    while version < target_version:
        upgrader = by_version.get(version)
        if upgrader is None:
            raise MalformedIdentifier(
                f"No state upgrader from schema version {version}",
                operation="upgrade",
                identity=current.get("id", ""),
            )
        logger.debug("[state] Migrating %r from schema v%d to v%d", current.get("id"), version, version + 1)
        current = upgrader.upgrade(current)
        version += 1
        current["schema_version"] = version
    return current


def load_state(path: Path) -> Optional[Dict[str, Any]]:
    """Read a raw state document, or None when the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def save_state(path: Path, state: ResourceState) -> None:
    """Write state atomically (temp file then rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(state.to_dict(), f, indent=2, sort_keys=True)
        f.write("\n")
    tmp.replace(path)


def remove_state(path: Path) -> None:
    """Delete a state file if present."""
    path = Path(path)
    if path.exists():
        path.unlink()
