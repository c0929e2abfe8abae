"""Audit trail for reconciliation operations (signed JSONL)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Literal, Optional

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILENAME = "reconcile-events.jsonl"
_default_secret_paths: list[Path] = [
    Path(".runtime/secrets/audit_log_signing_key"),
    Path(".runtime/audit/audit_log_signing_key"),
]

Operation = Literal["create", "update", "delete"]


def audit_log_file(audit_dir: Optional[Path] = None) -> Path:
    return Path(audit_dir or AUDIT_LOG_DIR) / AUDIT_LOG_FILENAME


def _get_signing_key() -> bytes:
    """Get the audit signing key (key file, then environment, then default paths)."""
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    if key_file and Path(key_file).exists():
        try:
            return Path(key_file).read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    for path in _default_secret_paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return b""


def _sign_event(event: dict[str, Any]) -> str:
    """Generate HMAC-SHA256 signature for audit event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    # Canonical JSON representation for signing
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_event(
    operation: Operation,
    resource_type: str,
    identity: str,
    *,
    operator: str = "cli",
    tenant_id: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
    audit_dir: Optional[Path] = None,
) -> None:
    """Append a reconciliation event to the audit trail.

    Args:
        operation: Mutating operation that ran
        resource_type: Resource type reconciled
        identity: Remote identity of the resource (empty if creation failed)
        operator: Who triggered the operation
        tenant_id: Directory tenant the operation ran against
        details: Additional context (changed fields, error text)
        success: Whether the operation succeeded
        audit_dir: Directory holding the log (defaults to AUDIT_LOG_DIR)
    """
    log_dir = Path(audit_dir or AUDIT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_dir.chmod(0o700)

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "operation": operation,
        "resource_type": resource_type,
        "identity": identity,
        "tenant_id": tenant_id,
        "operator": operator,
        "success": success,
        "details": details or {},
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    log_file = audit_log_file(log_dir)
    with log_file.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False, default=str) + "\n")

    log_file.chmod(0o600)


def safe_log_event(
    operation: Operation,
    resource_type: str,
    identity: str,
    **kwargs: Any,
) -> bool:
    """Log an event without ever raising.

    Audit failures must not turn a successful reconciliation into a failed
    one, so errors are reported on stderr instead.

    Returns:
        True if event was logged successfully, False if logging failed
    """
    try:
        log_event(operation, resource_type, identity, **kwargs)
        return True
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {operation} event for {resource_type} {identity!r}: {e}",
            file=sys.stderr,
        )
        return False


def verify_audit_log(audit_dir: Optional[Path] = None) -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    log_file = audit_log_file(audit_dir)
    if not log_file.exists():
        return 0, 0

    total = 0
    valid = 0

    with log_file.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid
