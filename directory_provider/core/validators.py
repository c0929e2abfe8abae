"""Input validation helpers for desired-state attributes.

Every helper raises ValidationError naming the offending field, so a bad
desired state is rejected before anything is sent to the directory.
"""
from __future__ import annotations
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Mapping, Optional, Sequence
from urllib.parse import urlparse

from .errors import ValidationError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_APP_URI_SCHEMES = {"http", "https", "api", "urn", "ms-appx"}
_FRACTION = re.compile(r"\.(\d+)")


def no_empty_string(value: Optional[str], field: str) -> Optional[str]:
    """Reject values that are empty or whitespace only (None is allowed)."""
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must not be empty", field=field)
    return value


def required_string(value: Optional[str], field: str) -> str:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    return no_empty_string(value, field)


def is_uuid(value: Optional[str], field: str) -> Optional[str]:
    """Validate a UUID string."""
    if value is None:
        return None
    try:
        uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be a valid UUID, got {value!r}", field=field) from None
    return value


def is_email(value: Optional[str], field: str) -> Optional[str]:
    """Validate an email-style address such as a user principal name."""
    if value is None:
        return None
    email = value.strip()
    if not email or "@" not in email or email != value:
        raise ValidationError(f"{field} must be an email address", field=field)
    local, domain = email.rsplit("@", 1)
    if not local or not domain or "." not in domain:
        raise ValidationError(f"{field} must be an email address", field=field)
    if len(email) > 254:
        raise ValidationError(f"{field} exceeds maximum length", field=field)
    return value


def is_rfc3339(value: Optional[str], field: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp."""
    if value is None:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    # fromisoformat only accepts up to microsecond precision
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be an RFC3339 timestamp, got {value!r}", field=field) from None
    if parsed.tzinfo is None:
        raise ValidationError(f"{field} must include a UTC offset, got {value!r}", field=field)
    return parsed


def format_rfc3339(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime("%Y-%m-%dT%H:%M:%SZ") if value.utcoffset() == timedelta(0) else value.isoformat()


def parse_duration(value: str, field: str) -> timedelta:
    """Parse a duration such as ``240h`` or ``1h30m``."""
    text = (value or "").strip()
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if not text or pos != len(text):
        raise ValidationError(f"{field} must be a duration such as '240h', got {value!r}", field=field)
    return timedelta(seconds=total)


def is_http_url(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(f"{field} must be an http or https URL, got {value!r}", field=field)
    return value


def is_app_uri(value: str, field: str) -> str:
    """Validate an application identifier URI."""
    parsed = urlparse(value or "")
    if parsed.scheme not in _APP_URI_SCHEMES:
        raise ValidationError(f"{field} must be a URI with a scheme in {sorted(_APP_URI_SCHEMES)}", field=field)
    if parsed.scheme in ("http", "https", "api") and not parsed.netloc:
        raise ValidationError(f"{field} must include a host, got {value!r}", field=field)
    return value


def one_of(value: Any, choices: Iterable[str], field: str) -> Any:
    choices = list(choices)
    if value is not None and value not in choices:
        raise ValidationError(f"{field} must be one of {choices}, got {value!r}", field=field)
    return value


def role_scope_claim_value(value: Optional[str], field: str) -> Optional[str]:
    """Validate an app role / permission scope claim value."""
    if value is None:
        return None
    if not value:
        raise ValidationError(f"{field} must not be empty", field=field)
    if any(c.isspace() for c in value):
        raise ValidationError(f"{field} must not contain whitespace, got {value!r}", field=field)
    if value.startswith("."):
        raise ValidationError(f"{field} must not start with '.', got {value!r}", field=field)
    return value


def unique_values(groups: Mapping[str, Sequence[Any]], value_of=lambda e: getattr(e, "value", None)) -> None:
    """Entries within each group must carry pairwise unique values.

    Args:
        groups: group field path -> entries
        value_of: Extracts the value tag from an entry (None is ignored)
    """
    for field, entries in groups.items():
        seen = set()
        for entry in entries:
            value = value_of(entry)
            if value is None:
                continue
            if value in seen:
                raise ValidationError(f"validation failed: duplicate value found: {value!r}", field=field)
            seen.add(value)
