"""Tests for desired-state input validation."""
from datetime import timedelta, timezone
from types import SimpleNamespace

import pytest

from directory_provider.core import validators
from directory_provider.core.errors import ValidationError


class TestStrings:
    def test_none_is_allowed(self):
        assert validators.no_empty_string(None, "f") is None

    @pytest.mark.parametrize("value", ["", "   ", "\t"])
    def test_blank_rejected(self, value):
        with pytest.raises(ValidationError, match="must not be empty") as excinfo:
            validators.no_empty_string(value, "display_name")
        assert excinfo.value.field == "display_name"

    def test_required(self):
        with pytest.raises(ValidationError, match="is required"):
            validators.required_string(None, "catalog_id")


def test_uuid():
    assert validators.is_uuid("00000000-0000-0000-0000-000000000000", "id")
    with pytest.raises(ValidationError, match="valid UUID"):
        validators.is_uuid("nope", "id")


@pytest.mark.parametrize("value", ["alice@contoso.com", "a.b+c@sub.contoso.co.uk"])
def test_valid_email(value):
    assert validators.is_email(value, "upn") == value


@pytest.mark.parametrize("value", ["alice", "alice@localhost", "alice@contoso.com ", "@contoso.com"])
def test_invalid_email(value):
    with pytest.raises(ValidationError):
        validators.is_email(value, "upn")


class TestTimestamps:
    def test_zulu(self):
        parsed = validators.is_rfc3339("2024-01-02T03:04:05Z", "d")
        assert parsed.tzinfo is not None
        assert validators.format_rfc3339(parsed) == "2024-01-02T03:04:05Z"

    def test_offset_is_kept(self):
        parsed = validators.is_rfc3339("2024-01-02T03:04:05+02:00", "d")
        assert parsed.utcoffset() == timedelta(hours=2)
        assert validators.format_rfc3339(parsed) == "2024-01-02T03:04:05+02:00"

    def test_long_fraction(self):
        parsed = validators.is_rfc3339("2024-01-02T03:04:05.1234567Z", "d")
        assert parsed.microsecond == 123456
        assert parsed.tzinfo == timezone.utc

    @pytest.mark.parametrize("value", ["2024-01-02", "2024-01-02T03:04:05", "yesterday"])
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            validators.is_rfc3339(value, "end_date")


@pytest.mark.parametrize(
    "value, expected",
    [
        ("240h", timedelta(hours=240)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5h", timedelta(minutes=90)),
        ("500ms", timedelta(milliseconds=500)),
    ],
)
def test_duration(value, expected):
    assert validators.parse_duration(value, "end_date_relative") == expected


@pytest.mark.parametrize("value", ["", "10", "10d", "h", "1h 30m"])
def test_bad_duration(value):
    with pytest.raises(ValidationError, match="duration"):
        validators.parse_duration(value, "end_date_relative")


class TestUris:
    @pytest.mark.parametrize("value", ["api://my-app", "https://contoso.com/app", "urn:contoso:app"])
    def test_app_uri(self, value):
        assert validators.is_app_uri(value, "identifier_uris.0") == value

    @pytest.mark.parametrize("value", ["my-app", "ftp://contoso.com", "api://"])
    def test_bad_app_uri(self, value):
        with pytest.raises(ValidationError):
            validators.is_app_uri(value, "identifier_uris.0")

    def test_http_url(self):
        assert validators.is_http_url(None, "web.0.homepage_url") is None
        with pytest.raises(ValidationError, match="http or https"):
            validators.is_http_url("contoso.com", "web.0.homepage_url")


def test_one_of():
    assert validators.one_of("User", ("User", "Admin"), "type") == "User"
    with pytest.raises(ValidationError, match="must be one of"):
        validators.one_of("Guest", ("User", "Admin"), "type")


@pytest.mark.parametrize("value", ["Task.Read", "admin_role", "a"])
def test_claim_value(value):
    assert validators.role_scope_claim_value(value, "value") == value


def test_unique_values_per_group():
    groups = {
        "app_role": [SimpleNamespace(value="read"), SimpleNamespace(value=None), SimpleNamespace(value=None)],
        "scope": [SimpleNamespace(value="read")],
    }
    validators.unique_values(groups)

    groups["scope"].append(SimpleNamespace(value="read"))
    with pytest.raises(ValidationError) as excinfo:
        validators.unique_values(groups)
    assert excinfo.value.field == "scope"
