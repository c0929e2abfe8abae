"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_URL = "https://graph.microsoft.com"
DEFAULT_AUTHORITY_URL = "https://login.microsoftonline.com"


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                logger.debug("[settings] Loaded %s from /run/secrets", secret_name)
                return secret_value
        except OSError as e:
            logger.warning("[settings] Failed to read /run/secrets/%s: %s", secret_name, e)

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            logger.debug("[settings] Loaded %s from environment (fallback)", env_var)
            return secret_value

    return None


@dataclass
class AppConfig:
    """Provider configuration container."""
    # Tenant / service principal
    tenant_id: str
    client_id: str
    client_secret: str = ""

    # Endpoints
    graph_url: str = DEFAULT_GRAPH_URL
    authority_url: str = DEFAULT_AUTHORITY_URL
    graph_api_version: str = "v1.0"
    identity_governance_api_version: str = "beta"

    # Timeouts (seconds)
    request_timeout: float = 30
    create_timeout: float = 300
    read_timeout: float = 300
    update_timeout: float = 300
    delete_timeout: float = 300

    # Behaviour
    prevent_duplicate_names: bool = False

    # Ambient
    audit_log_dir: str = ".runtime/audit"
    log_level: str = "INFO"

    @property
    def client_secret_resolved(self) -> str:
        """Get the service principal's client secret with fallback.

        Priority:
        1. Configured value in client_secret
        2. Docker secrets: /run/secrets/azuread_client_secret
        3. Environment variable: AZUREAD_CLIENT_SECRET

        Raises:
            ValueError: If the secret is not found
        """
        if self.client_secret:
            return self.client_secret

        for secret_name in ["azuread_client_secret", "azuread-client-secret"]:
            secret_path = Path("/run/secrets") / secret_name
            if secret_path.exists():
                secret = secret_path.read_text().strip()
                if secret:
                    return secret

        secret = os.environ.get("AZUREAD_CLIENT_SECRET")
        if secret:
            return secret

        raise ValueError(
            "AZUREAD_CLIENT_SECRET not found. "
            "Provide the secret via Docker secrets or environment variable."
        )


def _env_bool(var_name: str, default: bool = False) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() == "true"


def _env_float(var_name: str, default: float) -> float:
    value = os.environ.get(var_name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be a number, got {value!r}.") from None


def _require(var_name: str) -> str:
    value = os.environ.get(var_name)
    if value:
        return value
    raise RuntimeError(f"Environment variable {var_name} is required.")


def load_settings(overrides: Optional[dict] = None) -> AppConfig:
    """Load provider settings from the environment and /run/secrets.

    Args:
        overrides: Values that win over the environment (e.g. CLI flags);
            None values are ignored
    """
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    if "tenant_id" not in overrides:
        overrides["tenant_id"] = _require("AZUREAD_TENANT_ID")
    if "client_id" not in overrides:
        overrides["client_id"] = _require("AZUREAD_CLIENT_ID")

    config = AppConfig(
        tenant_id=overrides["tenant_id"],
        client_id=overrides["client_id"],
        client_secret=_load_secret_from_file("azuread_client_secret", "AZUREAD_CLIENT_SECRET") or "",
        graph_url=os.environ.get("AZUREAD_GRAPH_URL", DEFAULT_GRAPH_URL).rstrip("/"),
        authority_url=os.environ.get("AZUREAD_AUTHORITY_URL", DEFAULT_AUTHORITY_URL).rstrip("/"),
        graph_api_version=os.environ.get("AZUREAD_GRAPH_API_VERSION", "v1.0"),
        identity_governance_api_version=os.environ.get("AZUREAD_IDENTITY_GOVERNANCE_API_VERSION", "beta"),
        request_timeout=_env_float("AZUREAD_REQUEST_TIMEOUT", 30),
        create_timeout=_env_float("AZUREAD_CREATE_TIMEOUT", 300),
        read_timeout=_env_float("AZUREAD_READ_TIMEOUT", 300),
        update_timeout=_env_float("AZUREAD_UPDATE_TIMEOUT", 300),
        delete_timeout=_env_float("AZUREAD_DELETE_TIMEOUT", 300),
        prevent_duplicate_names=_env_bool("AZUREAD_PREVENT_DUPLICATE_NAMES"),
        audit_log_dir=os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    )
    for key, value in overrides.items():
        if key not in AppConfig.__dataclass_fields__:
            raise RuntimeError(f"Unknown setting {key!r}.")
        setattr(config, key, value)
    return config
