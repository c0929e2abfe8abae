"""Low-level HTTP client for the directory service (Microsoft Graph).

Handles authentication, token management, operation deadlines and HTTP
operations.
"""
from __future__ import annotations
import logging
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional

import jwt
import requests

from .exceptions import GraphAPIError, GraphAuthError, GraphError, GraphTimeoutError

REQUEST_TIMEOUT = 30
DEFAULT_GRAPH_URL = "https://graph.microsoft.com"
DEFAULT_AUTHORITY_URL = "https://login.microsoftonline.com"

logger = logging.getLogger(__name__)

_deadline = threading.local()


@contextmanager
def operation_deadline(seconds: Optional[float]) -> Iterator[None]:
    """Bind every request issued by this thread to a deadline.

    Nested deadlines never extend an outer one.

    Args:
        seconds: Time budget for the enclosed operation (None for no deadline)
    """
    previous = getattr(_deadline, "at", None)
    at = previous
    if seconds is not None:
        candidate = time.monotonic() + seconds
        at = candidate if previous is None else min(previous, candidate)
    _deadline.at = at
    try:
        yield
    finally:
        _deadline.at = previous


def remaining_time() -> Optional[float]:
    """Seconds left before the current thread's deadline, or None."""
    at = getattr(_deadline, "at", None)
    if at is None:
        return None
    return at - time.monotonic()


def odata_equals(field: str, value: str) -> str:
    """Build an OData equality filter over a single field."""
    escaped = value.replace("'", "''")
    return f"{field} eq '{escaped}'"


def json_body(resp: requests.Response) -> Any:
    """Decode a successful response body.

    Raises:
        GraphError: If the body is not valid JSON
    """
    try:
        return resp.json()
    except ValueError as exc:
        raise GraphError(f"Invalid JSON in response from {resp.url}: {exc}") from exc


class GraphClient:
    """HTTP client for the directory service API with automatic token management.

    Features:
    - Automatic token refresh when expired
    - Centralized error handling
    - Per-operation deadlines (see operation_deadline)

    Usage:
        client = GraphClient(tenant_id="contoso.onmicrosoft.com")
        client.authenticate_client_credentials(client_id, client_secret)
        resp = client.get("/users", params={"$filter": "displayName eq 'Alice'"})
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        tenant_id: str = "",
        api_version: str = "v1.0",
        request_timeout: float = REQUEST_TIMEOUT,
    ):
        """Initialize directory client.

        Args:
            base_url: Graph base URL (defaults to the public cloud endpoint)
            tenant_id: Directory tenant ID or domain
            api_version: Default API version segment
            request_timeout: Upper bound for a single HTTP request in seconds
        """
        self.base_url = (base_url or DEFAULT_GRAPH_URL).rstrip("/")
        self.tenant_id = tenant_id
        self.api_version = api_version
        self.request_timeout = request_timeout
        self.session = requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}
        self._token_lock = threading.Lock()

    def authenticate_client_credentials(
        self,
        client_id: str,
        client_secret: str,
        authority_url: str = DEFAULT_AUTHORITY_URL,
    ) -> str:
        """Authenticate as an application and store credentials for auto-refresh.

        Args:
            client_id: Application (client) ID
            client_secret: Client secret
            authority_url: Token authority base URL

        Returns:
            Access token
        """
        self._auth_params = {
            "client_id": client_id,
            "client_secret": client_secret,
            "authority_url": authority_url.rstrip("/"),
        }
        with self._token_lock:
            self._refresh_token()
        return self._token

    def set_token(self, token: str, expires_in: int = 3600) -> None:
        """Use a pre-obtained access token (no automatic refresh)."""
        self._token = token
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)

    def _refresh_token(self) -> None:
        params = self._auth_params
        url = f"{params['authority_url']}/{self.tenant_id}/oauth2/v2.0/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": params["client_id"],
            "client_secret": params["client_secret"],
            "scope": f"{self.base_url}/.default",
        }
        try:
            resp = requests.post(url, data=data, timeout=self.request_timeout)
        except requests.RequestException as exc:
            raise GraphAuthError(f"Token request to {url} failed: {exc}") from exc
        if resp.status_code != 200:
            raise GraphAuthError(f"[{resp.status_code}] {url}: {resp.text}")
        try:
            payload = resp.json()
            self._token = payload["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise GraphAuthError(f"Unexpected token response from {url}: {exc}") from exc
        self._token_expires_at = self._token_expiry(self._token, payload.get("expires_in"))

    @staticmethod
    def _token_expiry(token: str, expires_in: Optional[Any]) -> datetime:
        """Read the expiry from the token's exp claim when it is a JWT."""
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            if "exp" in claims:
                return datetime.fromtimestamp(int(claims["exp"]))
        except jwt.PyJWTError:
            pass
        if expires_in:
            return datetime.now() + timedelta(seconds=int(expires_in))
        # Conservative expiry: assume 60 seconds for safety
        return datetime.now() + timedelta(seconds=60)

    def _ensure_authenticated(self) -> None:
        """Ensure we have a valid token, refreshing if necessary."""
        if not self._token or not self._token_expires_at:
            raise GraphAuthError("Not authenticated - call authenticate_client_credentials first")

        # Refresh if token expired or expiring soon (within 60 seconds)
        if datetime.now() >= self._token_expires_at - timedelta(seconds=60) and self._auth_params:
            with self._token_lock:
                if datetime.now() >= self._token_expires_at - timedelta(seconds=60):
                    logger.debug("[graph] Refreshing access token")
                    self._refresh_token()

    def url(self, path: str, api_version: Optional[str] = None) -> str:
        """Build an absolute URL for an API path."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{api_version or self.api_version}{path}"

    def _timeout(self, url: str) -> float:
        left = remaining_time()
        if left is None:
            return self.request_timeout
        if left <= 0:
            raise GraphTimeoutError(f"Operation deadline expired before calling {url}")
        return min(self.request_timeout, left)

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict] = None,
        json: Optional[Any] = None,
        api_version: Optional[str] = None,
    ) -> requests.Response:
        """Execute a request with automatic authentication.

        Args:
            method: HTTP method
            path: API path (e.g., "/applications/{id}") or absolute URL
            params: Query parameters
            json: JSON payload
            api_version: Override the default API version segment

        Returns:
            Response object

        Raises:
            GraphAPIError: On HTTP error
            GraphError: On a transport failure (connection refused, reset, ...)
            GraphTimeoutError: When the operation deadline expires
        """
        self._ensure_authenticated()
        url = self.url(path, api_version)
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            resp = self.session.request(
                method, url, params=params, json=json, headers=headers, timeout=self._timeout(url)
            )
        except requests.Timeout as exc:
            raise GraphTimeoutError(f"{method} {url} timed out") from exc
        except requests.RequestException as exc:
            raise GraphError(f"{method} {url} failed: {exc}") from exc
        self._handle_error(resp)
        return resp

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        """Execute GET request."""
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute POST request."""
        return self.request("POST", path, json=json, **kwargs)

    def patch(self, path: str, json: Optional[Any] = None, **kwargs) -> requests.Response:
        """Execute PATCH request."""
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> requests.Response:
        """Execute DELETE request."""
        return self.request("DELETE", path, **kwargs)

    def get_collection(self, path: str, params: Optional[Dict] = None, **kwargs) -> tuple[List[dict], int]:
        """GET a collection, following @odata.nextLink pages.

        Returns:
            Tuple of (items, status of the last page)
        """
        items: List[dict] = []
        resp = self.get(path, params=params, **kwargs)
        while True:
            body = json_body(resp) or {}
            items.extend(body.get("value") or [])
            next_link = body.get("@odata.nextLink")
            if not next_link:
                return items, resp.status_code
            resp = self.get(next_link)

    def _handle_error(self, resp: requests.Response) -> None:
        """Centralized error handling for HTTP responses.

        Raises:
            GraphAPIError: If response status indicates error
        """
        if resp.status_code >= 400:
            message = resp.text
            try:
                error = (resp.json() or {}).get("error") or {}
                if error.get("message"):
                    message = f"{error.get('code', '')}: {error['message']}".lstrip(": ")
            except ValueError:
                pass
            raise GraphAPIError(resp.status_code, message, resp.url)
