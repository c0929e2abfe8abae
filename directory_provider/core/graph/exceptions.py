"""Directory client exceptions for error handling."""


class GraphError(Exception):
    """Base exception for all directory service operations."""
    pass


class GraphAPIError(GraphError):
    """HTTP error from the directory service API.

    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """

    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")

    @property
    def not_found(self) -> bool:
        """True when the service answered 404 Not Found."""
        return self.status_code == 404


class GraphAuthError(GraphError):
    """Token acquisition failed (bad credentials or unreachable authority)."""
    pass


class GraphTimeoutError(GraphError):
    """The operation deadline expired before the service answered."""
    pass
