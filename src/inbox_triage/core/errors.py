"""Custom exception types for the inbox triage engine.

Classification code never raises these: malformed records degrade to safe
defaults. They are raised by the configuration layer and the remote
collaborators, and caught at the orchestration boundary (sync orchestrator,
bulk batcher, workflow actions) where they become a single user notice.
"""


class InboxTriageError(Exception):
    """Base exception for all inbox triage errors."""

    pass


class ConfigValidationError(InboxTriageError):
    """Raised when config.yaml fails Pydantic validation."""

    pass


class ConfigLoadError(InboxTriageError):
    """Raised when config.yaml cannot be loaded (file not found, YAML parse error)."""

    pass


class RemoteError(InboxTriageError):
    """Raised when the remote record store or function endpoint returns an error.

    Attributes:
        status_code: HTTP status code from the remote (None for transport errors)
        error_code: Error code from the response body (if available)
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code

    @property
    def is_permission_denied(self) -> bool:
        return self.status_code == 403


class RateLimitExceeded(RemoteError):
    """Raised when the remote keeps answering 429 or the local bucket would wait too long."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429, error_code="RateLimited")
        self.retry_after = retry_after


class ThreadFetchError(InboxTriageError):
    """Raised when the thread cache cannot load a page of threads.

    Attributes:
        permission_denied: True when the remote rejected the actor (HTTP 403)
    """

    def __init__(self, message: str, permission_denied: bool = False):
        super().__init__(message)
        self.permission_denied = permission_denied


class BulkOperationError(InboxTriageError):
    """Raised when any request inside a bulk chunk fails.

    Requests already issued in the failing chunk are not rolled back.

    Attributes:
        chunk_index: Zero-based index of the chunk that failed
        failed_ids: Thread IDs whose update raised in that chunk
    """

    def __init__(self, message: str, chunk_index: int, failed_ids: list[str]):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.failed_ids = failed_ids
