"""Async HTTP client for the remote record store and function endpoint.

Implements the three collaborator contracts (ThreadSource, MutationSink,
RemoteSync) over two URL families:

    POST  {base_url}/functions/{name}             remote functions (JSON body)
    PATCH {base_url}/entities/{Entity}/{id}       partial record update
    POST  {base_url}/entities/{Entity}            record creation

Every request first takes a token from a local bucket (proactive pacing),
then runs under tenacity: 429, 5xx and transport errors are retried with
exponential backoff and jitter; everything else fails immediately. Failures
surface as RemoteError with the HTTP status attached, so callers can tell a
permission rejection (403) from a backend failure.

Usage:
    from inbox_triage.remote.client import RemoteClient

    async with RemoteClient.from_config(config.remote) as client:
        page = await client.fetch_threads(limit=100)
        await client.update_thread(thread_id, {"userStatus": "closed"})
        response = await client.run_sync()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from inbox_triage.core.errors import RateLimitExceeded, RemoteError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.policies import TokenBucket
from inbox_triage.remote.protocol import SyncResponse, ThreadPage

if TYPE_CHECKING:
    from tenacity.wait import wait_base

    from inbox_triage.config_schema import RemoteConfig

logger = get_logger(__name__)

THREADS_FUNCTION = "getMyEmailThreads"
THREADS_PAGED_FUNCTION = "getMyEmailThreadsPaged"
SYNC_FUNCTION = "gmailSyncOrchestrated"
THREAD_ENTITY = "EmailThread"

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUESTS_PER_SECOND = 10.0

API_KEY_ENV = "INBOX_TRIAGE_API_KEY"


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, RemoteError) and error.status_code is not None:
        return error.status_code == 429 or error.status_code >= 500
    return False


def _unwrap(payload: Any) -> dict[str, Any]:
    """Return the body's "data" mapping when present, else the body itself."""
    if not isinstance(payload, dict):
        return {}
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def _error_details(response: httpx.Response) -> tuple[str, str | None]:
    """Extract (message, code) from an error response body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or f"HTTP {response.status_code}", None)

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return (str(error.get("message") or response.text), error.get("code"))
        if isinstance(error, str):
            return (error, body.get("code"))
        if isinstance(body.get("message"), str):
            return (body["message"], body.get("code"))
    return (response.text or f"HTTP {response.status_code}", None)


class RemoteClient:
    """httpx-based implementation of ThreadSource, MutationSink and RemoteSync.

    Attributes:
        base_url: Base URL without trailing slash
        max_retries: Attempts per request (including the first)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the remote API
            api_key: Optional bearer token
            timeout: Per-request timeout in seconds
            max_retries: Attempts per request for retryable failures
            requests_per_second: Token bucket refill rate (burst equals one second's worth)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            retry_wait: Custom tenacity wait strategy (tests use wait_none())
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._bucket = TokenBucket(
            rate=requests_per_second,
            capacity=max(1, int(requests_per_second)),
        )
        self._retry_wait = retry_wait or wait_exponential_jitter(initial=1, max=10)

    @classmethod
    def from_config(cls, config: RemoteConfig, api_key: str | None = None) -> RemoteClient:
        """Build a client from the remote config section.

        An explicit api_key (e.g. from INBOX_TRIAGE_API_KEY) wins over the file.
        """
        return cls(
            base_url=config.base_url,
            api_key=api_key or config.api_key,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
            requests_per_second=config.requests_per_second,
        )

    async def __aenter__(self) -> RemoteClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Low-level requests
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request with pacing and retries, returning the decoded JSON body.

        Raises:
            RemoteError: Non-retryable HTTP error, or retries exhausted
            RateLimitExceeded: Still rate limited after all retries
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "remote_request_retry",
                method=method,
                path=path,
                attempt=state.attempt_number,
                error=str(state.outcome.exception()) if state.outcome else None,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(method, path, json)
        except httpx.TransportError as e:
            logger.error("remote_transport_failed", method=method, path=path, error=str(e))
            raise RemoteError(f"{method} {path} failed: {e}") from e
        return None

    async def _send(self, method: str, path: str, json: dict[str, Any] | None) -> Any:
        await self._bucket.consume()
        response = await self._http.request(method, path, json=json)

        if response.is_success:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as e:
                raise RemoteError(
                    f"{method} {path} returned invalid JSON",
                    status_code=response.status_code,
                ) from e

        message, code = _error_details(response)
        logger.warning(
            "remote_error_response",
            method=method,
            path=path,
            status_code=response.status_code,
            error_code=code,
            error_message=message[:200],
        )
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitExceeded(
                f"Rate limit exceeded (429) for {path}: {message}",
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )
        raise RemoteError(
            f"{method} {path} failed ({response.status_code}): {message}",
            status_code=response.status_code,
            error_code=code,
        )

    async def invoke(self, function: str, payload: dict[str, Any] | None = None) -> Any:
        """Invoke a remote function."""
        return await self.request("POST", f"/functions/{function}", json=payload or {})

    # ------------------------------------------------------------------
    # ThreadSource
    # ------------------------------------------------------------------

    async def fetch_threads(self, limit: int, before: str | None = None) -> ThreadPage:
        if before is None:
            body = _unwrap(await self.invoke(THREADS_FUNCTION, {"limit": limit}))
        else:
            body = _unwrap(
                await self.invoke(THREADS_PAGED_FUNCTION, {"limit": limit, "beforeDate": before})
            )

        raw_threads = body.get("threads")
        if not isinstance(raw_threads, list):
            raw_threads = []
        threads = [t for t in raw_threads if isinstance(t, dict)]
        has_more = body.get("hasMore")
        next_before = body.get("nextBeforeDate")

        return ThreadPage(
            threads=threads,
            # The first-page function does not report hasMore: a full page implies more
            has_more=has_more if isinstance(has_more, bool) else len(threads) == limit,
            next_before=next_before if isinstance(next_before, str) and next_before else None,
        )

    # ------------------------------------------------------------------
    # MutationSink
    # ------------------------------------------------------------------

    async def update_thread(self, thread_id: str, patch: dict[str, Any]) -> None:
        await self.request("PATCH", f"/entities/{THREAD_ENTITY}/{thread_id}", json=patch)

    async def create_record(self, entity: str, fields: dict[str, Any]) -> dict[str, Any]:
        created = await self.request("POST", f"/entities/{entity}", json=fields)
        return created if isinstance(created, dict) else {}

    # ------------------------------------------------------------------
    # RemoteSync
    # ------------------------------------------------------------------

    async def run_sync(self) -> SyncResponse:
        return SyncResponse.from_payload(await self.invoke(SYNC_FUNCTION, {}))
