"""Remote collaborators: contracts and the HTTP client that implements them.

Usage:
    from inbox_triage.remote import RemoteClient, ThreadPage

    async with RemoteClient(base_url) as client:
        page: ThreadPage = await client.fetch_threads(limit=100)
"""

from inbox_triage.remote.client import RemoteClient
from inbox_triage.remote.protocol import (
    MutationSink,
    RemoteSync,
    SyncResponse,
    SyncSummary,
    ThreadPage,
    ThreadSource,
)

__all__ = [
    "RemoteClient",
    "MutationSink",
    "RemoteSync",
    "SyncResponse",
    "SyncSummary",
    "ThreadPage",
    "ThreadSource",
]
