"""Thread records and tolerant field parsing.

A Thread is built from a raw record returned by the remote thread source.
Parsing never raises: unparsable timestamps become None (epoch zero when
compared), unknown status strings become None, and non-list address fields
become empty tuples. A single malformed record must not break the list.

Threads are frozen. Local code never patches them; writers go through the
mutation sink and then invalidate the cache.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal, get_args

NextActionStatus = Literal["needs_action", "waiting", "fyi"]
WorkflowStatus = Literal["needs_action", "waiting", "fyi", "done"]
Direction = Literal["sent", "received", "unknown"]

_NEXT_ACTION_VALUES: frozenset[str] = frozenset(get_args(NextActionStatus))
_DIRECTION_VALUES: frozenset[str] = frozenset(get_args(Direction))

# Record keys that may carry the preview text, in order of preference
SNIPPET_KEYS = ("snippet", "preview", "body_preview", "last_message_snippet")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string, epoch milliseconds or datetime into an aware datetime.

    Returns None for missing or malformed input. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, int | float):
            parsed = datetime.fromtimestamp(value / 1000, tz=UTC)
        elif isinstance(value, str):
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def epoch_ms(value: datetime | None) -> int:
    """Milliseconds since the epoch, or 0 when the timestamp is missing."""
    if value is None:
        return 0
    return int(value.timestamp() * 1000)


def normalize_email(address: Any) -> str:
    """Lowercase and trim an address; non-strings normalize to ''."""
    if not isinstance(address, str):
        return ""
    return address.strip().lower()


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _optional_text(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _is_one_of(value: Any, allowed: frozenset[str]) -> bool:
    return isinstance(value, str) and value in allowed


def _optional_id(value: Any) -> str | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return _optional_text(value)


def _address_list(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,) if value else ()
    if not isinstance(value, list | tuple):
        return ()
    return tuple(a for a in value if isinstance(a, str) and a)


@dataclass(frozen=True, slots=True)
class Thread:
    """One conversation thread as seen by the triage engine."""

    id: str
    subject: str = ""
    snippet: str = ""
    last_message_date: datetime | None = None
    last_internal_message_at: datetime | None = None
    last_external_message_at: datetime | None = None
    from_address: str = ""
    to_addresses: tuple[str, ...] = ()
    user_status: str | None = None
    next_action_status: NextActionStatus | None = None
    assigned_to: str | None = None
    assigned_to_name: str | None = None
    pinned_at: datetime | None = None
    is_unread: bool = False
    unread_updated_at: datetime | None = None
    project_id: str | None = None
    contract_id: str | None = None
    is_deleted: bool = False
    customer_name: str = ""
    last_message_direction: Direction | None = None

    @property
    def is_closed(self) -> bool:
        return self.user_status == "closed"

    @property
    def is_linked(self) -> bool:
        return bool(self.project_id or self.contract_id)

    @property
    def is_pinned(self) -> bool:
        return self.pinned_at is not None

    @property
    def last_message_ms(self) -> int:
        return epoch_ms(self.last_message_date)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Thread:
        """Build a Thread from a raw remote record.

        Args:
            record: Record as returned by the thread source

        Returns:
            Thread with every malformed field replaced by its default
        """
        snippet = ""
        for key in SNIPPET_KEYS:
            candidate = record.get(key)
            if isinstance(candidate, str) and candidate:
                snippet = candidate
                break

        next_action = record.get("next_action_status")
        if not _is_one_of(next_action, _NEXT_ACTION_VALUES):
            next_action = None
        direction = record.get("lastMessageDirection")

        return cls(
            id=_optional_id(record.get("id")) or "",
            subject=_text(record.get("subject")),
            snippet=snippet,
            last_message_date=parse_timestamp(record.get("last_message_date")),
            last_internal_message_at=parse_timestamp(record.get("lastInternalMessageAt")),
            last_external_message_at=parse_timestamp(record.get("lastExternalMessageAt")),
            from_address=_text(record.get("from_address")),
            to_addresses=_address_list(record.get("to_addresses")),
            user_status=_optional_text(record.get("userStatus")),
            next_action_status=next_action,
            assigned_to=_optional_text(record.get("assigned_to")),
            assigned_to_name=_optional_text(record.get("assigned_to_name")),
            pinned_at=parse_timestamp(record.get("pinnedAt")),
            is_unread=record.get("isUnread") is True,
            unread_updated_at=parse_timestamp(record.get("unreadUpdatedAt")),
            project_id=_optional_id(record.get("project_id")),
            contract_id=_optional_id(record.get("contract_id")),
            is_deleted=record.get("is_deleted") is True,
            customer_name=_text(record.get("customer_name")),
            last_message_direction=direction if _is_one_of(direction, _DIRECTION_VALUES) else None,
        )
