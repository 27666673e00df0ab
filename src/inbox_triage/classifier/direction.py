"""Direction resolver: who sent the most recent message in a thread.

Timestamp equality is authoritative. The thread tracks when the last
internal and last external messages arrived; whichever equals the last
message date names the side that wrote it. Address matching against the
organization address set is a weaker fallback for threads whose
direction timestamps are missing.

Usage:
    from inbox_triage.classifier.direction import OrgAddressBook, resolve_direction

    book = OrgAddressBook()
    org = book.addresses(actor_email="me@acme.test", team=team_members)
    direction = resolve_direction(thread, org)  # "sent" | "received" | "unknown"
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from inbox_triage.core.logging import get_logger
from inbox_triage.engine.threads import Direction, Thread, epoch_ms, normalize_email

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class TeamMember:
    """A member of the operating organization and the addresses they write from."""

    email: str
    display_name: str | None = None
    aliases: tuple[str, ...] = field(default_factory=tuple)


def build_org_addresses(
    actor_email: str | None,
    team: Iterable[TeamMember],
) -> frozenset[str]:
    """Collect the normalized addresses that belong to the organization.

    Args:
        actor_email: Email of the current user (may be None before login)
        team: Team members with their aliases

    Returns:
        Frozen set of lowercase, trimmed addresses (empty strings dropped)
    """
    addresses: set[str] = set()
    if actor_email:
        addresses.add(normalize_email(actor_email))
    for member in team:
        addresses.add(normalize_email(member.email))
        addresses.update(normalize_email(a) for a in member.aliases)
    addresses.discard("")
    return frozenset(addresses)


class OrgAddressBook:
    """Memoized organization address set.

    The set is rebuilt only when the actor email or the team list changes;
    repeated calls with equal inputs return the cached frozenset.
    """

    def __init__(self) -> None:
        self._key: tuple[str, tuple[TeamMember, ...]] | None = None
        self._addresses: frozenset[str] = frozenset()

    def addresses(
        self,
        actor_email: str | None,
        team: Sequence[TeamMember],
    ) -> frozenset[str]:
        key = (normalize_email(actor_email), tuple(team))
        if key != self._key:
            self._addresses = build_org_addresses(actor_email, team)
            self._key = key
            logger.debug("org_addresses_rebuilt", count=len(self._addresses))
        return self._addresses


def resolve_direction(thread: Thread, org_addresses: frozenset[str]) -> Direction:
    """Determine whether the last message was sent by us or received.

    Rules, first match wins:
    1. last internal message time == last message time -> "sent"
    2. last external message time == last message time -> "received"
    3. sender address in the organization set -> "sent"
    4. any recipient address in the organization set -> "received"
    5. previously stored direction label, else "unknown"

    Never raises; missing timestamps compare as zero and never match.

    Args:
        thread: Thread to inspect
        org_addresses: Normalized organization addresses

    Returns:
        "sent", "received" or "unknown"
    """
    last_ms = epoch_ms(thread.last_message_date)
    internal_ms = epoch_ms(thread.last_internal_message_at)
    external_ms = epoch_ms(thread.last_external_message_at)

    if last_ms and internal_ms and internal_ms == last_ms:
        return "sent"
    if last_ms and external_ms and external_ms == last_ms:
        return "received"

    sender = normalize_email(thread.from_address)
    if sender and sender in org_addresses:
        return "sent"

    if any(normalize_email(a) in org_addresses for a in thread.to_addresses if a):
        return "received"

    return thread.last_message_direction or "unknown"
