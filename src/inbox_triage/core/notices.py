"""User-visible notices.

Every user-facing outcome of a sync, bulk action or workflow action is one
short Notice. No structured error codes cross this boundary.

Usage:
    from inbox_triage.core.notices import NoticeBuffer

    notices = NoticeBuffer()
    orchestrator = SyncOrchestrator(remote, cache, notices, config.sync)
    ...
    for notice in notices.drain():
        print(notice.level, notice.message)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol

from inbox_triage.core.logging import get_logger

logger = get_logger(__name__)

NoticeLevel = Literal["info", "success", "error"]


@dataclass(frozen=True, slots=True)
class Notice:
    """A single transient message for the user."""

    level: NoticeLevel
    message: str


class Notifier(Protocol):
    """Anything that can show a notice to the user."""

    def notify(self, notice: Notice) -> None: ...


def pluralize(count: int, noun: str = "thread") -> str:
    """Format a count with its noun, e.g. '1 thread', '25 threads'."""
    return f"{count} {noun}{'' if count == 1 else 's'}"


class LoggingNotifier:
    """Notifier that writes notices to the structured log."""

    def notify(self, notice: Notice) -> None:
        if notice.level == "error":
            logger.warning("user_notice", level=notice.level, message=notice.message)
        else:
            logger.info("user_notice", level=notice.level, message=notice.message)


class NoticeBuffer:
    """Notifier that collects notices in memory until drained."""

    def __init__(self) -> None:
        self._notices: list[Notice] = []

    def notify(self, notice: Notice) -> None:
        self._notices.append(notice)

    @property
    def notices(self) -> list[Notice]:
        return list(self._notices)

    def messages(self, level: NoticeLevel | None = None) -> list[str]:
        return [n.message for n in self._notices if level is None or n.level == level]

    def drain(self) -> list[Notice]:
        """Return all collected notices and clear the buffer."""
        drained, self._notices = self._notices, []
        return drained
