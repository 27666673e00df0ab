"""Tests for the bulk operation batcher and the selection set."""

from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from inbox_triage.config_schema import BulkConfig
from inbox_triage.core.notices import Notice, NoticeBuffer
from inbox_triage.engine.bulk import BulkBatcher, SelectionSet
from inbox_triage.engine.cache import FETCH_FAILED_MESSAGE, ThreadCache
from inbox_triage.engine.workflow import Actor

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=UTC)


class RecordingSink:
    """Mutation sink that logs every call and pause in one timeline."""

    def __init__(self, fail_ids: set[str] | None = None) -> None:
        self.timeline: list[Any] = []
        self.patches: dict[str, dict[str, Any]] = {}
        self.fail_ids = fail_ids or set()

    async def update_thread(self, thread_id: str, patch: dict[str, Any]) -> None:
        self.timeline.append(thread_id)
        self.patches[thread_id] = patch
        if thread_id in self.fail_ids:
            raise RuntimeError(f"rejected {thread_id}")

    async def create_record(self, entity: str, fields: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def sleep(self, seconds: float) -> None:
        self.timeline.append(("pause", seconds))

    def chunk_sizes(self) -> list[int]:
        sizes = [0]
        for entry in self.timeline:
            if isinstance(entry, tuple):
                sizes.append(0)
            else:
                sizes[-1] += 1
        return sizes

    @property
    def update_count(self) -> int:
        return sum(1 for entry in self.timeline if not isinstance(entry, tuple))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cache() -> MagicMock:
    mock = MagicMock()
    mock.invalidate = AsyncMock(return_value=[])
    return mock


def _batcher(
    sink: RecordingSink, cache: MagicMock | ThreadCache, notices: NoticeBuffer, actor: Actor
) -> BulkBatcher:
    return BulkBatcher(
        sink,
        cache,
        notices,
        actor,
        config=BulkConfig(chunk_size=10, pause_seconds=0.1),
        sleep=sink.sleep,
        now=lambda: NOW,
    )


def _selection(count: int) -> SelectionSet:
    selection = SelectionSet()
    selection.enter()
    selection.select_all(f"t{i}" for i in range(count))
    return selection


# ---------------------------------------------------------------------------
# BulkBatcher
# ---------------------------------------------------------------------------


class TestBulkBatcher:
    async def test_chunks_and_pauses(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        selection = _selection(25)

        result = await _batcher(sink, cache, notices, actor).apply(selection, "mark_read")

        assert sink.chunk_sizes() == [10, 10, 5]
        assert [e for e in sink.timeline if isinstance(e, tuple)] == [
            ("pause", 0.1),
            ("pause", 0.1),
        ]
        assert result.succeeded
        assert result.chunks_issued == 3
        assert len(selection) == 0
        cache.invalidate.assert_awaited_once()
        assert notices.notices == [Notice("success", "Marked 25 threads as read")]
        assert sink.patches["t0"]["lastReadAt"] == "2026-03-02T09:30:00Z"

    async def test_failure_aborts_remaining_chunks(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink(fail_ids={"t13"})
        selection = _selection(25)

        result = await _batcher(sink, cache, notices, actor).apply(selection, "close")

        # The failing chunk settles fully, the third chunk is never issued
        assert sink.update_count == 20
        assert not result.succeeded
        assert result.failed_chunk == 1
        assert result.failed_ids == ("t13",)
        assert result.chunks_issued == 2
        assert len(selection) == 25
        cache.invalidate.assert_not_awaited()
        assert notices.notices == [Notice("error", "Failed to close threads")]

    async def test_refresh_error_after_success(
        self, notices: NoticeBuffer, actor: Actor, clock
    ) -> None:
        source = MagicMock()
        source.fetch_threads = AsyncMock(side_effect=ValueError("bad page"))
        thread_cache = ThreadCache(source, notices, clock=clock)
        sink = RecordingSink()
        selection = _selection(2)

        result = await _batcher(sink, thread_cache, notices, actor).apply(selection, "mark_read")

        assert result.succeeded
        assert len(selection) == 0
        assert notices.notices == [
            Notice("error", FETCH_FAILED_MESSAGE),
            Notice("success", "Marked 2 threads as read"),
        ]

    async def test_invalidate_raising_is_contained(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        cache.invalidate.side_effect = RuntimeError("cache exploded")
        selection = _selection(3)

        result = await _batcher(RecordingSink(), cache, notices, actor).apply(selection, "close")

        assert result.succeeded
        assert len(selection) == 0
        assert notices.notices == [Notice("success", "Closed 3 threads")]

    async def test_single_thread_message(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        await _batcher(sink, cache, notices, actor).apply(_selection(1), "close")
        assert sink.patches["t0"] == {"userStatus": "closed"}
        assert notices.messages() == ["Closed 1 thread"]

    async def test_assign_to_me_payload(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        await _batcher(sink, cache, notices, actor).apply(_selection(2), "assign_to_me")
        assert sink.patches["t1"] == {
            "assigned_to": "me@acme.test",
            "assigned_to_name": "Me",
            "assigned_by": "me@acme.test",
            "assigned_by_name": "Me",
            "assigned_at": "2026-03-02T09:30:00Z",
        }
        assert notices.messages() == ["Assigned 2 threads to you"]

    async def test_link_project(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        await _batcher(sink, cache, notices, actor).apply(_selection(3), "link_project", "p7")
        assert sink.patches["t2"] == {"project_id": "p7"}
        assert notices.messages() == ["Linked 3 threads"]

    async def test_link_without_target(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        with pytest.raises(ValueError):
            await _batcher(sink, cache, notices, actor).apply(_selection(2), "link_contract")
        assert sink.timeline == []

    async def test_empty_selection(
        self, cache: MagicMock, notices: NoticeBuffer, actor: Actor
    ) -> None:
        sink = RecordingSink()
        result = await _batcher(sink, cache, notices, actor).apply(SelectionSet(), "close")
        assert result.succeeded
        assert result.chunks_issued == 0
        assert sink.timeline == []
        assert notices.notices == []

    def test_defaults_without_config(self, cache: MagicMock, actor: Actor) -> None:
        batcher = BulkBatcher(RecordingSink(), cache, NoticeBuffer(), actor)
        assert batcher.chunk_size == 10
        assert batcher.pause_seconds == 0.1

    def test_unknown_action(self, cache: MagicMock, actor: Actor) -> None:
        batcher = BulkBatcher(RecordingSink(), cache, NoticeBuffer(), actor)
        with pytest.raises(ValueError):
            batcher.build_patch("archive")  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# SelectionSet
# ---------------------------------------------------------------------------


class TestSelectionSet:
    def test_mode_changes_clear_selection(self) -> None:
        selection = SelectionSet()
        selection.enter()
        selection.add("t1")
        selection.exit()
        assert not selection.active
        assert len(selection) == 0

        selection.toggle_mode()
        assert selection.active
        selection.add("t2")
        selection.toggle_mode()
        assert "t2" not in selection

    def test_set_and_order(self) -> None:
        selection = SelectionSet()
        selection.set("b", True)
        selection.set("a", True)
        selection.set("b", True)
        assert selection.ids() == ["b", "a"]
        selection.set("b", False)
        assert list(selection) == ["a"]

    def test_select_all_replaces(self) -> None:
        selection = SelectionSet()
        selection.add("old")
        selection.select_all(["x", "y"])
        assert selection.ids() == ["x", "y"]
