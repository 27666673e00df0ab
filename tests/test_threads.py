"""Tests for tolerant thread record parsing."""

from datetime import UTC, datetime

from inbox_triage.engine.threads import Thread, epoch_ms, normalize_email, parse_timestamp

# ---------------------------------------------------------------------------
# Timestamp parsing
# ---------------------------------------------------------------------------


class TestParseTimestamp:
    def test_iso_with_z(self) -> None:
        assert parse_timestamp("2026-03-02T09:00:00Z") == datetime(2026, 3, 2, 9, tzinfo=UTC)

    def test_naive_is_utc(self) -> None:
        assert parse_timestamp("2026-03-02T09:00:00") == datetime(2026, 3, 2, 9, tzinfo=UTC)

    def test_epoch_millis(self) -> None:
        expected = datetime(2026, 3, 2, 9, tzinfo=UTC)
        assert parse_timestamp(int(expected.timestamp() * 1000)) == expected

    def test_garbage(self) -> None:
        assert parse_timestamp("not a date") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp(True) is None
        assert parse_timestamp({"a": 1}) is None

    def test_epoch_ms_of_missing_is_zero(self) -> None:
        assert epoch_ms(None) == 0


def test_normalize_email() -> None:
    assert normalize_email("  Me@Acme.TEST ") == "me@acme.test"
    assert normalize_email(None) == ""
    assert normalize_email(7) == ""


# ---------------------------------------------------------------------------
# Thread.from_record
# ---------------------------------------------------------------------------


class TestThreadFromRecord:
    def test_full_record(self) -> None:
        thread = Thread.from_record(
            {
                "id": "abc",
                "subject": "Tax Invoice #55",
                "snippet": "please pay by Friday",
                "last_message_date": "2026-03-02T09:00:00Z",
                "from_address": "billing@supplier.test",
                "to_addresses": ["me@acme.test"],
                "userStatus": "closed",
                "next_action_status": "waiting",
                "assigned_to": "me@acme.test",
                "pinnedAt": "2026-03-01T00:00:00Z",
                "isUnread": True,
                "project_id": 42,
                "lastMessageDirection": "received",
            }
        )
        assert thread.id == "abc"
        assert thread.is_closed
        assert thread.next_action_status == "waiting"
        assert thread.is_pinned
        assert thread.is_unread
        assert thread.project_id == "42"
        assert thread.is_linked
        assert thread.last_message_direction == "received"

    def test_malformed_fields_fall_back(self) -> None:
        thread = Thread.from_record(
            {
                "id": "t1",
                "subject": None,
                "last_message_date": "yesterday",
                "to_addresses": "solo@example.com",
                "next_action_status": "snoozed",
                "isUnread": "yes",
                "lastMessageDirection": "sideways",
                "project_id": "",
            }
        )
        assert thread.subject == ""
        assert thread.last_message_date is None
        assert thread.last_message_ms == 0
        assert thread.to_addresses == ("solo@example.com",)
        assert thread.next_action_status is None
        assert thread.is_unread is False
        assert thread.last_message_direction is None
        assert not thread.is_linked

    def test_non_list_recipients(self) -> None:
        thread = Thread.from_record({"id": "t1", "to_addresses": {"a": 1}})
        assert thread.to_addresses == ()

    def test_snippet_key_preference(self) -> None:
        thread = Thread.from_record(
            {"id": "t1", "preview": "from preview", "last_message_snippet": "from last"}
        )
        assert thread.snippet == "from preview"

    def test_contract_link_counts_as_linked(self) -> None:
        assert Thread.from_record({"id": "t1", "contract_id": "c9"}).is_linked
