"""Tests for persisted-payload migration.

All pure: payloads in, records out, no storage involved.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from message_simulator.conventions import CURRENT_SCHEMA_VERSION
from message_simulator.migrator import (
    BareMessages,
    WrappedMessages,
    decode_import,
    is_valid_message,
    migrate_payload,
    repair_messages,
    repair_recipient,
)
from message_simulator.models import Recipient


def _thread(**overrides):
    data = {
        "id": "t1",
        "messages": [
            {"id": "m1", "sender": "self", "message": "hi", "timestamp": "2026-01-01T00:00:00.000Z"}
        ],
        "recipient": {"name": "Bob", "location": "SF"},
        "createdAt": "2026-01-01T00:00:00.000Z",
        "updatedAt": "2026-01-01T00:00:00.000Z",
    }
    data.update(overrides)
    return data


class TestIsValidMessage:
    @pytest.mark.parametrize(
        "item",
        [
            {"sender": "self", "message": "ok"},
            {"sender": "other", "message": "", "timestamp": 1700000000000},
            {"sender": "self", "message": "x", "id": ""},
            {"sender": "self", "message": "x", "images": []},
        ],
    )
    def test_accepts(self, item):
        assert is_valid_message(item)

    @pytest.mark.parametrize(
        "item",
        [
            None,
            "text",
            {"sender": "nope", "message": "bad"},
            {"sender": "self"},
            {"sender": "self", "message": 42},
            {"sender": "self", "message": "x", "timestamp": True},
            {"sender": "self", "message": "x", "timestamp": {}},
            {"sender": "self", "message": "x", "id": 7},
            {"sender": "self", "message": "x", "images": "img"},
        ],
    )
    def test_rejects(self, item):
        assert not is_valid_message(item)


class TestRepairMessages:
    def test_numeric_timestamp_becomes_iso(self):
        messages, changed, _ = repair_messages(
            [{"id": "a", "sender": "self", "message": "x", "timestamp": 0}]
        )
        assert messages[0].timestamp == "1970-01-01T00:00:00.000Z"
        assert changed

    def test_missing_ids_generated(self):
        messages, changed, _ = repair_messages(
            [{"sender": "self", "message": "a"}, {"id": "", "sender": "self", "message": "b"}]
        )
        assert all(m.id for m in messages)
        assert messages[0].id != messages[1].id
        assert changed

    def test_missing_timestamps_preserve_order(self):
        messages, _, _ = repair_messages(
            [{"sender": "self", "message": str(i)} for i in range(5)]
        )
        stamps = [m.timestamp for m in messages]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == 5

    def test_invalid_dropped_and_counted(self):
        messages, changed, dropped = repair_messages(
            [{"sender": "self", "message": "ok"}, {"sender": "bot", "message": "no"}]
        )
        assert [m.message for m in messages] == ["ok"]
        assert dropped == 1
        assert changed

    def test_clean_input_reports_unchanged(self):
        _, changed, dropped = repair_messages(
            [{"id": "a", "sender": "other", "message": "x", "timestamp": "2026-01-01T00:00:00.000Z"}]
        )
        assert not changed
        assert dropped == 0

    def test_images_repaired(self):
        messages, changed, _ = repair_messages(
            [
                {
                    "id": "a",
                    "sender": "self",
                    "message": "",
                    "timestamp": "t",
                    "images": [{"src": "data:x"}, "junk", {"id": "i2", "src": "data:y"}],
                }
            ]
        )
        images = messages[0].images
        assert [i.src for i in images] == ["data:x", "data:y"]
        assert images[0].id
        assert images[1].id == "i2"
        assert changed

    @pytest.mark.parametrize("raw", [1e20, -1e20, float("nan"), float("inf")])
    def test_out_of_range_epoch_synthesized(self, raw):
        messages, changed, dropped = repair_messages(
            [{"id": "a", "sender": "self", "message": "x", "timestamp": raw}]
        )
        assert dropped == 0
        assert changed
        assert messages[0].timestamp.endswith("Z")
        datetime.fromisoformat(messages[0].timestamp)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("2024-01-01T00:00:00Z", "2024-01-01T00:00:00.000Z"),
            ("2024-01-01T02:00:00+02:00", "2024-01-01T00:00:00.000Z"),
            ("2024-01-01T00:00:00", "2024-01-01T00:00:00.000Z"),
            ("2024-01-01T00:00:00.5Z", "2024-01-01T00:00:00.500Z"),
        ],
    )
    def test_iso_strings_normalized(self, raw, expected):
        messages, changed, _ = repair_messages(
            [{"id": "a", "sender": "self", "message": "x", "timestamp": raw}]
        )
        assert messages[0].timestamp == expected
        assert changed

    def test_unparsable_string_synthesized(self):
        messages, changed, _ = repair_messages(
            [{"id": "a", "sender": "self", "message": "x", "timestamp": "yesterday"}]
        )
        assert messages[0].timestamp != "yesterday"
        datetime.fromisoformat(messages[0].timestamp)
        assert changed


class TestRepairRecipient:
    def test_missing_block_gets_defaults(self):
        recipient, changed = repair_recipient(None)
        assert recipient == Recipient()
        assert changed

    def test_partial_block_filled(self):
        recipient, changed = repair_recipient({"name": "Ann"})
        assert recipient.name == "Ann"
        assert recipient.location == Recipient().location
        assert changed

    def test_strip(self):
        recipient, _ = repair_recipient({"name": " Bob ", "location": " SF "}, strip=True)
        assert recipient == Recipient(name="Bob", location="SF")


class TestMigratePayload:
    def test_current_version_passes_through(self):
        result = migrate_payload({"version": CURRENT_SCHEMA_VERSION, "threads": [_thread()]})
        assert result.recognized
        assert not result.migrated
        assert [t.id for t in result.threads] == ["t1"]
        assert result.threads[0].recipient.name == "Bob"

    def test_invalid_threads_filtered(self):
        result = migrate_payload(
            {
                "version": CURRENT_SCHEMA_VERSION,
                "threads": [_thread(), "junk", {"id": "t2", "messages": "nope"}, _thread(id=5)],
            }
        )
        assert [t.id for t in result.threads] == ["t1"]
        assert result.dropped_threads == 3
        assert result.migrated

    def test_duplicate_thread_ids_dropped(self):
        result = migrate_payload(
            {"version": CURRENT_SCHEMA_VERSION, "threads": [_thread(), _thread()]}
        )
        assert len(result.threads) == 1
        assert result.migrated

    def test_thread_missing_recipient_and_timestamps_repaired(self):
        raw = _thread()
        del raw["recipient"]
        del raw["createdAt"]
        del raw["updatedAt"]
        result = migrate_payload({"version": CURRENT_SCHEMA_VERSION, "threads": [raw]})
        thread = result.threads[0]
        assert thread.recipient == Recipient()
        assert thread.created_at and thread.updated_at
        assert result.migrated

    def test_thread_missing_id_generated(self):
        result = migrate_payload(
            {"version": CURRENT_SCHEMA_VERSION, "threads": [_thread(id="")]}
        )
        assert result.threads[0].id
        assert result.migrated

    def test_v1_single_thread(self):
        result = migrate_payload(
            {
                "version": 1,
                "messages": [
                    {"id": "", "sender": "self", "message": "a", "timestamp": 1700000000000},
                    {"sender": "other", "message": "b", "timestamp": 1700000000001},
                ],
            }
        )
        assert result.migrated
        assert result.source_version == 1
        [thread] = result.threads
        assert [m.message for m in thread.messages] == ["a", "b"]
        assert all(m.id for m in thread.messages)
        assert all(isinstance(m.timestamp, str) for m in thread.messages)
        assert thread.recipient == Recipient()

    def test_v1_with_recipient_keeps_it(self):
        result = migrate_payload(
            {
                "version": 1,
                "messages": [{"sender": "self", "message": "a"}],
                "recipient": {"name": "Zed", "location": "Moon"},
            }
        )
        assert result.threads[0].recipient == Recipient(name="Zed", location="Moon")

    def test_v2_single_thread(self):
        result = migrate_payload(
            {
                "version": 2,
                "messages": [{"id": "m", "sender": "other", "message": "x", "timestamp": "t"}],
                "recipient": {"name": "A", "location": "B"},
            }
        )
        assert result.migrated
        assert result.threads[0].messages[0].id == "m"

    def test_bare_array(self):
        result = migrate_payload([{"sender": "self", "message": "legacy"}, {"bad": True}])
        assert result.source_version == 0
        assert [m.message for m in result.threads[0].messages] == ["legacy"]
        assert result.dropped_messages == 1

    def test_thread_timestamps_normalized_for_ordering(self):
        result = migrate_payload(
            {
                "version": CURRENT_SCHEMA_VERSION,
                "threads": [
                    _thread(id="old", updatedAt="2024-01-01T00:00:00Z"),
                    _thread(id="new", updatedAt="2024-01-01T00:00:00.500Z"),
                    _thread(id="offset", updatedAt="2024-01-01T01:00:00+02:00"),
                ],
            }
        )
        assert result.migrated
        stamps = {t.id: t.updated_at for t in result.threads}
        assert stamps == {
            "old": "2024-01-01T00:00:00.000Z",
            "new": "2024-01-01T00:00:00.500Z",
            "offset": "2023-12-31T23:00:00.000Z",
        }

    def test_v1_out_of_range_timestamp_kept(self):
        result = migrate_payload(
            {"version": 1, "messages": [{"sender": "self", "message": "x", "timestamp": 1e20}]}
        )
        [thread] = result.threads
        assert [m.message for m in thread.messages] == ["x"]
        assert result.migrated

    @pytest.mark.parametrize(
        "payload",
        [None, 42, "x", {}, {"version": 99, "threads": []}, {"version": CURRENT_SCHEMA_VERSION}],
    )
    def test_unrecognized(self, payload):
        result = migrate_payload(payload)
        assert not result.recognized
        assert result.threads is None


class TestDecodeImport:
    def test_bare_list(self):
        assert decode_import([{"a": 1}]) == BareMessages([{"a": 1}])

    def test_wrapped(self):
        decoded = decode_import({"messages": [], "recipient": {"name": "x"}})
        assert decoded == WrappedMessages([], {"name": "x"})

    @pytest.mark.parametrize("parsed", [None, 3, "s", {"messages": "no"}, {}])
    def test_rejects(self, parsed):
        assert decode_import(parsed) is None
