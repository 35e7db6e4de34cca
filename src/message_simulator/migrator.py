"""Persisted-payload migration from every known schema to the thread model.

Schema history (see conventions.CURRENT_SCHEMA_VERSION):

    0  bare list of messages
    1  {"version": 1, "messages": [...]}
    2  {"version": 2, "messages": [...], "recipient": {...}}
    3  {"version": 3, "threads": [...]}

Everything here is pure: raw JSON goes in, records come out, nothing is
read from or written to storage. The repair pass is the same for every
version: numeric timestamps become ISO strings, missing ids are
generated, missing timestamps are synthesized one second apart so the
relative order of untimed legacy messages survives. Structurally invalid
records are dropped, never patched up with invented content.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from message_simulator.conventions import (
    CURRENT_SCHEMA_VERSION,
    SINGLE_THREAD_VERSIONS,
)
from message_simulator.models import (
    SENDERS,
    Message,
    MessageImage,
    Recipient,
    Thread,
    default_recipient,
    format_iso,
    generate_id,
    iso_from_epoch_ms,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass
class SingleThreadResult:
    """Messages and recipient of one conversation after repair."""

    messages: list[Message]
    recipient: Recipient
    migrated: bool
    dropped: int = 0


@dataclass
class MigrationResult:
    """Outcome of :func:`migrate_payload`.

    ``threads`` is ``None`` when the payload was not recognized at all;
    the repository then seeds defaults. ``migrated`` is true iff anything
    was added, changed or dropped, i.e. the stored form is stale.
    """

    threads: list[Thread] | None
    migrated: bool
    source_version: int | None = None
    dropped_threads: int = 0
    dropped_messages: int = 0

    @property
    def recognized(self) -> bool:
        return self.threads is not None


# --- Import payload decoding ---


@dataclass
class BareMessages:
    """Import input that is a plain list of messages."""

    items: list[Any]


@dataclass
class WrappedMessages:
    """Import input shaped ``{"messages": [...], "recipient": {...}?}``."""

    items: list[Any]
    recipient: Any = None


ImportPayload = BareMessages | WrappedMessages


def decode_import(parsed: Any) -> ImportPayload | None:
    """Classify parsed import JSON; ``None`` if it is neither accepted shape."""
    if isinstance(parsed, list):
        return BareMessages(parsed)
    if isinstance(parsed, dict) and isinstance(parsed.get("messages"), list):
        return WrappedMessages(parsed["messages"], parsed.get("recipient"))
    return None


# --- Validation ---


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_valid_message(item: Any) -> bool:
    """Structural check for a raw message object.

    ``message`` must be a string and ``sender`` one of self/other. When
    present, ``timestamp`` must be a string or number, ``id`` a string
    (empty is allowed and gets regenerated) and ``images`` a list.
    """
    if not isinstance(item, dict):
        return False
    if not isinstance(item.get("message"), str):
        return False
    if item.get("sender") not in SENDERS:
        return False
    if "timestamp" in item and item["timestamp"] is not None:
        ts = item["timestamp"]
        if not (isinstance(ts, str) or _is_number(ts)):
            return False
    if "id" in item and item["id"] is not None and not isinstance(item["id"], str):
        return False
    if "images" in item and item["images"] is not None:
        if not isinstance(item["images"], list):
            return False
    return True


# --- Repair ---


def _repair_timestamp(value: Any) -> tuple[str | None, bool]:
    """Canonical ISO form of a raw timestamp, or None when unusable.

    Strings are re-emitted in the millisecond ``Z`` shape so stored
    values sort chronologically; numbers are epoch milliseconds.
    """
    if isinstance(value, str) and value:
        try:
            moment = datetime.fromisoformat(value)
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=UTC)
            canonical = format_iso(moment)
        except (OverflowError, ValueError):
            logger.debug("Unparsable timestamp %r", value)
            return None, True
        return canonical, canonical != value
    if _is_number(value):
        try:
            return iso_from_epoch_ms(value), True
        except (OverflowError, OSError, ValueError):
            logger.debug("Out-of-range epoch timestamp %r", value)
            return None, True
    return None, True


def _repair_images(raw: Any) -> tuple[list[MessageImage] | None, bool]:
    if raw is None:
        return None, False
    images: list[MessageImage] = []
    changed = False
    for entry in raw:
        if not isinstance(entry, dict) or not isinstance(entry.get("src"), str):
            changed = True
            continue
        image_id = entry.get("id")
        if not isinstance(image_id, str) or not image_id:
            image_id = generate_id()
            changed = True
        images.append(MessageImage(id=image_id, src=entry["src"]))
    return images, changed


def repair_messages(items: list[Any]) -> tuple[list[Message], bool, int]:
    """Validate and repair raw messages.

    Returns ``(messages, changed, dropped)``. Synthesized timestamps are
    ``now + i`` seconds where ``i`` is the position among the kept
    messages.
    """
    messages: list[Message] = []
    changed = False
    dropped = 0
    now = datetime.now(UTC)
    for raw in items:
        if not is_valid_message(raw):
            dropped += 1
            changed = True
            continue
        position = len(messages)
        message_id = raw.get("id")
        if not message_id:
            message_id = generate_id()
            changed = True
        timestamp, ts_changed = _repair_timestamp(raw.get("timestamp"))
        if timestamp is None:
            timestamp = format_iso(now + timedelta(seconds=position))
        changed = changed or ts_changed
        images, images_changed = _repair_images(raw.get("images"))
        changed = changed or images_changed
        messages.append(
            Message(
                id=message_id,
                sender=raw["sender"],
                message=raw["message"],
                timestamp=timestamp,
                images=images,
            )
        )
    return messages, changed, dropped


def repair_recipient(raw: Any, *, strip: bool = False) -> tuple[Recipient, bool]:
    """Coerce a raw recipient block, filling missing fields from defaults."""
    fallback = default_recipient()
    if not isinstance(raw, dict):
        return fallback, True
    changed = False
    values: dict[str, str] = {}
    for key in ("name", "location"):
        value = raw.get(key)
        if isinstance(value, str):
            values[key] = value.strip() if strip else value
        else:
            values[key] = getattr(fallback, key)
            changed = True
    return Recipient(**values), changed


def migrate_single_thread(
    items: list[Any], recipient: Any = None, *, has_recipient: bool = True
) -> SingleThreadResult:
    """Repair one conversation from the pre-thread schemas.

    *has_recipient* is false for schemas that predate the recipient block;
    the default recipient is then added and the result marked migrated.
    """
    messages, changed, dropped = repair_messages(items)
    if has_recipient:
        repaired, recipient_changed = repair_recipient(recipient)
    else:
        repaired, recipient_changed = default_recipient(), True
    return SingleThreadResult(
        messages=messages,
        recipient=repaired,
        migrated=changed or recipient_changed,
        dropped=dropped,
    )


def _repair_thread(raw: Any) -> tuple[Thread | None, bool, int]:
    if not isinstance(raw, dict) or not isinstance(raw.get("messages"), list):
        return None, True, 0
    thread_id = raw.get("id")
    changed = False
    if thread_id is not None and not isinstance(thread_id, str):
        return None, True, 0
    if not thread_id:
        thread_id = generate_id()
        changed = True

    messages, messages_changed, dropped = repair_messages(raw["messages"])
    recipient, recipient_changed = repair_recipient(raw.get("recipient"))
    changed = changed or messages_changed or recipient_changed

    name = raw.get("name")
    if name is not None and not isinstance(name, str):
        name = None
        changed = True

    created_at, created_changed = _repair_timestamp(raw.get("createdAt"))
    updated_at, updated_changed = _repair_timestamp(raw.get("updatedAt"))
    now = utc_now_iso()
    created_at = created_at or now
    updated_at = updated_at or created_at
    changed = changed or created_changed or updated_changed

    thread = Thread(
        id=thread_id,
        messages=messages,
        recipient=recipient,
        created_at=created_at,
        updated_at=updated_at,
        name=name or None,
    )
    return thread, changed, dropped


def _thread_from_single(result: SingleThreadResult) -> Thread:
    now = utc_now_iso()
    return Thread(
        id=generate_id(),
        messages=result.messages,
        recipient=result.recipient,
        created_at=now,
        updated_at=now,
    )


def migrate_payload(payload: Any) -> MigrationResult:
    """Translate any known persisted payload into the current thread list."""
    if isinstance(payload, list):
        single = migrate_single_thread(payload, has_recipient=False)
        logger.info("Migrating bare message list (%d messages)", len(single.messages))
        return MigrationResult(
            threads=[_thread_from_single(single)],
            migrated=True,
            source_version=0,
            dropped_messages=single.dropped,
        )

    if not isinstance(payload, dict):
        return MigrationResult(threads=None, migrated=False)

    version = payload.get("version")

    if version == CURRENT_SCHEMA_VERSION:
        raw_threads = payload.get("threads")
        if not isinstance(raw_threads, list):
            return MigrationResult(threads=None, migrated=False, source_version=version)
        threads: list[Thread] = []
        seen: set[str] = set()
        migrated = False
        dropped_threads = 0
        dropped_messages = 0
        for raw in raw_threads:
            thread, changed, dropped = _repair_thread(raw)
            dropped_messages += dropped
            migrated = migrated or changed
            if thread is None or thread.id in seen:
                dropped_threads += 1
                migrated = True
                continue
            seen.add(thread.id)
            threads.append(thread)
        if dropped_threads:
            logger.warning("Dropped %d invalid thread(s) on load", dropped_threads)
        return MigrationResult(
            threads=threads,
            migrated=migrated,
            source_version=version,
            dropped_threads=dropped_threads,
            dropped_messages=dropped_messages,
        )

    if version in SINGLE_THREAD_VERSIONS and isinstance(payload.get("messages"), list):
        single = migrate_single_thread(
            payload["messages"],
            payload.get("recipient"),
            has_recipient="recipient" in payload,
        )
        logger.info(
            "Migrating schema v%s single-thread payload to v%d",
            version,
            CURRENT_SCHEMA_VERSION,
        )
        return MigrationResult(
            threads=[_thread_from_single(single)],
            migrated=True,
            source_version=version,
            dropped_messages=single.dropped,
        )

    logger.warning("Unrecognized payload schema version: %r", version)
    return MigrationResult(threads=None, migrated=False, source_version=None)
