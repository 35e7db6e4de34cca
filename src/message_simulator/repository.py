"""Thread repository: the authoritative collection of conversations.

Owns the threads, the current-thread id, persistence and change
notifications. Every operation completes synchronously on the in-memory
state; the storage write is debounced to the next frame and failures
there never undo a mutation (see :meth:`ThreadRepository.save`).

Invariants after :meth:`ThreadRepository.load`:

- the repository always holds at least one thread;
- ``current_thread_id`` always names one of them;
- accessors hand out copies, never the live records.

Usage:
    repo = ThreadRepository(MemoryStorage(), scheduler=ManualScheduler())
    unsubscribe = repo.subscribe(lambda event: print(event.reason))
    repo.load()
    repo.add_message()
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from message_simulator.conventions import (
    COPY_SUFFIX,
    CURRENT_SCHEMA_VERSION,
    FRAME_DELAY_MS,
    LEGACY_MESSAGES_KEY,
    THREADS_STORAGE_KEY,
)
from message_simulator.events import (
    MESSAGES_CHANGED,
    STORAGE_ERROR,
    ChangeEvent,
    EventBus,
    StorageErrorEvent,
)
from message_simulator.migrator import (
    WrappedMessages,
    decode_import,
    migrate_payload,
    repair_messages,
    repair_recipient,
)
from message_simulator.models import (
    SENDERS,
    Message,
    MessageImage,
    Recipient,
    Thread,
    default_messages,
    default_recipient,
    display_name,
    generate_id,
    new_default_thread,
    utc_now_iso,
)
from message_simulator.scheduler import AsyncioScheduler, Debouncer, Scheduler
from message_simulator.storage import KeyValueStorage

logger = logging.getLogger(__name__)

_MESSAGE_FIELDS = ("message", "sender", "images")
_RECIPIENT_FIELDS = ("name", "location")


@dataclass
class ImportOutcome:
    """Result of :meth:`ThreadRepository.import_json`.

    On failure ``thread`` is None and ``error`` says why; nothing in the
    repository changed.
    """

    thread: Thread | None = None
    error: str | None = None
    dropped: int = 0

    @property
    def ok(self) -> bool:
        return self.thread is not None


class ThreadRepository:
    """Multi-thread message store with debounced persistence.

    Args:
        storage: Key/value medium holding the thread payload.
        scheduler: Clock for the debounced save. Defaults to the running
            asyncio loop.
        save_delay: Seconds between the last mutation and the write.
        storage_key: Key of the thread payload.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        *,
        scheduler: Scheduler | None = None,
        save_delay: float = FRAME_DELAY_MS / 1000,
        storage_key: str = THREADS_STORAGE_KEY,
    ) -> None:
        self._storage = storage
        self._storage_key = storage_key
        self._threads: dict[str, Thread] = {}
        self._current_id: str | None = None
        self._events = EventBus()
        self._saver = Debouncer(
            scheduler if scheduler is not None else AsyncioScheduler(),
            self.save,
            save_delay,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self, listener: Callable[[ChangeEvent], None]
    ) -> Callable[[], None]:
        """Receive every ``messages-changed`` event. Returns an unsubscribe."""
        return self._events.subscribe(MESSAGES_CHANGED, listener)

    def on_storage_error(
        self, listener: Callable[[StorageErrorEvent], None]
    ) -> Callable[[], None]:
        return self._events.subscribe(STORAGE_ERROR, listener)

    # ------------------------------------------------------------------
    # Load / persist
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Adopt the persisted payload, migrating it if needed.

        Missing, unreadable, corrupt or unrecognized payloads (or ones that
        leave zero valid threads) fall back to one seeded thread. Never
        raises.
        """
        raw, from_legacy = self._read_payload()
        if raw is None:
            self._seed_defaults()
            return

        try:
            parsed = json.loads(raw)
        except ValueError:
            logger.warning("Stored thread payload is not valid JSON; reseeding")
            self._seed_defaults()
            return

        result = migrate_payload(parsed)
        if not result.threads:
            logger.warning(
                "Stored thread payload yielded no threads (recognized=%s); reseeding",
                result.recognized,
            )
            self._seed_defaults()
            return

        self._threads = {thread.id: thread for thread in result.threads}
        self._current_id = self._ordered()[0].id
        if result.migrated or from_legacy:
            logger.info(
                "Re-persisting migrated payload (from v%s, %d thread(s))",
                result.source_version,
                len(self._threads),
            )
            self.save()
        self._emit("load")

    def _read_payload(self) -> tuple[str | None, bool]:
        try:
            raw = self._storage.get_item(self._storage_key)
            if raw:
                return raw, False
            legacy = self._storage.get_item(LEGACY_MESSAGES_KEY)
        except OSError:
            logger.warning("Failed to read thread storage", exc_info=True)
            return None, False
        if legacy:
            logger.info("Found pre-thread payload under %s", LEGACY_MESSAGES_KEY)
            return legacy, True
        return None, False

    def _seed_defaults(self) -> None:
        thread = new_default_thread()
        self._threads = {thread.id: thread}
        self._current_id = thread.id
        self.save()
        self._emit("init-defaults")

    def save(self) -> bool:
        """Write the whole payload now.

        A failed write is logged and reported as a ``storage-error`` event;
        the in-memory state stays as it is. Returns whether the write
        succeeded.
        """
        payload = {
            "version": CURRENT_SCHEMA_VERSION,
            "threads": [thread.to_dict() for thread in self._threads.values()],
        }
        try:
            self._storage.set_item(self._storage_key, json.dumps(payload))
        except OSError as exc:
            logger.warning(
                "Failed to save threads", exc_info=True, extra={"operation": "save"}
            )
            self._events.emit(STORAGE_ERROR, StorageErrorEvent(exc, "save"))
            return False
        return True

    def flush(self) -> bool:
        """Run a pending debounced save immediately."""
        return self._saver.flush()

    @property
    def save_pending(self) -> bool:
        return self._saver.pending

    def _schedule_save(self) -> None:
        self._saver.schedule()

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    @property
    def current_thread_id(self) -> str | None:
        return self._current_id

    def has_thread(self, thread_id: str | None) -> bool:
        return thread_id is not None and thread_id in self._threads

    def list_threads(self) -> list[Thread]:
        """Snapshot of all threads, most recently updated first."""
        return [copy.deepcopy(thread) for thread in self._ordered()]

    def get_thread(self, thread_id: str) -> Thread | None:
        thread = self._threads.get(thread_id)
        return copy.deepcopy(thread) if thread else None

    def get_current_thread(self) -> Thread | None:
        thread = self._current()
        return copy.deepcopy(thread) if thread else None

    def display_name(self, thread: Thread) -> str:
        return display_name(thread)

    def create_thread(self) -> Thread:
        """Append a seeded thread. The current thread does not change."""
        self._ensure_current()
        thread = new_default_thread()
        self._threads[thread.id] = thread
        self._schedule_save()
        self._emit("thread-created")
        return copy.deepcopy(thread)

    def duplicate_thread(self, thread_id: str) -> Thread | None:
        """Copy a thread's messages and recipient under a new id."""
        source = self._threads.get(thread_id)
        if source is None:
            return None
        now = utc_now_iso()
        messages = copy.deepcopy(source.messages)
        for message in messages:
            message.id = generate_id()
        thread = Thread(
            id=generate_id(),
            messages=messages,
            recipient=copy.copy(source.recipient),
            created_at=now,
            updated_at=now,
            name=f"{display_name(source)}{COPY_SUFFIX}",
        )
        self._threads[thread.id] = thread
        self._schedule_save()
        self._emit("thread-created")
        return copy.deepcopy(thread)

    def rename_thread(self, thread_id: str, name: str | None) -> bool:
        """Set or clear (blank/None) a thread's display-name override."""
        thread = self._threads.get(thread_id)
        if thread is None:
            return False
        new_name = name.strip() if name else ""
        new_name = new_name or None
        if new_name == thread.name:
            return True
        thread.name = new_name
        thread.touch()
        self._schedule_save()
        self._emit("thread-updated")
        return True

    def delete_thread(self, thread_id: str) -> bool:
        """Remove a thread, keeping the repository non-empty.

        Deleting the current thread moves current to the first remaining
        thread in list order; deleting the last thread seeds a new one.
        """
        if thread_id not in self._threads:
            return False
        del self._threads[thread_id]
        if not self._threads:
            thread = new_default_thread()
            self._threads[thread.id] = thread
            self._current_id = thread.id
        elif self._current_id == thread_id or self._current_id not in self._threads:
            self._current_id = self._ordered()[0].id
        self._schedule_save()
        self._emit("thread-deleted")
        return True

    def load_thread(self, thread_id: str | None) -> Thread:
        """Make *thread_id* current, falling back to the first thread.

        Always leaves a valid current thread; the emitted
        ``thread-changed`` event carries the resolved id.
        """
        if thread_id is not None and thread_id in self._threads:
            self._current_id = thread_id
        else:
            if thread_id is not None:
                logger.debug("Unknown thread %r, falling back to first", thread_id)
            self._ensure_current()
            self._current_id = self._ordered()[0].id
        self._emit("thread-changed")
        return copy.deepcopy(self._threads[self._current_id])

    # ------------------------------------------------------------------
    # Messages of the current thread
    # ------------------------------------------------------------------

    def get_messages(self) -> list[Message]:
        thread = self._current()
        return copy.deepcopy(thread.messages) if thread else []

    def get_recipient(self) -> Recipient:
        thread = self._current()
        return copy.copy(thread.recipient) if thread else default_recipient()

    def add_message(self, after_id: str | None = None) -> Message:
        """Insert an empty placeholder after *after_id*, or at the end."""
        thread = self._ensure_current()
        message = Message(
            id=generate_id(), sender="self", message="", timestamp=utc_now_iso()
        )
        index = self._index_of(thread, after_id) if after_id else -1
        if index == -1:
            thread.messages.append(message)
        else:
            thread.messages.insert(index + 1, message)
        self._mutated(thread, "add", message)
        return copy.deepcopy(message)

    def update_message(
        self, message_id: str, patch: Mapping[str, Any] | None = None, **fields: Any
    ) -> Message | None:
        """Merge ``message``/``sender``/``images`` into a message.

        Unknown ids are ignored (returns None, no event). An invalid sender
        or non-string text raises ValueError.
        """
        thread = self._ensure_current()
        index = self._index_of(thread, message_id)
        if index == -1:
            return None
        changes = {**(patch or {}), **fields}
        unknown = set(changes) - set(_MESSAGE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown message field(s): {sorted(unknown)}")
        if "sender" in changes and changes["sender"] not in SENDERS:
            raise ValueError(f"Invalid sender: {changes['sender']!r}")
        if "message" in changes and not isinstance(changes["message"], str):
            raise ValueError("message text must be a string")

        message = thread.messages[index]
        if "message" in changes:
            message.message = changes["message"]
        if "sender" in changes:
            message.sender = changes["sender"]
        if "images" in changes:
            message.images = _coerce_images(changes["images"])
        self._mutated(thread, "update", message)
        return copy.deepcopy(message)

    def delete_message(self, message_id: str) -> bool:
        thread = self._ensure_current()
        index = self._index_of(thread, message_id)
        if index == -1:
            return False
        removed = thread.messages.pop(index)
        self._mutated(thread, "delete", removed)
        return True

    def insert_image(self, message_id: str, src: str) -> Message | None:
        """Append an image to a message's gallery."""
        if not src:
            return None
        thread = self._ensure_current()
        index = self._index_of(thread, message_id)
        if index == -1:
            return None
        message = thread.messages[index]
        images = list(message.images or [])
        images.append(MessageImage(id=generate_id(), src=src))
        message.images = images
        self._mutated(thread, "update", message)
        return copy.deepcopy(message)

    def update_recipient(
        self, patch: Mapping[str, Any] | None = None, **fields: Any
    ) -> bool:
        """Merge trimmed name/location. Returns False (and stays silent) on no change."""
        thread = self._ensure_current()
        changes = {**(patch or {}), **fields}
        merged = copy.copy(thread.recipient)
        for key in _RECIPIENT_FIELDS:
            value = changes.get(key)
            if isinstance(value, str):
                setattr(merged, key, value.strip())
        if merged == thread.recipient:
            return False
        thread.recipient = merged
        self._mutated(thread, "recipient")
        return True

    def clear(self) -> None:
        """Restart the demo: seed conversation and default recipient."""
        thread = self._ensure_current()
        thread.messages = default_messages()
        thread.recipient = default_recipient()
        self._mutated(thread, "clear")

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_json(self, pretty: bool = True) -> str:
        """Serialize the current thread as ``{version, messages, recipient}``."""
        thread = self._ensure_current()
        payload = {
            "version": CURRENT_SCHEMA_VERSION,
            "messages": [m.to_dict() for m in thread.messages],
            "recipient": thread.recipient.to_dict(),
        }
        if pretty:
            return json.dumps(payload, indent=2, ensure_ascii=False)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)

    def import_json(self, data: str | bytes | Any) -> ImportOutcome:
        """Adopt exported content as a new current thread.

        Accepts a bare message list or ``{"messages": [...], "recipient"?}``
        as text or already-parsed JSON. Invalid messages are dropped;
        missing ids and timestamps are filled in. Existing threads are
        never overwritten, and a rejected import changes nothing.
        """
        if isinstance(data, str | bytes | bytearray):
            try:
                parsed = json.loads(data)
            except ValueError:
                logger.warning("Import rejected: invalid JSON")
                return ImportOutcome(error="Invalid JSON")
        else:
            parsed = data

        decoded = decode_import(parsed)
        if decoded is None:
            logger.warning("Import rejected: unrecognized shape")
            return ImportOutcome(
                error="Invalid format: expected a message list or an object "
                "with a 'messages' list"
            )

        messages, _, dropped = repair_messages(decoded.items)
        if decoded.items and not messages:
            logger.warning("Import rejected: none of %d messages valid", dropped)
            return ImportOutcome(error="No valid messages to import", dropped=dropped)
        self._reassign_colliding_ids(messages)

        recipient = default_recipient()
        if isinstance(decoded, WrappedMessages) and decoded.recipient is not None:
            recipient, _ = repair_recipient(decoded.recipient, strip=True)

        now = utc_now_iso()
        thread = Thread(
            id=generate_id(),
            messages=messages,
            recipient=recipient,
            created_at=now,
            updated_at=now,
        )
        self._threads[thread.id] = thread
        self._current_id = thread.id
        self._schedule_save()
        self._emit("import")
        if dropped:
            logger.info("Imported thread %s, dropped %d invalid message(s)", thread.id, dropped)
        return ImportOutcome(thread=copy.deepcopy(thread), dropped=dropped)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ordered(self) -> list[Thread]:
        return sorted(
            self._threads.values(), key=lambda t: t.updated_at, reverse=True
        )

    def _current(self) -> Thread | None:
        if self._current_id is None:
            return None
        return self._threads.get(self._current_id)

    def _ensure_current(self) -> Thread:
        """Current thread, seeding one if used before load()."""
        thread = self._current()
        if thread is not None:
            return thread
        if not self._threads:
            seeded = new_default_thread()
            self._threads[seeded.id] = seeded
        self._current_id = self._ordered()[0].id
        return self._threads[self._current_id]

    @staticmethod
    def _index_of(thread: Thread, message_id: str | None) -> int:
        for i, message in enumerate(thread.messages):
            if message.id == message_id:
                return i
        return -1

    def _reassign_colliding_ids(self, messages: list[Message]) -> None:
        taken = {m.id for t in self._threads.values() for m in t.messages}
        for message in messages:
            if message.id in taken:
                message.id = generate_id()
            taken.add(message.id)

    def _mutated(
        self, thread: Thread, reason: str, message: Message | None = None
    ) -> None:
        thread.touch()
        self._schedule_save()
        self._emit(reason, message)

    def _emit(self, reason: str, message: Message | None = None) -> None:
        thread = self._ensure_current()
        event = ChangeEvent(
            reason=reason,
            thread_id=thread.id,
            messages=copy.deepcopy(thread.messages),
            recipient=copy.copy(thread.recipient),
            message=copy.deepcopy(message),
        )
        self._events.emit(MESSAGES_CHANGED, event)


def _coerce_images(value: Any) -> list[MessageImage] | None:
    if value is None:
        return None
    images: list[MessageImage] = []
    for entry in value:
        if isinstance(entry, MessageImage):
            images.append(entry)
        elif isinstance(entry, Mapping) and isinstance(entry.get("src"), str):
            images.append(
                MessageImage(id=entry.get("id") or generate_id(), src=entry["src"])
            )
        else:
            raise ValueError(f"Invalid image entry: {entry!r}")
    return images
