"""Thread, message and recipient records.

Records are plain dataclasses. ``to_dict()`` produces the persisted /
exported JSON shape (camelCase timestamps on threads, ``images`` omitted
when absent); the migrator is the only place that reads raw JSON back
into records, so there is no lenient ``from_dict`` here.

Timestamps are ISO-8601 UTC strings with millisecond precision and a
``Z`` suffix, so lexicographic order equals chronological order.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from message_simulator.conventions import UNTITLED_THREAD_NAME

Sender = Literal["self", "other"]
SENDERS: tuple[str, ...] = ("self", "other")


def generate_id() -> str:
    """Return a fresh opaque identifier."""
    return str(uuid.uuid4())


def format_iso(moment: datetime) -> str:
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def utc_now_iso(offset_seconds: float = 0) -> str:
    """Current UTC time as ISO-8601, optionally shifted by *offset_seconds*."""
    return format_iso(datetime.now(UTC) + timedelta(seconds=offset_seconds))


def iso_from_epoch_ms(value: float) -> str:
    """Convert a legacy epoch-milliseconds timestamp to ISO-8601.

    Values outside the range of ``datetime`` (or NaN) raise
    OverflowError, OSError or ValueError.
    """
    return format_iso(datetime.fromtimestamp(value / 1000, tz=UTC))


@dataclass
class MessageImage:
    id: str
    src: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "src": self.src}


@dataclass
class Message:
    """One bubble. An empty ``message`` with no images is a valid placeholder."""

    id: str
    sender: Sender
    message: str
    timestamp: str
    images: list[MessageImage] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "sender": self.sender,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.images is not None:
            data["images"] = [image.to_dict() for image in self.images]
        return data


@dataclass
class Recipient:
    name: str = "Dreamer"
    location: str = "iMessage"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "location": self.location}


@dataclass
class Thread:
    """One conversation.

    ``name`` is an optional display override; ``None`` means the list
    shows the recipient's name instead (see :func:`display_name`).
    """

    id: str
    messages: list[Message] = field(default_factory=list)
    recipient: Recipient = field(default_factory=Recipient)
    created_at: str = ""
    updated_at: str = ""
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        data["messages"] = [m.to_dict() for m in self.messages]
        data["recipient"] = self.recipient.to_dict()
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        return data

    def touch(self) -> None:
        """Bump ``updated_at`` after a mutation."""
        self.updated_at = utc_now_iso()


def display_name(thread: Thread) -> str:
    """Name shown in the thread list."""
    if thread.name:
        return thread.name
    if thread.recipient.name:
        return thread.recipient.name
    return UNTITLED_THREAD_NAME


# --- Seed conversation ---

DEFAULT_MESSAGES: list[tuple[Sender, str]] = [
    ("other", "Hi"),
    ("other", "Hello"),
    ("self", "What is this?"),
    ("other", "I had a dream that I was building an iMessage simulator"),
    ("other", "When I woke up I decided that I should build it"),
    ("self", "What do I do with it?"),
    ("other", "Flip the switch beside the input to change senders"),
    ("other", "Use the plus menu to clear, export, and import"),
    ("self", "No like, what is it for?"),
    ("other", "Lol idk"),
]


def default_messages() -> list[Message]:
    """Fresh copy of the seed conversation, one second apart."""
    return [
        Message(
            id=generate_id(),
            sender=sender,
            message=text,
            timestamp=utc_now_iso(offset_seconds=i),
        )
        for i, (sender, text) in enumerate(DEFAULT_MESSAGES)
    ]


def default_recipient() -> Recipient:
    return Recipient()


def new_default_thread() -> Thread:
    """A thread holding the seed conversation under a new id."""
    now = utc_now_iso()
    return Thread(
        id=generate_id(),
        messages=default_messages(),
        recipient=default_recipient(),
        created_at=now,
        updated_at=now,
    )
