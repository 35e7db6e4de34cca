"""Change notifications fired by the repository.

A plain observer list replaces DOM event bubbling. Delivery is
synchronous: ``emit()`` calls every subscriber before returning, so a
subscriber may call straight back into the repository and see the
committed state.

Every ``messages-changed`` payload carries a full snapshot of the thread
that is current after the operation; ``message`` is only a hint for
consumers that patch one element instead of re-rendering.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from message_simulator.models import Message, Recipient

logger = logging.getLogger(__name__)

MESSAGES_CHANGED = "messages-changed"
STORAGE_ERROR = "storage-error"

# Reasons carried by MESSAGES_CHANGED
REASONS = frozenset(
    {
        "init-defaults",
        "load",
        "add",
        "update",
        "delete",
        "clear",
        "recipient",
        "import",
        "thread-created",
        "thread-deleted",
        "thread-updated",
        "thread-changed",
    }
)


@dataclass
class ChangeEvent:
    reason: str
    thread_id: str
    messages: list[Message] = field(default_factory=list)
    recipient: Recipient = field(default_factory=Recipient)
    message: Message | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reason": self.reason,
            "threadId": self.thread_id,
            "message": self.message.to_dict() if self.message else None,
            "messages": [m.to_dict() for m in self.messages],
            "recipient": self.recipient.to_dict(),
        }


@dataclass
class StorageErrorEvent:
    error: BaseException
    operation: str


Listener = Callable[[Any], None]


class EventBus:
    """Named channels of synchronous subscribers."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, name: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* on *name*; returns an unsubscribe function."""
        self._listeners[name].append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(name, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def emit(self, name: str, payload: Any) -> None:
        # Copy: listeners may unsubscribe while being notified.
        for listener in list(self._listeners.get(name, [])):
            listener(payload)

    def listener_count(self, name: str) -> int:
        return len(self._listeners.get(name, []))
