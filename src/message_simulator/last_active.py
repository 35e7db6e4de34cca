"""Last-active thread pointer.

A bare thread id kept under its own storage key, outside the versioned
thread payload. It is only a hint for reconciliation: a missing,
unreadable or empty value reads as None, and a failed write is logged
and forgotten.
"""

from __future__ import annotations

import logging

from message_simulator.conventions import LAST_THREAD_KEY
from message_simulator.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class LastActivePointer:
    def __init__(self, storage: KeyValueStorage, key: str = LAST_THREAD_KEY) -> None:
        self._storage = storage
        self._key = key

    def get(self) -> str | None:
        try:
            value = self._storage.get_item(self._key)
        except OSError:
            logger.debug("Could not read last-active pointer", exc_info=True)
            return None
        return value or None

    def set(self, thread_id: str | None) -> None:
        """Remember *thread_id*. Empty values are ignored."""
        if not thread_id:
            return
        try:
            self._storage.set_item(self._key, thread_id)
        except OSError:
            logger.warning("Could not save last-active pointer", exc_info=True)
