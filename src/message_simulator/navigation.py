"""Navigation state: the ``?thread=`` reference in the visible address.

The reference is advisory. Only the repository knows whether it names
a real thread; the reconciler decides what to do about it.

Contract (the reconciler depends on every clause):

- ``get_current_thread_id()`` returns None when the parameter is absent
  and ``""`` when it is present but empty. The two are kept distinct.
- ``set_current_thread_id()`` pushes a new history entry, so back
  returns to the previous thread.
- ``replace_current_thread_id()`` rewrites the current entry in place;
  self-corrections must not become undo-able steps.
- Passing None to either removes the parameter. Every other query
  parameter, the path and the fragment are preserved.
- ``on_thread_id_change()`` listeners fire once per back/forward
  traversal, never for push or replace.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from message_simulator.conventions import DEFAULT_ADDRESS, THREAD_QUERY_PARAM

logger = logging.getLogger(__name__)

ThreadIdListener = Callable[[str | None], None]


def read_thread_param(url: str, param: str = THREAD_QUERY_PARAM) -> str | None:
    """Value of *param* in *url*'s query; first occurrence wins."""
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == param:
            return value
    return None


def with_thread_param(
    url: str, thread_id: str | None, param: str = THREAD_QUERY_PARAM
) -> str:
    """Return *url* with *param* set to *thread_id*, or removed when None."""
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    updated: list[tuple[str, str]] = []
    placed = False
    for key, value in pairs:
        if key != param:
            updated.append((key, value))
        elif thread_id is not None and not placed:
            updated.append((key, thread_id))
            placed = True
    if thread_id is not None and not placed:
        updated.append((param, thread_id))
    return urlunsplit(parts._replace(query=urlencode(updated)))


class NavigationState(ABC):
    """Adapter between the visible address and the current-thread reference."""

    @abstractmethod
    def get_current_thread_id(self) -> str | None: ...

    @abstractmethod
    def set_current_thread_id(self, thread_id: str | None) -> None: ...

    @abstractmethod
    def replace_current_thread_id(self, thread_id: str | None) -> None: ...

    @abstractmethod
    def on_thread_id_change(self, callback: ThreadIdListener) -> Callable[[], None]:
        """Subscribe to back/forward traversals. Returns an unsubscribe."""


class HistoryNavigation(NavigationState):
    """In-memory session history of addresses.

    Models what a browser tab gives the page: a list of entries and a
    cursor. Pushing truncates any forward entries; traversal moves the
    cursor and notifies listeners with the landed entry's reference.
    """

    def __init__(
        self, address: str = DEFAULT_ADDRESS, param: str = THREAD_QUERY_PARAM
    ) -> None:
        self._entries: list[str] = [address]
        self._index = 0
        self._param = param
        self._listeners: list[ThreadIdListener] = []

    @property
    def address(self) -> str:
        return self._entries[self._index]

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    @property
    def index(self) -> int:
        return self._index

    def get_current_thread_id(self) -> str | None:
        return read_thread_param(self.address, self._param)

    def set_current_thread_id(self, thread_id: str | None) -> None:
        url = with_thread_param(self.address, thread_id, self._param)
        del self._entries[self._index + 1 :]
        self._entries.append(url)
        self._index += 1
        logger.debug("Pushed %s", url)

    def replace_current_thread_id(self, thread_id: str | None) -> None:
        url = with_thread_param(self.address, thread_id, self._param)
        self._entries[self._index] = url
        logger.debug("Replaced with %s", url)

    def on_thread_id_change(self, callback: ThreadIdListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    # --- Traversal ---

    def back(self) -> bool:
        return self.go(-1)

    def forward(self) -> bool:
        return self.go(1)

    def go(self, delta: int) -> bool:
        """Move the cursor by *delta*. Out of range or zero is a no-op."""
        target = self._index + delta
        if delta == 0 or not 0 <= target < len(self._entries):
            return False
        self._index = target
        thread_id = self.get_current_thread_id()
        for listener in list(self._listeners):
            listener(thread_id)
        return True

    def navigate_to(self, address: str) -> None:
        """Load a typed address as a new entry (no traversal event)."""
        del self._entries[self._index + 1 :]
        self._entries.append(address)
        self._index += 1
