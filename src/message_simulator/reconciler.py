"""Current-thread reconciliation.

Three sources disagree about which conversation is open: the address
(``?thread=``), the last-active pointer, and the repository itself.
Either hint can name a deleted thread, and back/forward can re-present a
stale address at any time. :class:`Reconciler` converges them in one
pass, in this priority order:

1. The address names an existing thread -> open it, update the pointer.
2. The address names something else (including ``""``):
   a. the pointer names an existing thread -> open it, replace the address;
   b. otherwise open the first listed thread, replace the address and
      update the pointer.
3. The address has no reference: same as 2a / 2b.

A shared or bookmarked link therefore wins over local history. Every
correction uses replace, never push, so a second run with no mutation in
between lands on the same thread and adds no history entry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from message_simulator.events import ChangeEvent
from message_simulator.last_active import LastActivePointer
from message_simulator.navigation import NavigationState
from message_simulator.repository import ThreadRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """Which thread reconciliation picked and why.

    source is "address", "last-active" or "first".
    """

    thread_id: str
    source: str
    address_replaced: bool = False


class Reconciler:
    """Keeps address, last-active pointer and repository on one thread.

    Usage:
        reconciler = Reconciler(repo, navigation, pointer)
        repo.load()
        reconciler.start()   # resolve once, then follow back/forward
    """

    def __init__(
        self,
        repository: ThreadRepository,
        navigation: NavigationState,
        pointer: LastActivePointer,
    ) -> None:
        self._repository = repository
        self._navigation = navigation
        self._pointer = pointer
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def started(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> Resolution:
        """Resolve the startup state and begin following navigation."""
        if not self._unsubscribers:
            self._unsubscribers = [
                self._repository.subscribe(self._on_repository_change),
                self._navigation.on_thread_id_change(self._on_navigation),
            ]
        return self.reconcile()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def reconcile(self) -> Resolution:
        """Run the resolution algorithm once against the current address."""
        reference = self._navigation.get_current_thread_id()

        if reference is not None and self._repository.has_thread(reference):
            self._repository.load_thread(reference)
            self._pointer.set(reference)
            logger.debug(
                "Reconciled to %s from address", reference, extra={"thread_id": reference}
            )
            return Resolution(reference, "address")

        if reference is not None:
            logger.debug("Address names unknown thread %r", reference)

        last = self._pointer.get()
        if last is not None and self._repository.has_thread(last):
            self._navigation.replace_current_thread_id(last)
            self._repository.load_thread(last)
            logger.debug(
                "Reconciled to %s from last-active pointer",
                last,
                extra={"thread_id": last},
            )
            return Resolution(last, "last-active", address_replaced=True)

        threads = self._repository.list_threads()
        loaded = self._repository.load_thread(threads[0].id if threads else None)
        self._navigation.replace_current_thread_id(loaded.id)
        self._pointer.set(loaded.id)
        logger.debug(
            "Reconciled to first thread %s", loaded.id, extra={"thread_id": loaded.id}
        )
        return Resolution(loaded.id, "first", address_replaced=True)

    def open_thread(self, thread_id: str) -> Resolution:
        """Thread-list click: push the address, then resolve it."""
        self._navigation.set_current_thread_id(thread_id)
        return self.reconcile()

    def _on_navigation(self, thread_id: str | None) -> None:
        logger.debug("Traversed to reference %r", thread_id)
        self.reconcile()

    def _on_repository_change(self, event: ChangeEvent) -> None:
        if event.reason == "thread-changed":
            self._pointer.set(event.thread_id)
        elif event.reason == "import":
            # Imports push, so back returns to the previous thread.
            self._navigation.set_current_thread_id(event.thread_id)
            self._pointer.set(event.thread_id)
        elif event.reason == "thread-deleted":
            if self._navigation.get_current_thread_id() != event.thread_id:
                self._navigation.replace_current_thread_id(event.thread_id)
            self._pointer.set(event.thread_id)
