"""Composition root.

Builds one explicitly owned set of collaborators (storage, repository,
navigation, last-active pointer, reconciler) and hands it to whoever
needs it: the CLI, the HTTP server, tests. There is no module-level
instance; construct as many independent simulators as you like.

Usage:
    sim = build_simulator(load_config())
    sim.start()
    sim.repository.add_message()
    sim.close()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from message_simulator.config import storage_directory
from message_simulator.last_active import LastActivePointer
from message_simulator.navigation import HistoryNavigation, NavigationState
from message_simulator.reconciler import Reconciler, Resolution
from message_simulator.repository import ThreadRepository
from message_simulator.scheduler import Scheduler
from message_simulator.schema import SimulatorConfig
from message_simulator.storage import FileStorage, KeyValueStorage, MemoryStorage

logger = logging.getLogger(__name__)


@dataclass
class Simulator:
    storage: KeyValueStorage
    repository: ThreadRepository
    navigation: NavigationState
    pointer: LastActivePointer
    reconciler: Reconciler

    def start(self) -> Resolution:
        """Load the repository and resolve the current thread."""
        self.repository.load()
        resolution = self.reconciler.start()
        logger.info(
            "Simulator started on thread %s (%s)",
            resolution.thread_id,
            resolution.source,
        )
        return resolution

    def close(self) -> None:
        """Stop following navigation and write any pending save."""
        self.reconciler.stop()
        self.repository.flush()


def build_storage(config: SimulatorConfig) -> KeyValueStorage:
    if config.storage.backend == "memory":
        return MemoryStorage(config.storage.quota_bytes)
    return FileStorage(storage_directory(config), config.storage.quota_bytes)


def build_simulator(
    config: SimulatorConfig | None = None,
    *,
    storage: KeyValueStorage | None = None,
    scheduler: Scheduler | None = None,
    navigation: NavigationState | None = None,
) -> Simulator:
    """Wire a simulator from *config*; any collaborator may be overridden."""
    config = config or SimulatorConfig()
    storage = storage if storage is not None else build_storage(config)
    repository = ThreadRepository(
        storage,
        scheduler=scheduler,
        save_delay=config.persistence.save_delay_ms / 1000,
    )
    navigation = navigation if navigation is not None else HistoryNavigation()
    pointer = LastActivePointer(storage)
    return Simulator(
        storage=storage,
        repository=repository,
        navigation=navigation,
        pointer=pointer,
        reconciler=Reconciler(repository, navigation, pointer),
    )
