"""Synchronous key/value persistence with a strict byte budget.

Two media share one interface:

- :class:`MemoryStorage` keeps values in a dict. It stands in for a
  browser's origin storage in tests and in the in-process server.
- :class:`FileStorage` keeps one file per key under a directory and
  writes it atomically (temp file + ``os.replace``), so a crash leaves
  either the old or the new value, never a truncated one.

Both count the UTF-8 size of every key and value against ``quota_bytes``
and refuse a write that would exceed it with :class:`StorageQuotaExceeded`.
A refused write leaves the previous value in place.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from message_simulator.conventions import DEFAULT_QUOTA_BYTES

logger = logging.getLogger(__name__)


class StorageError(OSError):
    """A persistence medium could not complete an operation."""


class StorageQuotaExceeded(StorageError):
    """A write would push the medium over its byte budget."""

    def __init__(self, key: str, needed: int, quota: int) -> None:
        super().__init__(
            f"Writing {key!r} needs {needed} bytes, quota is {quota} bytes"
        )
        self.key = key
        self.needed = needed
        self.quota = quota


class KeyValueStorage(Protocol):
    """What the repository and the last-active pointer need from storage."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def _entry_size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class MemoryStorage:
    """Dict-backed storage with a byte budget.

    Pass ``quota_bytes=None`` for an unlimited store.
    """

    def __init__(self, quota_bytes: int | None = DEFAULT_QUOTA_BYTES) -> None:
        self._items: dict[str, str] = {}
        self._quota = quota_bytes

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self._quota is not None:
            others = sum(
                _entry_size(k, v) for k, v in self._items.items() if k != key
            )
            needed = others + _entry_size(key, value)
            if needed > self._quota:
                raise StorageQuotaExceeded(key, needed, self._quota)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


def atomic_write(path: Path, content: str) -> None:
    """Store *content* as the whole value file at *path*.

    The value is written to a ``.tmp`` sibling, synced, then swapped in
    with ``os.replace``; a reader sees the previous value or the new one.
    On failure the sibling is removed and the error propagates to
    :meth:`FileStorage.set_item`.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    staged = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, suffix=".tmp", delete=False
    )
    tmp = Path(staged.name)
    try:
        with staged:
            staged.write(content)
            staged.flush()
            os.fsync(staged.fileno())
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(OSError):
            tmp.unlink()
        raise


class FileStorage:
    """One JSON-or-text file per key under *directory*.

    Keys are percent-encoded into file names (``:`` and ``/`` are not
    portable). The byte budget counts keys and values the same way
    :class:`MemoryStorage` does, so quota behaviour matches across media.
    """

    SUFFIX = ".value"

    def __init__(
        self, directory: Path, quota_bytes: int | None = DEFAULT_QUOTA_BYTES
    ) -> None:
        self._directory = directory
        self._quota = quota_bytes

    @property
    def directory(self) -> Path:
        return self._directory

    def _path_for(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}{self.SUFFIX}"

    def get_item(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {key!r} from {path}") from exc

    def set_item(self, key: str, value: str) -> None:
        if self._quota is not None:
            others = sum(
                _entry_size(k, v) for k, v in self._entries() if k != key
            )
            needed = others + _entry_size(key, value)
            if needed > self._quota:
                raise StorageQuotaExceeded(key, needed, self._quota)
        atomic_write(self._path_for(key), value)

    def remove_item(self, key: str) -> None:
        with contextlib.suppress(FileNotFoundError):
            self._path_for(key).unlink()

    def keys(self) -> list[str]:
        return [key for key, _ in self._entries()]

    def _entries(self) -> list[tuple[str, str]]:
        if not self._directory.is_dir():
            return []
        entries: list[tuple[str, str]] = []
        for path in sorted(self._directory.glob(f"*{self.SUFFIX}")):
            key = unquote(path.name[: -len(self.SUFFIX)])
            try:
                entries.append((key, path.read_text(encoding="utf-8")))
            except OSError:
                logger.debug("Skipping unreadable storage file %s", path)
        return entries
