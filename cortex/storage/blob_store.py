"""Blob stores: the storage medium for serialized research documents."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..exceptions import PersistenceError

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_\-]+$")


@runtime_checkable
class BlobStore(Protocol):
    """Opaque key/blob storage.

    Implement this protocol to add a new storage medium. The research core
    owns the blob format; stores only move strings.
    """

    async def ping(self) -> None:
        """Raise PersistenceError if the store cannot be used."""
        ...

    async def load(self, key: str) -> str | None:
        ...

    async def save(self, key: str, blob: str) -> None:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def list_keys(self) -> list[str]:
        ...


def _check_key(key: str) -> None:
    if not KEY_PATTERN.match(key):
        raise ValueError(f"Invalid storage key: {key!r}")


class MemoryBlobStore:
    """In-process store, for tests and throwaway runs."""

    def __init__(self):
        self._blobs: dict[str, str] = {}

    async def ping(self) -> None:
        return None

    async def load(self, key: str) -> str | None:
        return self._blobs.get(key)

    async def save(self, key: str, blob: str) -> None:
        _check_key(key)
        self._blobs[key] = blob

    async def delete(self, key: str) -> bool:
        return self._blobs.pop(key, None) is not None

    async def list_keys(self) -> list[str]:
        return sorted(self._blobs)


class FileBlobStore:
    """
    One JSON file per key under a directory.

    Writes go to a temporary file first and are moved into place, so a
    crash mid-write never leaves a truncated document.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        _check_key(key)
        return self.root / f"{key}.json"

    async def ping(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Storage directory {self.root} is unusable: {e}") from e
        if not os.access(self.root, os.W_OK):
            raise PersistenceError(f"Storage directory {self.root} is not writable")

    async def load(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    async def save(self, key: str, blob: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_text(blob, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Persisted {key} to {path}")

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Deleted {path}")
        return True

    async def list_keys(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))
