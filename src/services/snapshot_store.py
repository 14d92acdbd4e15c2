from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from config import settings
from services.time_grid import KEY_PATTERN

logger = logging.getLogger("windhub.store")

SNAPSHOT_SUFFIX = ".json"


class SnapshotAlreadyExists(RuntimeError):
    """Raised when writing a key that already has a snapshot."""

    def __init__(self, key: str) -> None:
        super().__init__(f"snapshot {key} already exists")
        self.key = key


class SnapshotNotFound(LookupError):
    """Raised when reading a key that has no snapshot."""

    def __init__(self, key: str) -> None:
        super().__init__(f"snapshot {key} not found")
        self.key = key


class SnapshotStore:
    """Append-only directory of converted snapshots, one ``<key>.json`` per interval.

    Snapshots are published with a hard link from a fully written temporary file,
    so a key is either absent or complete and is never overwritten.
    """

    def __init__(self, root: Path | str | None = None) -> None:
        self._root = Path(root if root is not None else settings.snapshot_dir).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
            raise ValueError(f"invalid snapshot key: {key!r}")
        return self._root / f"{key}{SNAPSHOT_SUFFIX}"

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> bytes:
        path = self.path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise SnapshotNotFound(key) from exc

    def write(self, key: str, data: bytes) -> Path:
        path = self.path_for(key)
        if path.exists():
            raise SnapshotAlreadyExists(key)
        self._root.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self._root)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            try:
                os.link(tmp_name, path)
            except FileExistsError as exc:
                raise SnapshotAlreadyExists(key) from exc
        finally:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
        logger.info("Stored snapshot %s (%d bytes)", key, len(data))
        return path

    def keys(self) -> list[str]:
        if not self._root.is_dir():
            return []
        found = [
            entry.stem
            for entry in self._root.iterdir()
            if entry.suffix == SNAPSHOT_SUFFIX and KEY_PATTERN.fullmatch(entry.stem) and entry.is_file()
        ]
        return sorted(found)

    def stats(self) -> dict[str, Any]:
        keys = self.keys()
        total_bytes = 0
        for key in keys:
            try:
                total_bytes += self.path_for(key).stat().st_size
            except FileNotFoundError:
                continue
        return {
            "snapshot_dir": str(self._root),
            "count": len(keys),
            "bytes": total_bytes,
            "oldest_key": keys[0] if keys else None,
            "newest_key": keys[-1] if keys else None,
        }


snapshot_store = SnapshotStore()

__all__ = ["SnapshotAlreadyExists", "SnapshotNotFound", "SnapshotStore", "snapshot_store"]
