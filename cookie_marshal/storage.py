"""Key-value persistence for domain history and the Q-table.

Two backends implement :class:`Storage`: :class:`MemoryStorage` for
tests and non-persistent sessions, and :class:`JsonFileStorage`,
which writes one JSON file per key under a cache directory
(``.cache/`` by default, gitignored).

Backends raise :class:`~cookie_marshal.utils.errors.PersistenceError`
on failure; callers log it and carry on in memory.
"""

from __future__ import annotations

import asyncio
import copy
import json
import pathlib
from typing import Any, Protocol, runtime_checkable

from cookie_marshal.utils import errors, logger

log = logger.create_logger("Storage")


@runtime_checkable
class Storage(Protocol):
    """Async key-value store holding JSON-shaped values."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStorage:
    """Dict-backed storage.  Values are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return list(self._data)


def _key_path(directory: pathlib.Path, key: str) -> pathlib.Path:
    """Build the file path for a storage key.

    Strips a ``www.`` prefix from the domain part so ``www.example.com``
    and ``example.com`` share the same entry.  Invalid filesystem
    characters are replaced with underscores.
    """
    prefix, _, domain = key.lower().rpartition(":")
    safe = f"{prefix}_{domain.removeprefix('www.')}" if prefix else domain.removeprefix("www.")
    safe = "".join(c if c.isalnum() or c in ".-" else "_" for c in safe)[:100]
    return directory / f"{safe}.json"


class JsonFileStorage:
    """One JSON file per key under *directory*."""

    def __init__(self, directory: pathlib.Path | str) -> None:
        self.directory = pathlib.Path(directory)

    def path_for(self, key: str) -> pathlib.Path:
        return _key_path(self.directory, key)

    async def get(self, key: str) -> Any | None:
        path = self.path_for(key)
        return await asyncio.to_thread(self._read, key, path)

    async def set(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        await asyncio.to_thread(self._write, key, path, value)

    def _read(self, key: str, path: pathlib.Path) -> Any | None:
        if not path.exists():
            log.debug("No stored value", {"key": key})
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.warn("Stored value is malformed, removing", {"key": key, "error": str(exc)})
            path.unlink(missing_ok=True)
            return None
        except OSError as exc:
            raise errors.PersistenceError(f"Failed to read {path.name}: {exc}") from exc

    def _write(self, key: str, path: pathlib.Path, value: Any) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(value, indent=2, default=str), encoding="utf-8")
        except (OSError, TypeError) as exc:
            raise errors.PersistenceError(f"Failed to write {path.name}: {exc}") from exc
        log.debug("Stored value written", {"key": key, "path": path.name})
