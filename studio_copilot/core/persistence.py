"""Key-value persistence adapters.

The orchestration core does not own a database. Workflows, proposals and task
state are stored through a small key-value contract:

- ``write(key, value)`` is all-or-nothing: a reader never observes a partially
  written value.
- ``read(key)`` after a successful ``write`` returns exactly that value.

Two implementations are provided:

- ``InMemoryKeyValueStore``: process-local, used by tests and by the default
  server wiring when no data directory is configured.
- ``JsonFileKeyValueStore``: one JSON document per key under a directory.
  Writes go to a temporary file which is fsynced and then atomically renamed
  over the target.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.:-]")


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable key-value collaborator with atomic whole-value writes."""

    async def read(self, key: str) -> Optional[Any]: ...

    async def write(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> List[str]: ...


class InMemoryKeyValueStore:
    """Dictionary-backed store.

    Values are deep-copied on the way in and on the way out so callers can never
    alias stored state.
    """

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    async def read(self, key: str) -> Optional[Any]:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def write(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore:
    """Store each key as ``<root>/<sanitized key>.json``.

    Args:
        root: Directory holding the JSON documents. Created on first write.
    """

    def __init__(self, root: str | os.PathLike[str]) -> None:
        self._root = Path(root)

    def _path_for(self, key: str) -> Path:
        return self._root / f"{_SAFE_KEY.sub('_', key)}.json"

    async def read(self, key: str) -> Optional[Any]:
        path = self._path_for(key)
        try:
            raw = await asyncio.to_thread(path.read_text, "utf-8")
        except FileNotFoundError:
            return None
        document = json.loads(raw)
        return document.get("value")

    async def write(self, key: str, value: Any) -> None:
        payload = json.dumps({"key": key, "value": value}, ensure_ascii=False, indent=2)
        await asyncio.to_thread(self._atomic_write, self._path_for(key), payload)

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return

    async def keys(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._scan_keys, prefix)

    def _scan_keys(self, prefix: str) -> List[str]:
        if not self._root.exists():
            return []
        found: List[str] = []
        for path in self._root.glob("*.json"):
            try:
                document = json.loads(path.read_text("utf-8"))
            except (OSError, ValueError):
                logger.warning("Skipping unreadable store file %s", path, exc_info=True)
                continue
            key = document.get("key")
            if isinstance(key, str) and key.startswith(prefix):
                found.append(key)
        return sorted(found)

    def _atomic_write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
        logger.debug("Persisted %s (%d bytes)", path.name, len(payload))
