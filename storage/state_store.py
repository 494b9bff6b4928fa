"""Persistent key-value substrate and the workflow snapshot slot built on it."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from loguru import logger
from pydantic import ValidationError

from config.settings import settings
from models.workflow import WorkflowContext


class KeyValueStore(Protocol):
    """Store/load of opaque JSON-compatible blobs."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store.  Used for tests and for session-only state."""

    def __init__(self) -> None:
        self._data: Dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        # Hand out copies so callers cannot mutate what is "on disk".
        return json.loads(json.dumps(value)) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value, default=str))

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStore:
    """
    File-backed store: one JSON file per key under ``data_dir``.

    Writes go to a temporary file first and are moved into place, so a crash
    mid-write leaves the previous snapshot intact.
    """

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self._data_dir = Path(data_dir or settings.state_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in key)
        return self._data_dir / f"{safe}.json"

    async def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Failed to read {path}: {exc}")
            return None

    async def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(value, fh, indent=2, default=str)
        os.replace(tmp, path)

    async def remove(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass


class WorkflowStateStore:
    """Reads and overwrites the serialized WorkflowContext in one fixed slot."""

    def __init__(self, store: KeyValueStore, slot: Optional[str] = None) -> None:
        self._store = store
        self._slot = slot or settings.session_slot

    async def save(self, context: WorkflowContext) -> None:
        await self._store.set(self._slot, context.snapshot())

    async def load(self) -> Optional[WorkflowContext]:
        raw = await self._store.get(self._slot)
        if raw is None:
            return None
        try:
            return WorkflowContext.model_validate(raw)
        except ValidationError as exc:
            logger.error(f"Discarding unreadable workflow snapshot in slot '{self._slot}': {exc}")
            return None

    async def clear(self) -> None:
        await self._store.remove(self._slot)
