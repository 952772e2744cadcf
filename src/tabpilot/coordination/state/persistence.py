"""
Persistence of the message store.

The engine never waits on storage: ``StatePersister.schedule`` starts a
background save of the latest snapshot and logs failures. Saves are
serialized so an older snapshot never overwrites a newer one.
"""

import asyncio
import copy
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

STATE_KEY = "tabpilot_state"


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    async def save(self, key: str, data: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass


class InMemoryStorageBackend(StorageBackend):
    def __init__(self):
        self.data: Dict[str, Dict[str, Any]] = {}

    async def save(self, key: str, data: Dict[str, Any]) -> None:
        self.data[key] = copy.deepcopy(data)

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        stored = self.data.get(key)
        return copy.deepcopy(stored) if stored is not None else None

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self.data


class FileStorageBackend(StorageBackend):
    """One JSON file per key under ``base_path``."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_path / f"{key}.json"

    async def save(self, key: str, data: Dict[str, Any]) -> None:
        file_path = self._path(key)
        tmp_path = file_path.with_suffix(".json.tmp")
        payload = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(file_path)
            logger.debug(f"Saved state to {file_path}")
        except OSError as e:
            logger.error(f"Failed to save state to {file_path}: {e}")
            raise

    async def load(self, key: str) -> Optional[Dict[str, Any]]:
        file_path = self._path(key)
        if not file_path.exists():
            return None
        try:
            return json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt state file {file_path}: {e}")
            return None

    async def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    async def exists(self, key: str) -> bool:
        return self._path(key).exists()


def snapshot_checksum(snapshot: Dict[str, Any]) -> str:
    data_str = json.dumps(snapshot, sort_keys=True, default=str)
    return hashlib.sha256(data_str.encode()).hexdigest()


class StatePersister:
    """Fire-and-forget saving of store snapshots."""

    def __init__(self, backend: StorageBackend, key: str = STATE_KEY):
        self.backend = backend
        self.key = key
        self._lock = asyncio.Lock()
        self._pending: List[asyncio.Task] = []
        self._last_checksum: Optional[str] = None

    def schedule(self, snapshot: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Start saving ``snapshot`` in the background.

        Returns None when no event loop is running; the next scheduled save
        carries the change.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop; deferring state save")
            return None
        data = copy.deepcopy(snapshot)
        task = loop.create_task(self._save(data))
        self._pending.append(task)
        task.add_done_callback(self._pending.remove)
        return task

    async def save_now(self, snapshot: Dict[str, Any]) -> None:
        await self._save(copy.deepcopy(snapshot))

    async def _save(self, snapshot: Dict[str, Any]) -> None:
        checksum = snapshot_checksum(snapshot)
        async with self._lock:
            if checksum == self._last_checksum:
                return
            try:
                await self.backend.save(self.key, snapshot)
                self._last_checksum = checksum
            except Exception as e:
                logger.error(f"Background state save failed: {e}")

    async def load(self) -> Optional[Dict[str, Any]]:
        return await self.backend.load(self.key)

    async def flush(self) -> None:
        """Wait for every scheduled save to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
