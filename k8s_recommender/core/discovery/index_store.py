"""
Capability index storage.

Sessions reference the index they were started against by ``index_id``, so
stores keep every version and only move a "current" pointer on refresh.
Supports an in-memory store (development, tests) and a JSON file store.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Literal, Optional

from k8s_recommender.config.config import Config
from k8s_recommender.utils.exceptions import IndexNotAvailable
from k8s_recommender.utils.logger import AgentLogger

from .models import CapabilityIndex

index_store_logger = AgentLogger("K8S_RECOMMENDER_INDEX_STORE")

IndexStoreType = Literal["memory", "file"]

_CURRENT_POINTER = "CURRENT"


class IndexStore(ABC):
    """Versioned storage of capability indexes."""

    @abstractmethod
    async def save(self, index: CapabilityIndex, make_current: bool = True) -> None:
        pass

    @abstractmethod
    async def load(self, index_id: str) -> CapabilityIndex:
        """Load one index version. Raises IndexNotAvailable when unknown."""
        pass

    @abstractmethod
    async def current_id(self) -> Optional[str]:
        pass

    @abstractmethod
    async def list_ids(self) -> List[str]:
        pass

    async def current(self) -> CapabilityIndex:
        index_id = await self.current_id()
        if index_id is None:
            raise IndexNotAvailable(
                "No capability index has been built yet. Run discovery first.",
                {"hint": "discover"},
            )
        return await self.load(index_id)


class MemoryIndexStore(IndexStore):
    def __init__(self) -> None:
        self._indexes: Dict[str, CapabilityIndex] = {}
        self._current: Optional[str] = None

    async def save(self, index: CapabilityIndex, make_current: bool = True) -> None:
        self._indexes[index.index_id] = index
        if make_current:
            self._current = index.index_id

    async def load(self, index_id: str) -> CapabilityIndex:
        index = self._indexes.get(index_id)
        if index is None:
            raise IndexNotAvailable(f"Capability index '{index_id}' is not stored", {"index_id": index_id})
        return index

    async def current_id(self) -> Optional[str]:
        return self._current

    async def list_ids(self) -> List[str]:
        return sorted(self._indexes)


class FileIndexStore(IndexStore):
    """
    One JSON document per index under ``directory``, plus a ``CURRENT``
    pointer file. Loaded indexes are cached; they are immutable.
    """

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)
        self._cache: Dict[str, CapabilityIndex] = {}

    def _path(self, index_id: str) -> Path:
        return self.directory / f"{index_id}.json"

    def _write(self, index: CapabilityIndex, make_current: bool) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(index.index_id)
        tmp = target.with_suffix(".json.tmp")
        tmp.write_text(index.model_dump_json(), encoding="utf-8")
        os.replace(tmp, target)
        if make_current:
            pointer = self.directory / _CURRENT_POINTER
            pointer_tmp = self.directory / f"{_CURRENT_POINTER}.tmp"
            pointer_tmp.write_text(index.index_id, encoding="utf-8")
            os.replace(pointer_tmp, pointer)

    async def save(self, index: CapabilityIndex, make_current: bool = True) -> None:
        await asyncio.to_thread(self._write, index, make_current)
        self._cache[index.index_id] = index

    def _read(self, index_id: str) -> CapabilityIndex:
        path = self._path(index_id)
        if not path.exists():
            raise IndexNotAvailable(f"Capability index '{index_id}' is not stored", {"index_id": index_id})
        return CapabilityIndex.model_validate_json(path.read_text(encoding="utf-8"))

    async def load(self, index_id: str) -> CapabilityIndex:
        if index_id not in self._cache:
            self._cache[index_id] = await asyncio.to_thread(self._read, index_id)
        return self._cache[index_id]

    async def current_id(self) -> Optional[str]:
        pointer = self.directory / _CURRENT_POINTER
        if not pointer.exists():
            return None
        value = pointer.read_text(encoding="utf-8").strip()
        return value or None

    async def list_ids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))


def create_index_store(
    store_type: IndexStoreType = "memory",
    config: Optional[Config] = None,
    directory: Optional[str] = None,
) -> IndexStore:
    """
    Create an index store.

    Args:
        store_type: "memory" or "file"
        config: Optional Config instance (supplies INDEX_DIR)
        directory: Directory override for the file store

    Raises:
        ValueError: If store_type is unknown
    """
    if store_type == "memory":
        index_store_logger.log_structured(
            level="INFO",
            message="Creating in-memory index store",
            extra={"store_type": "memory"},
        )
        return MemoryIndexStore()
    if store_type == "file":
        config = config or Config()
        target = directory or config.INDEX_DIR
        index_store_logger.log_structured(
            level="INFO",
            message="Creating file index store",
            extra={"store_type": "file", "directory": target},
        )
        return FileIndexStore(target)
    raise ValueError(f"Unknown index store type: {store_type}")
