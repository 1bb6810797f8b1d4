"""
Session persistence with optimistic concurrency.

Every commit names the revision it was based on. A commit against a stale
revision raises ``SessionConflict``, so a stage that finishes after the
session moved on (for example after ``cancel``) never persists.

Supports an in-memory store (development, tests) and a JSON file store.
Revision checks are serialized by an ``asyncio.Lock``, so a store must be
owned by a single process; two processes sharing one session directory can
overwrite each other's commits.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Literal, Optional

from k8s_recommender.config.config import Config
from k8s_recommender.core.state.base import Session
from k8s_recommender.utils.exceptions import SessionConflict, SessionExpired, SessionNotFound
from k8s_recommender.utils.logger import AgentLogger

session_store_logger = AgentLogger("K8S_RECOMMENDER_SESSION_STORE")

SessionStoreType = Literal["memory", "file"]


class SessionStore(ABC):
    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    @abstractmethod
    async def _read(self, session_id: str) -> Optional[Session]:
        pass

    @abstractmethod
    async def _write(self, session: Session) -> None:
        pass

    @abstractmethod
    async def _remove(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def _ids(self) -> List[str]:
        pass

    async def get(self, session_id: str, now: Optional[datetime] = None) -> Session:
        """
        Raises:
            SessionNotFound: If the id is unknown
            SessionExpired: If the session outlived its TTL (it is purged)
        """
        session = await self._read(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        if session.is_expired(now):
            await self.delete(session_id)
            raise SessionExpired(session_id)
        return session

    async def create(self, session: Session) -> Session:
        async with self._lock:
            if await self._read(session.session_id) is not None:
                raise SessionConflict(session.session_id, 0, session.revision)
            stored = session.model_copy(update={"revision": 1})
            await self._write(stored)
        session_store_logger.log_structured(
            level="DEBUG",
            message="Session created",
            session_id=session.session_id,
        )
        return stored

    async def commit(self, session: Session, expected_revision: Optional[int] = None) -> Session:
        """
        Persist ``session`` if the stored revision still equals
        ``expected_revision`` (defaults to ``session.revision``).

        Returns the stored copy with its revision incremented.

        Raises:
            SessionNotFound, SessionConflict
        """
        expected = session.revision if expected_revision is None else expected_revision
        async with self._lock:
            current = await self._read(session.session_id)
            if current is None:
                raise SessionNotFound(session.session_id)
            if current.revision != expected:
                session_store_logger.log_structured(
                    level="WARNING",
                    message="Rejecting commit based on stale revision",
                    session_id=session.session_id,
                    extra={"expected_revision": expected, "actual_revision": current.revision},
                )
                raise SessionConflict(session.session_id, expected, current.revision)
            stored = session.model_copy(update={"revision": current.revision + 1})
            await self._write(stored)
        return stored

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            await self._remove(session_id)

    async def list_ids(self) -> List[str]:
        return sorted(await self._ids())

    async def purge_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Delete every expired session and return their ids."""
        now = now or datetime.now(timezone.utc)
        purged = []
        for session_id in await self.list_ids():
            session = await self._read(session_id)
            if session is not None and session.is_expired(now):
                await self.delete(session_id)
                purged.append(session_id)
        if purged:
            session_store_logger.log_structured(
                level="INFO",
                message="Purged expired sessions",
                extra={"count": len(purged)},
            )
        return purged


class MemorySessionStore(SessionStore):
    def __init__(self) -> None:
        super().__init__()
        self._sessions: Dict[str, str] = {}

    async def _read(self, session_id: str) -> Optional[Session]:
        payload = self._sessions.get(session_id)
        return Session.model_validate_json(payload) if payload is not None else None

    async def _write(self, session: Session) -> None:
        # Stored serialized so callers never share mutable state with the store
        self._sessions[session.session_id] = session.model_dump_json()

    async def _remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def _ids(self) -> List[str]:
        return list(self._sessions)


class FileSessionStore(SessionStore):
    """One JSON document per session under ``directory``."""

    def __init__(self, directory: str) -> None:
        super().__init__()
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        return self.directory / f"{session_id}.json"

    def _read_sync(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if not path.exists():
            return None
        return Session.model_validate_json(path.read_text(encoding="utf-8"))

    def _write_sync(self, session: Session) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self._path(session.session_id)
        tmp = target.with_suffix(".json.tmp")
        tmp.write_text(session.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, target)

    async def _read(self, session_id: str) -> Optional[Session]:
        return await asyncio.to_thread(self._read_sync, session_id)

    async def _write(self, session: Session) -> None:
        await asyncio.to_thread(self._write_sync, session)

    async def _remove(self, session_id: str) -> None:
        await asyncio.to_thread(self._path(session_id).unlink, missing_ok=True)

    async def _ids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return [p.stem for p in self.directory.glob("*.json")]


def create_session_store(
    store_type: SessionStoreType = "memory",
    config: Optional[Config] = None,
    directory: Optional[str] = None,
) -> SessionStore:
    """
    Create a session store.

    Args:
        store_type: "memory" or "file"
        config: Optional Config instance (supplies SESSION_DIR)
        directory: Directory override for the file store

    Raises:
        ValueError: If store_type is unknown
    """
    if store_type == "memory":
        session_store_logger.log_structured(
            level="INFO",
            message="Creating in-memory session store (development mode)",
            extra={"store_type": "memory"},
        )
        return MemorySessionStore()
    if store_type == "file":
        config = config or Config()
        target = directory or config.SESSION_DIR
        session_store_logger.log_structured(
            level="INFO",
            message="Creating file session store",
            extra={"store_type": "file", "directory": target},
        )
        return FileSessionStore(target)
    raise ValueError(f"Unknown session store type: {store_type}")
