from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.memory.types import ConversationKey, HistoryEntry
from persona_chat.repos.history_repo import HistoryRepo
from persona_chat.utils.time_utils import epoch_millis

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_WINDOW = 30


class StoreUnavailable(RuntimeError):
    """Raised when the history backend cannot be read or written."""


class HistoryStore(ABC):
    """Append-only chronological log per conversation key."""

    @abstractmethod
    async def append(
        self, key: ConversationKey, text: str, order: Optional[float] = None
    ) -> None:
        """Append one entry; ``order`` defaults to wall-clock milliseconds."""

    @abstractmethod
    async def read_recent_entries(
        self, key: ConversationKey, limit: int = DEFAULT_HISTORY_WINDOW
    ) -> list[HistoryEntry]:
        """Return up to ``limit`` newest entries, oldest first."""

    @abstractmethod
    async def exists(self, key: ConversationKey) -> bool:
        """Return True when the key has at least one entry."""

    async def read_recent(
        self, key: ConversationKey, limit: int = DEFAULT_HISTORY_WINDOW
    ) -> list[str]:
        entries = await self.read_recent_entries(key, limit)
        return [entry.text for entry in entries]


class SQLHistoryStore(HistoryStore):
    """History store with sorted-set semantics on top of a SQL table."""

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        window: int = DEFAULT_HISTORY_WINDOW,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._window = max(1, window)

    async def append(
        self, key: ConversationKey, text: str, order: Optional[float] = None
    ) -> None:
        score = epoch_millis() if order is None else float(order)
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    await HistoryRepo(db).add_entry(key.storage_key, text, score)
        except (SQLAlchemyError, OSError) as exc:
            logger.error("History write failed for %s: %s", key.storage_key, exc)
            raise StoreUnavailable("History store write failed.") from exc

    async def read_recent_entries(
        self, key: ConversationKey, limit: int = DEFAULT_HISTORY_WINDOW
    ) -> list[HistoryEntry]:
        if limit <= 0:
            return []
        bounded = min(limit, self._window)
        try:
            async with self._sessionmaker() as db:
                rows = await HistoryRepo(db).list_recent(key.storage_key, bounded)
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("History read failed for %s: %s", key.storage_key, exc)
            raise StoreUnavailable("History store read failed.") from exc
        return [HistoryEntry(text=row.text, order=row.score) for row in rows]

    async def exists(self, key: ConversationKey) -> bool:
        try:
            async with self._sessionmaker() as db:
                return await HistoryRepo(db).has_entries(key.storage_key)
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable("History store lookup failed.") from exc
