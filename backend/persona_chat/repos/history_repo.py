from __future__ import annotations

from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import HistoryEntryRow
from persona_chat.utils.time_utils import utc_now


class HistoryRepo:
    """Repository for sorted-set style conversation history."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add_entry(self, storage_key: str, text: str, score: float) -> HistoryEntryRow:
        """Append one member with the given ordering score."""

        entry = HistoryEntryRow(
            storage_key=storage_key,
            score=float(score),
            text=text,
            created_at=utc_now(),
        )
        self._db.add(entry)
        await self._db.flush()
        return entry

    async def has_entries(self, storage_key: str) -> bool:
        result = await self._db.execute(
            select(HistoryEntryRow.id).where(HistoryEntryRow.storage_key == storage_key).limit(1)
        )
        return result.first() is not None

    async def list_recent(self, storage_key: str, limit: int) -> List[HistoryEntryRow]:
        """Return the newest ``limit`` entries in ascending score order."""

        stmt = (
            select(HistoryEntryRow)
            .where(HistoryEntryRow.storage_key == storage_key)
            .order_by(HistoryEntryRow.score.desc(), HistoryEntryRow.id.desc())
            .limit(limit)
        )
        result = await self._db.execute(stmt)
        rows = list(result.scalars())
        rows.reverse()
        return rows
