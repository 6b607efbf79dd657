from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import RecallPassageRow
from persona_chat.utils.time_utils import utc_now


class PassageRepo:
    """Repository for the local recall index."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def upsert_passage(
        self,
        *,
        passage_id: str,
        scope_tag: str,
        content: str,
        content_hash: str,
        embed_provider: str,
        embed_model: str,
        dim: int,
        vector_json: str,
        vector_norm: float,
    ) -> RecallPassageRow:
        """Insert a passage, or refresh the vector of an identical one in scope."""

        existing = await self._get_by_hash(scope_tag, content_hash)
        if existing:
            existing.content = content
            existing.embed_provider = embed_provider
            existing.embed_model = embed_model
            existing.dim = dim
            existing.vector_json = vector_json
            existing.vector_norm = vector_norm
            await self._db.flush()
            return existing

        row = RecallPassageRow(
            id=passage_id,
            scope_tag=scope_tag,
            content=content,
            content_hash=content_hash,
            embed_provider=embed_provider,
            embed_model=embed_model,
            dim=dim,
            vector_json=vector_json,
            vector_norm=vector_norm,
            created_at=utc_now(),
        )
        self._db.add(row)
        await self._db.flush()
        return row

    async def list_page(
        self, *, scope_tag: str, after_id: Optional[str], limit: int
    ) -> list[RecallPassageRow]:
        """List passages carrying a scope tag in id order, starting after ``after_id``."""

        stmt = select(RecallPassageRow).where(RecallPassageRow.scope_tag == scope_tag)
        if after_id is not None:
            stmt = stmt.where(RecallPassageRow.id > after_id)
        result = await self._db.execute(stmt.order_by(RecallPassageRow.id).limit(limit))
        return list(result.scalars())

    async def _get_by_hash(self, scope_tag: str, content_hash: str) -> Optional[RecallPassageRow]:
        result = await self._db.execute(
            select(RecallPassageRow).where(
                RecallPassageRow.scope_tag == scope_tag,
                RecallPassageRow.content_hash == content_hash,
            )
        )
        return result.scalar_one_or_none()
