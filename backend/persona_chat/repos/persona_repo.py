from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import Persona
from persona_chat.memory.types import PersonaContext
from persona_chat.utils.time_utils import utc_now


class PersonaRepo:
    """Read access to persona records; writes exist only for provisioning."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_persona(self, persona_id: str) -> Optional[Persona]:
        result = await self._db.execute(select(Persona).where(Persona.id == persona_id))
        return result.scalar_one_or_none()

    async def get_context(self, persona_id: str) -> Optional[PersonaContext]:
        """Return the chat-facing snapshot of a persona, or None when missing."""

        persona = await self.get_persona(persona_id)
        if not persona:
            return None
        return PersonaContext(
            id=persona.id,
            instruction=persona.instruction,
            seed=persona.seed or "",
            name=persona.name,
        )

    async def upsert_persona(
        self,
        *,
        persona_id: str,
        instruction: str,
        seed: str,
        name: Optional[str] = None,
    ) -> Persona:
        """Insert or overwrite a persona record."""

        existing = await self.get_persona(persona_id)
        if existing:
            existing.name = name
            existing.instruction = instruction
            existing.seed = seed
            await self._db.flush()
            return existing

        persona = Persona(
            id=persona_id,
            name=name,
            instruction=instruction,
            seed=seed,
            created_at=utc_now(),
        )
        self._db.add(persona)
        await self._db.flush()
        return persona
