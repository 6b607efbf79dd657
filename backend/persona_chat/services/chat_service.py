from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.core.config import Settings
from persona_chat.memory.history_store import HistoryStore, StoreUnavailable
from persona_chat.memory.types import (
    ConversationKey,
    HistoryEntry,
    PersonaContext,
    RecalledPassage,
    scope_tag_for,
)
from persona_chat.repos.persona_repo import PersonaRepo
from persona_chat.services.generation_service import GenerationOrchestrator
from persona_chat.services.prompt_builder import PromptBuilder
from persona_chat.services.recall_service import RecallClient
from persona_chat.services.seeder import HistorySeeder
from persona_chat.services.turn_recorder import TurnRecorder

logger = logging.getLogger(__name__)


class ChatTurnError(RuntimeError):
    """Domain error raised before generation is attempted."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class ChatReply:
    """Outcome of one chat turn."""

    reply_text: str
    recalled: list[RecalledPassage] = field(default_factory=list)


class ChatService:
    """Runs one chat turn: seed, record, recall, compose, generate, record."""

    def __init__(
        self,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        history_store: HistoryStore,
        recall_client: RecallClient,
        generator: GenerationOrchestrator,
        settings: Settings,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._history_store = history_store
        self._recall_client = recall_client
        self._generator = generator
        self._settings = settings
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._seeder = HistorySeeder(history_store)
        self._recorder = TurnRecorder(history_store)

    def set_recall_client(self, recall_client: RecallClient) -> None:
        """Swap recall implementation at runtime."""

        self._recall_client = recall_client

    async def handle_turn(self, persona_id: str, user_id: str, prompt: str) -> ChatReply:
        """Produce and record a persona reply to ``prompt``."""

        user_id = (user_id or "").strip()
        if not user_id:
            raise ChatTurnError("UNAUTHENTICATED", "Unauthorized")
        prompt = (prompt or "").strip()
        if not prompt:
            raise ChatTurnError("VALIDATION", "Prompt must not be empty")
        if len(prompt) > self._settings.max_prompt_chars:
            raise ChatTurnError(
                "VALIDATION",
                f"Prompt must be at most {self._settings.max_prompt_chars} characters",
            )

        persona = await self.get_persona(persona_id)
        key = self.conversation_key(persona.id, user_id)

        await self._with_store_timeout(
            self._seeder.seed_if_empty(key, persona.seed), "seed history"
        )
        await self._with_store_timeout(
            self._recorder.record_user_turn(key, prompt), "record user turn"
        )

        recent_history = await self._read_history_or_empty(key)
        recalled = await self._recall(
            self._prompt_builder.build_recall_query(recent_history), persona
        )
        prompt_text = self._prompt_builder.compose(persona, recalled, recent_history)

        reply_text = await self._generator.generate(prompt_text)

        await self._with_store_timeout(
            self._recorder.record_reply_turn(key, reply_text), "record reply turn"
        )
        return ChatReply(reply_text=reply_text, recalled=recalled or [])

    async def read_history(self, persona_id: str, user_id: str) -> list[HistoryEntry]:
        """Return the recent history window for one conversation."""

        user_id = (user_id or "").strip()
        if not user_id:
            raise ChatTurnError("UNAUTHENTICATED", "Unauthorized")
        persona = await self.get_persona(persona_id)
        key = self.conversation_key(persona.id, user_id)
        return await self._with_store_timeout(
            self._history_store.read_recent_entries(key, self._settings.history_window),
            "read history",
        )

    async def get_persona(self, persona_id: str) -> PersonaContext:
        async with self._sessionmaker() as db:
            persona = await PersonaRepo(db).get_context(persona_id)
        if not persona:
            raise ChatTurnError("PERSONA_NOT_FOUND", "Persona not found")
        return persona

    def conversation_key(self, persona_id: str, user_id: str) -> ConversationKey:
        return ConversationKey(
            persona_id=persona_id,
            user_id=user_id,
            model_name=self._settings.history_model_name,
        )

    async def _read_history_or_empty(self, key: ConversationKey) -> list[str]:
        try:
            return await self._with_store_timeout(
                self._history_store.read_recent(key, self._settings.history_window),
                "read history",
            )
        except StoreUnavailable as exc:
            logger.warning("Continuing without history for %s: %s", key.storage_key, exc)
            return []

    async def _recall(
        self, query_text: str, persona: PersonaContext
    ) -> Optional[list[RecalledPassage]]:
        try:
            return await asyncio.wait_for(
                self._recall_client.recall(
                    query_text, scope_tag_for(persona.id), self._settings.recall_top_k
                ),
                timeout=self._settings.recall_timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("Recall timed out for persona %s; continuing without it", persona.id)
            return None

    async def _with_store_timeout(self, awaitable, stage: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._settings.history_timeout_sec)
        except asyncio.TimeoutError as exc:
            raise StoreUnavailable(f"History store timed out during {stage}.") from exc


def get_chat_service(request: Request) -> ChatService:
    """Dependency to access the chat service from app state."""

    return request.app.state.chat_service
