from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class APIModel(BaseModel):
    """Base for chat payloads; accepts domain dataclasses via ``from_attributes``."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class ChatRequest(APIModel):
    """Inbound chat message for a persona."""

    prompt: str = Field(max_length=20000)


class HistoryEntryOut(APIModel):
    text: str
    order: float


class HistoryResponse(APIModel):
    """Recent conversation window, oldest first."""

    entries: List[HistoryEntryOut]


class KnowledgeIndexRequest(APIModel):
    """Passages to add to a persona's recall scope."""

    passages: List[str] = Field(min_length=1, max_length=500)


class KnowledgeIndexResponse(APIModel):
    scope_tag: str
    indexed: int
