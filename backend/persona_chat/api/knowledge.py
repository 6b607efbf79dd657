from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from persona_chat.api.chat import USER_HEADER, require_caller
from persona_chat.memory.types import scope_tag_for
from persona_chat.memory.vector_index import RecallUnavailable
from persona_chat.schemas.chat import KnowledgeIndexRequest, KnowledgeIndexResponse
from persona_chat.services.chat_service import ChatService, ChatTurnError, get_chat_service
from persona_chat.services.recall_service import RecallClient, get_recall_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])


@router.post("/{persona_id}", response_model=KnowledgeIndexResponse)
async def index_knowledge(
    persona_id: str,
    payload: KnowledgeIndexRequest,
    user_id: Optional[str] = Header(default=None, alias=USER_HEADER),
    chat_service: ChatService = Depends(get_chat_service),
    recall_client: RecallClient = Depends(get_recall_client),
) -> KnowledgeIndexResponse:
    """Add background passages to a persona's long-term recall."""

    caller = require_caller(user_id)
    try:
        persona = await chat_service.get_persona(persona_id)
    except ChatTurnError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc

    scope_tag = scope_tag_for(persona.id)
    try:
        indexed = await recall_client.index_passages(scope_tag, payload.passages)
    except RecallUnavailable as exc:
        logger.warning("Knowledge indexing failed for %s: %s", scope_tag, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recall index is unavailable",
        ) from exc
    logger.info("Indexed %s passages into %s for %s", indexed, scope_tag, caller)
    return KnowledgeIndexResponse(scope_tag=scope_tag, indexed=indexed)
