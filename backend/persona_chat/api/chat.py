from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import PlainTextResponse

from persona_chat.memory.history_store import StoreUnavailable
from persona_chat.schemas.chat import ChatRequest, HistoryEntryOut, HistoryResponse
from persona_chat.services.chat_service import ChatService, ChatTurnError, get_chat_service
from persona_chat.services.generation_service import GenerationError
from persona_chat.services.rate_limiter import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])

USER_HEADER = "X-User-Id"


@router.post("/{persona_id}", response_class=PlainTextResponse)
async def post_chat(
    persona_id: str,
    payload: ChatRequest,
    request: Request,
    user_id: Optional[str] = Header(default=None, alias=USER_HEADER),
    chat_service: ChatService = Depends(get_chat_service),
) -> PlainTextResponse:
    """Generate a persona reply and return it as plain text."""

    caller = require_caller(user_id)
    rate_limiter: SlidingWindowRateLimiter = request.app.state.rate_limiter
    if not await rate_limiter.hit(f"{request.url.path}-{caller}"):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate Limit exceeded"
        )

    try:
        reply = await chat_service.handle_turn(persona_id, caller, payload.prompt)
    except ChatTurnError as exc:
        raise HTTPException(status_code=_chat_status(exc.code), detail=exc.message) from exc
    except GenerationError as exc:
        logger.error(
            "[CHAT_POST] generation failed for persona %s (%s, kind=%s)",
            persona_id,
            exc.cause.code,
            exc.cause.kind.value,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not generate a reply.",
        ) from exc
    except StoreUnavailable as exc:
        logger.error("[CHAT_POST] history store unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Error"
        ) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("[CHAT_POST] unexpected failure for persona %s", persona_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Error"
        ) from exc

    return PlainTextResponse(reply.reply_text, media_type="text/plain; charset=utf-8")


@router.get("/{persona_id}/history", response_model=HistoryResponse)
async def get_history(
    persona_id: str,
    user_id: Optional[str] = Header(default=None, alias=USER_HEADER),
    chat_service: ChatService = Depends(get_chat_service),
) -> HistoryResponse:
    """Return the caller's recent conversation with a persona."""

    caller = require_caller(user_id)
    try:
        entries = await chat_service.read_history(persona_id, caller)
    except ChatTurnError as exc:
        raise HTTPException(status_code=_chat_status(exc.code), detail=exc.message) from exc
    except StoreUnavailable as exc:
        logger.error("History read failed for persona %s: %s", persona_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Error"
        ) from exc
    return HistoryResponse(
        entries=[HistoryEntryOut.model_validate(entry) for entry in entries]
    )


def require_caller(user_id: Optional[str]) -> str:
    caller = (user_id or "").strip()
    if not caller:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return caller


def _chat_status(code: str) -> int:
    if code == "UNAUTHENTICATED":
        return status.HTTP_401_UNAUTHORIZED
    if code == "PERSONA_NOT_FOUND":
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST
