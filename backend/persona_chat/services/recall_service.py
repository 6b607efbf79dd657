from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.core.config import Settings
from persona_chat.memory.embedder import Embedder, EmbeddingError, create_embedder
from persona_chat.memory.types import PassagePayload, PassageSearchResult, RecalledPassage
from persona_chat.memory.vector_index import (
    PineconeVectorIndex,
    RecallUnavailable,
    SQLVectorIndex,
    VectorIndex,
)

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 3


class RecallClient(ABC):
    """Semantic lookup of persona knowledge; a soft dependency of a chat turn."""

    enabled: bool = False

    @abstractmethod
    async def recall(
        self, query_text: str, scope_tag: str, top_k: int = DEFAULT_TOP_K
    ) -> Optional[list[RecalledPassage]]:
        """Return passages similar to ``query_text`` or None when unavailable."""

    @abstractmethod
    async def index_passages(self, scope_tag: str, texts: Iterable[str]) -> int:
        """Embed and store passages under ``scope_tag``."""


class NullRecallClient(RecallClient):
    """Recall disabled or unconfigured."""

    enabled = False

    def __init__(self, reason: str = "recall disabled") -> None:
        self.reason = reason

    async def recall(
        self, query_text: str, scope_tag: str, top_k: int = DEFAULT_TOP_K
    ) -> Optional[list[RecalledPassage]]:
        logger.debug("Recall skipped: %s", self.reason)
        return None

    async def index_passages(self, scope_tag: str, texts: Iterable[str]) -> int:
        raise RecallUnavailable(f"Recall index is not configured ({self.reason}).")


class VectorRecallClient(RecallClient):
    """Embeds the query and searches the vector index within one scope."""

    enabled = True

    def __init__(self, *, embedder: Embedder, vector_index: VectorIndex) -> None:
        self._embedder = embedder
        self._vector_index = vector_index

    async def recall(
        self, query_text: str, scope_tag: str, top_k: int = DEFAULT_TOP_K
    ) -> Optional[list[RecalledPassage]]:
        cleaned_query = query_text.strip()
        if not cleaned_query or top_k <= 0:
            return []

        try:
            query_embedding = await self._embedder.embed_query(cleaned_query)
        except EmbeddingError as exc:
            logger.warning("Recall skipped because query embedding failed: %s", exc)
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Recall failed while embedding query")
            return None

        try:
            results = await self._vector_index.search(
                scope_tag=scope_tag,
                query_embedding=query_embedding,
                limit=top_k * 2,
            )
        except RecallUnavailable as exc:
            logger.warning("WARNING: failed to get vector search results: %s", exc)
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Recall failed while searching vector index")
            return None

        return [RecalledPassage(content=item.content) for item in _dedupe(results, top_k)]

    async def index_passages(self, scope_tag: str, texts: Iterable[str]) -> int:
        payloads = _build_payloads(scope_tag, texts)
        if not payloads:
            return 0
        try:
            embeddings = await self._embedder.embed_texts([item.content for item in payloads])
        except EmbeddingError as exc:
            raise RecallUnavailable("Passage embedding failed.") from exc
        if len(embeddings) != len(payloads):
            raise RecallUnavailable("Embedding count mismatch while indexing passages.")
        return await self._vector_index.upsert(
            items=payloads,
            embeddings=embeddings,
            embed_provider=self._embedder.provider,
            embed_model=self._embedder.model_name,
        )


def create_recall_client(
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> RecallClient:
    """Factory for runtime recall backend selection."""

    mode = settings.recall_mode.strip().lower()
    if mode == "off":
        return NullRecallClient()
    if mode == "local":
        return VectorRecallClient(
            embedder=create_embedder(settings),
            vector_index=SQLVectorIndex(sessionmaker),
        )
    if mode == "pinecone":
        if not settings.vector_index_host.strip() or not settings.vector_index_api_key.strip():
            logger.warning(
                "RECALL_MODE=pinecone but VECTOR_INDEX_HOST or VECTOR_INDEX_API_KEY is not set; "
                "recall disabled"
            )
            return NullRecallClient("vector index not configured")
        return VectorRecallClient(
            embedder=create_embedder(settings),
            vector_index=PineconeVectorIndex(
                host=settings.vector_index_host,
                api_key=settings.vector_index_api_key,
                index_name=settings.vector_index_name,
            ),
        )
    logger.warning("Unknown RECALL_MODE=%s; recall disabled", mode)
    return NullRecallClient(f"unknown mode {mode}")


def get_recall_client(request: Request) -> RecallClient:
    """Dependency to access the recall client from app state."""

    return request.app.state.recall_client


def _build_payloads(scope_tag: str, texts: Iterable[str]) -> list[PassagePayload]:
    payloads: list[PassagePayload] = []
    seen: set[str] = set()
    for text in texts:
        content = text.strip()
        if not content:
            continue
        content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()
        if content_hash in seen:
            continue
        seen.add(content_hash)
        payloads.append(
            PassagePayload(scope_tag=scope_tag, content=content, content_hash=content_hash)
        )
    return payloads


def _dedupe(candidates: Sequence[PassageSearchResult], limit: int) -> list[PassageSearchResult]:
    best_by_content: dict[str, PassageSearchResult] = {}
    for item in candidates:
        key = " ".join(item.content.split()).casefold()
        if not key:
            continue
        current = best_by_content.get(key)
        if current is None or item.score > current.score:
            best_by_content[key] = item
    ranked = sorted(best_by_content.values(), key=lambda row: row.score, reverse=True)
    return ranked[:limit]
