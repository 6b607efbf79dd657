from __future__ import annotations

import heapq
import json
import math
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.db.models import RecallPassageRow
from persona_chat.memory.types import PassagePayload, PassageSearchResult
from persona_chat.repos.passage_repo import PassageRepo


class RecallUnavailable(RuntimeError):
    """Raised when the similarity index cannot be reached or is unconfigured."""


class VectorIndex(ABC):
    """Similarity index holding passages tagged with a scope."""

    @abstractmethod
    async def upsert(
        self,
        *,
        items: Sequence[PassagePayload],
        embeddings: Sequence[Sequence[float]],
        embed_provider: str,
        embed_model: str,
    ) -> int:
        """Insert or refresh passages and their vectors; returns rows written."""

    @abstractmethod
    async def search(
        self,
        *,
        scope_tag: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> list[PassageSearchResult]:
        """Return up to ``limit`` nearest passages carrying ``scope_tag``."""


class SQLVectorIndex(VectorIndex):
    """SQL-backed index with in-process cosine similarity."""

    _PAGE_SIZE = 256

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def upsert(
        self,
        *,
        items: Sequence[PassagePayload],
        embeddings: Sequence[Sequence[float]],
        embed_provider: str,
        embed_model: str,
    ) -> int:
        written = 0
        try:
            async with self._sessionmaker() as db:
                async with db.begin():
                    repo = PassageRepo(db)
                    for item, embedding in zip(items, embeddings):
                        vector = [float(value) for value in embedding]
                        norm = math.sqrt(sum(value * value for value in vector))
                        await repo.upsert_passage(
                            passage_id=uuid.uuid4().hex,
                            scope_tag=item.scope_tag,
                            content=item.content,
                            content_hash=item.content_hash,
                            embed_provider=embed_provider,
                            embed_model=embed_model,
                            dim=len(vector),
                            vector_json=json.dumps(vector, separators=(",", ":")),
                            vector_norm=norm if norm > 0 else 1.0,
                        )
                        written += 1
        except SQLAlchemyError as exc:
            raise RecallUnavailable("Local recall index write failed.") from exc
        return written

    async def search(
        self,
        *,
        scope_tag: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> list[PassageSearchResult]:
        """Score every passage in the scope, one page at a time, keeping the best ``limit``."""

        if limit <= 0:
            return []

        query = [float(value) for value in query_embedding]
        query_norm = math.sqrt(sum(value * value for value in query))
        if query_norm <= 0:
            return []

        best: list[tuple[float, int, PassageSearchResult]] = []
        seen = 0
        after_id: Optional[str] = None
        try:
            async with self._sessionmaker() as db:
                repo = PassageRepo(db)
                while True:
                    rows = await repo.list_page(
                        scope_tag=scope_tag, after_id=after_id, limit=self._PAGE_SIZE
                    )
                    for row in rows:
                        result = _score_row(row, query, query_norm)
                        if result is None:
                            continue
                        seen += 1
                        entry = (result.score, -seen, result)
                        if len(best) < limit:
                            heapq.heappush(best, entry)
                        elif entry > best[0]:
                            heapq.heapreplace(best, entry)
                    if len(rows) < self._PAGE_SIZE:
                        break
                    after_id = rows[-1].id
        except SQLAlchemyError as exc:
            raise RecallUnavailable("Local recall index read failed.") from exc

        return [item for _, _, item in sorted(best, key=lambda entry: entry[:2], reverse=True)]


class PineconeVectorIndex(VectorIndex):
    """Remote index speaking the Pinecone data-plane REST API.

    Passages are stored with ``fileName`` (the scope tag) and ``text`` metadata,
    matching how persona knowledge files were uploaded to the index.
    """

    SCOPE_FIELD = "fileName"
    TEXT_FIELDS = ("text", "pageContent", "content")

    def __init__(
        self,
        *,
        host: str,
        api_key: str,
        index_name: str = "",
        namespace: str = "",
        timeout_sec: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not host.strip() or not api_key.strip():
            raise RecallUnavailable("Vector index host and API key are required.")
        base = host.strip().rstrip("/")
        if not base.startswith(("http://", "https://")):
            base = f"https://{base}"
        self._base_url = base
        self._api_key = api_key
        self.index_name = index_name
        self._namespace = namespace
        self._timeout = timeout_sec
        self._client = http_client

    async def upsert(
        self,
        *,
        items: Sequence[PassagePayload],
        embeddings: Sequence[Sequence[float]],
        embed_provider: str,
        embed_model: str,
    ) -> int:
        vectors = [
            {
                "id": f"{item.scope_tag}:{item.content_hash[:32]}",
                "values": [float(value) for value in embedding],
                "metadata": {
                    self.SCOPE_FIELD: item.scope_tag,
                    "text": item.content,
                    "embed_provider": embed_provider,
                    "embed_model": embed_model,
                },
            }
            for item, embedding in zip(items, embeddings)
        ]
        if not vectors:
            return 0
        payload: dict[str, Any] = {"vectors": vectors}
        if self._namespace:
            payload["namespace"] = self._namespace
        data = await self._post("/vectors/upsert", payload)
        count = data.get("upsertedCount")
        return int(count) if isinstance(count, int) else len(vectors)

    async def search(
        self,
        *,
        scope_tag: str,
        query_embedding: Sequence[float],
        limit: int,
    ) -> list[PassageSearchResult]:
        if limit <= 0:
            return []
        payload: dict[str, Any] = {
            "vector": [float(value) for value in query_embedding],
            "topK": limit,
            "includeMetadata": True,
            "filter": {self.SCOPE_FIELD: {"$eq": scope_tag}},
        }
        if self._namespace:
            payload["namespace"] = self._namespace
        data = await self._post("/query", payload)

        results: list[PassageSearchResult] = []
        for match in data.get("matches") or []:
            if not isinstance(match, dict):
                continue
            metadata = match.get("metadata") or {}
            # The server applies the filter; re-check so foreign passages never leak.
            if metadata.get(self.SCOPE_FIELD) != scope_tag:
                continue
            content = self._extract_text(metadata)
            if not content:
                continue
            score = match.get("score")
            results.append(
                PassageSearchResult(
                    item_id=str(match.get("id", "")),
                    content=content,
                    score=float(score) if isinstance(score, (int, float)) else 0.0,
                )
            )
        return results[:limit]

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self._base_url + path
        headers = {"Api-Key": self._api_key}
        try:
            if self._client:
                response = await self._client.post(
                    url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise RecallUnavailable("Vector index request failed.") from exc
        if response.status_code >= 400:
            raise RecallUnavailable(
                f"Vector index returned {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise RecallUnavailable("Vector index returned invalid JSON.") from exc
        if not isinstance(data, dict):
            raise RecallUnavailable("Vector index returned an unexpected payload.")
        return data

    @classmethod
    def _extract_text(cls, metadata: dict[str, Any]) -> str:
        for field in cls.TEXT_FIELDS:
            value = metadata.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return ""


def _cosine_similarity(
    left: list[float], left_norm: float, right: list[float], right_norm: float
) -> float:
    if left_norm <= 0 or right_norm <= 0 or len(left) != len(right):
        return 0.0
    dot = sum(l_value * r_value for l_value, r_value in zip(left, right))
    return dot / (left_norm * right_norm)


def _score_row(
    row: RecallPassageRow, query: list[float], query_norm: float
) -> Optional[PassageSearchResult]:
    try:
        candidate = [float(value) for value in json.loads(row.vector_json)]
    except (json.JSONDecodeError, TypeError, ValueError):
        return None
    if len(candidate) != len(query):
        return None
    return PassageSearchResult(
        item_id=row.id,
        content=row.content,
        score=_cosine_similarity(query, query_norm, candidate, float(row.vector_norm)),
    )
