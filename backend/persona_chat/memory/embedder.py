from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any, Optional

import httpx

from persona_chat.core.config import Settings

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"[\w-]+|[^\w\s]", re.UNICODE)
SHORTENABLE_MODEL_PREFIX = "text-embedding-3"
# Fixed output sizes of models that ignore the "dimensions" request field.
FIXED_MODEL_DIMENSIONS = {"text-embedding-ada-002": 1536}


class EmbeddingError(RuntimeError):
    """Raised when embedding generation fails."""


class Embedder(ABC):
    """Turns text into fixed-size vectors."""

    provider: str
    model_name: str
    dimension: int

    @abstractmethod
    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate vectors for each text input."""

    async def embed_query(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        if len(vectors) != 1:
            raise EmbeddingError("Expected exactly one query vector")
        return vectors[0]


class DeterministicEmbedder(Embedder):
    """Offline feature-hashing embedder for local runs and tests."""

    provider = "deterministic"

    def __init__(self, dimension: int, model_name: str = "deterministic-v1") -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._embed_single(text) for text in texts]

    def _embed_single(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        tokens = _TOKEN_PATTERN.findall(text.casefold())
        if not tokens:
            vector[0] = 1.0
            return vector

        for token in tokens:
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            index = int.from_bytes(digest[:4], byteorder="big") % self.dimension
            vector[index] += 1.0 if digest[4] & 1 == 0 else -1.0
        return normalize_vector(vector)


class OpenAIEmbedder(Embedder):
    """Embeddings from an OpenAI-compatible ``/v1/embeddings`` endpoint."""

    provider = "openai"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model_name: str,
        dimension: int,
        timeout_sec: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        if not api_key.strip():
            raise EmbeddingError("OpenAI embedding API key is empty")
        self.model_name = model_name
        self.dimension = int(dimension)
        self._timeout_sec = timeout_sec
        self._api_key = api_key
        self._client = http_client
        base = base_url.rstrip("/")
        if base.endswith("/v1"):
            base = base[:-3]
        self._endpoint = f"{base}/v1/embeddings"

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        payload: dict[str, Any] = {"model": self.model_name, "input": list(texts)}
        if self.model_name.startswith(SHORTENABLE_MODEL_PREFIX):
            # text-embedding-3 models truncate to the requested size server-side.
            payload["dimensions"] = self.dimension
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            if self._client:
                response = await self._client.post(
                    self._endpoint, json=payload, headers=headers, timeout=self._timeout_sec
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
                    response = await client.post(self._endpoint, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingError("OpenAI embedding request failed") from exc

        return [normalize_vector(vector) for vector in self._parse_embeddings(data, len(texts))]

    def _parse_embeddings(self, payload: Any, expected_size: int) -> list[list[float]]:
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list) or len(rows) != expected_size:
            raise EmbeddingError("Embedding response shape is invalid")

        # The API may return rows out of order; "index" is authoritative when present.
        ordered = sorted(rows, key=lambda row: row.get("index", 0) if isinstance(row, dict) else 0)
        vectors: list[list[float]] = []
        for row in ordered:
            embedding = row.get("embedding") if isinstance(row, dict) else None
            if not isinstance(embedding, list) or len(embedding) != self.dimension:
                raise EmbeddingError("Embedding row is missing or has the wrong dimension")
            try:
                vectors.append([float(value) for value in embedding])
            except (TypeError, ValueError) as exc:
                raise EmbeddingError("Embedding contains non-numeric values") from exc
        return vectors


def create_embedder(settings: Settings) -> Embedder:
    """Build the configured embedder, degrading to the deterministic one."""

    provider = settings.embed_provider.strip().lower()
    if provider == "openai":
        api_key = settings.embed_openai_api_key.strip()
        if api_key:
            model_name = settings.embed_model.strip() or "text-embedding-3-small"
            return OpenAIEmbedder(
                base_url=settings.openai_base_url,
                api_key=api_key,
                model_name=model_name,
                dimension=FIXED_MODEL_DIMENSIONS.get(model_name, settings.embed_dim),
            )
        logger.warning(
            "EMBED_PROVIDER=openai but EMBED_OPENAI_API_KEY is missing; fallback to deterministic"
        )
    elif provider != "deterministic":
        logger.warning("Unknown EMBED_PROVIDER=%s; fallback to deterministic", provider)
    model_name = settings.embed_model.strip() if provider == "deterministic" else ""
    return DeterministicEmbedder(
        dimension=settings.embed_dim, model_name=model_name or "deterministic-v1"
    )


def normalize_vector(vector: list[float]) -> list[float]:
    norm = math.sqrt(sum(item * item for item in vector))
    if norm <= 0:
        return vector
    return [item / norm for item in vector]
