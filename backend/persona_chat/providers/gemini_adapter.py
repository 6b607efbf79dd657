from __future__ import annotations

from typing import Any

from persona_chat.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    join_url,
    require_api_key,
)


class GeminiAdapter(HTTPProviderAdapter):
    """Adapter for the Google Gemini ``generateContent`` API."""

    async def generate(self, cfg: ProviderRuntimeConfig, prompt: str) -> LLMResult:
        api_key = require_api_key(cfg.api_key, "Gemini")
        model_name = self._normalize_model(cfg.model_name)
        url = join_url(cfg.base_url, f"/v1beta/{model_name}:generateContent", "Gemini", "/v1beta")
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        data = await self._request_json(
            "POST", url, headers={"x-goog-api-key": api_key}, json=payload
        )
        usage = data.get("usageMetadata") or {}
        return LLMResult(
            content=self._parse_content(data),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(usage, "promptTokenCount"),
            token_out=self._get_int(usage, "candidatesTokenCount"),
        )

    @staticmethod
    def _normalize_model(model_name: str) -> str:
        if model_name.startswith("models/"):
            return model_name
        return f"models/{model_name}"

    @staticmethod
    def _parse_content(data: dict[str, Any]) -> str:
        for candidate in data.get("candidates") or []:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if isinstance(content, str) and content.strip():
                return content
            parts = content.get("parts", []) if isinstance(content, dict) else []
            texts = [part.get("text") for part in parts if isinstance(part, dict) and part.get("text")]
            if texts:
                return "".join(texts)
        text = data.get("text")
        if isinstance(text, str) and text.strip():
            return text
        raise ProviderError("PROVIDER_PARSE_ERROR", "No candidates returned by provider.")
