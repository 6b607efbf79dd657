from __future__ import annotations

from typing import Any, Optional

from persona_chat.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    join_url,
    require_api_key,
)


class OpenAIAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible chat completion APIs."""

    provider_label = "OpenAI"
    completions_path = "/v1/chat/completions"
    version_prefix = "/v1"

    async def generate(self, cfg: ProviderRuntimeConfig, prompt: str) -> LLMResult:
        api_key = require_api_key(cfg.api_key, self.provider_label)
        url = join_url(cfg.base_url, self.completions_path, self.provider_label, self.version_prefix)
        payload = {
            "model": cfg.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }
        data = await self._request_json(
            "POST", url, headers={"Authorization": f"Bearer {api_key}"}, json=payload
        )
        content = self._parse_content(data)
        return LLMResult(
            content=content,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_usage_int(data, "prompt_tokens"),
            token_out=self._get_usage_int(data, "completion_tokens"),
        )

    @staticmethod
    def _parse_content(data: dict[str, Any]) -> str:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ProviderError("PROVIDER_PARSE_ERROR", "No choices returned by provider.")
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned empty content.")
        return content

    @staticmethod
    def _get_usage_int(data: dict[str, Any], key: str) -> Optional[int]:
        usage = data.get("usage")
        if not isinstance(usage, dict):
            return None
        value = usage.get(key)
        return int(value) if isinstance(value, int) else None


class DeepSeekAdapter(OpenAIAdapter):
    """Adapter for the DeepSeek OpenAI-compatible API (402 on empty balance)."""

    provider_label = "DeepSeek"
    completions_path = "/chat/completions"
    version_prefix = ""
