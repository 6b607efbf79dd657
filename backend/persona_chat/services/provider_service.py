from __future__ import annotations

from typing import Literal, Optional

from persona_chat.core.config import Settings, get_settings
from persona_chat.providers.base import LLMAdapter, ProviderError, ProviderRuntimeConfig
from persona_chat.providers.gemini_adapter import GeminiAdapter
from persona_chat.providers.openai_adapter import DeepSeekAdapter, OpenAIAdapter
from persona_chat.providers.replicate_adapter import ReplicateAdapter

SUPPORTED_PROVIDERS = ("replicate", "gemini", "openai", "deepseek")

ProviderRole = Literal["primary", "fallback"]


class ProviderService:
    """Resolve the primary and fallback generation providers from settings."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, LLMAdapter]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._adapters = adapters or {
            "replicate": ReplicateAdapter(),
            "gemini": GeminiAdapter(),
            "openai": OpenAIAdapter(),
            "deepseek": DeepSeekAdapter(),
        }

    def set_adapters(self, adapters: dict[str, LLMAdapter]) -> None:
        """Override adapter registry (useful for tests)."""

        self._adapters = adapters

    def has_fallback(self) -> bool:
        return bool(self._settings.fallback_provider.strip())

    def get_generation_config(
        self, role: ProviderRole = "primary"
    ) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        """Return the adapter and runtime configuration for one provider role."""

        if role == "primary":
            provider = self._settings.primary_provider
            model_name = self._settings.primary_model
            api_key = self._settings.primary_api_key
        else:
            provider = self._settings.fallback_provider
            model_name = self._settings.fallback_model
            api_key = self._settings.fallback_api_key
            if not provider.strip():
                raise ProviderError("PROVIDER_NOT_READY", "No fallback provider configured.")

        provider = self._normalize_provider(provider)
        model_name = model_name.strip()
        if not model_name:
            raise ProviderError("PROVIDER_NOT_READY", f"No model configured for {role} provider.")
        runtime_cfg = ProviderRuntimeConfig(
            provider=provider,
            model_name=model_name,
            base_url=self._default_base_url(provider),
            api_key=api_key.strip() or None,
        )
        return self._get_adapter(provider), runtime_cfg

    def _get_adapter(self, provider: str) -> LLMAdapter:
        adapter = self._adapters.get(provider)
        if not adapter:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return adapter

    def _default_base_url(self, provider: str) -> str:
        if provider == "replicate":
            return self._settings.replicate_base_url
        if provider == "gemini":
            return self._settings.gemini_base_url
        if provider == "openai":
            return self._settings.openai_base_url
        if provider == "deepseek":
            return self._settings.deepseek_base_url
        raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")

    @staticmethod
    def _normalize_provider(provider: str) -> str:
        normalized = provider.strip().lower()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return normalized
