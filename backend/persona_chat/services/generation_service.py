from __future__ import annotations

import asyncio
import logging
from typing import Optional

from persona_chat.providers.base import ProviderError
from persona_chat.services.provider_service import ProviderRole, ProviderService

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
    """Raised when no provider produced a reply; ``cause`` is the primary failure."""

    def __init__(self, cause: ProviderError) -> None:
        super().__init__(cause.message)
        self.cause = cause


class GenerationOrchestrator:
    """Primary-then-fallback generation with reply normalization.

    The fallback provider is used only when the primary fails for billing
    reasons (exhausted credit or quota). Any other primary failure is final.
    """

    def __init__(
        self,
        provider_service: ProviderService,
        timeout_sec: Optional[float] = None,
    ) -> None:
        self._provider_service = provider_service
        self._timeout = timeout_sec

    async def generate(self, prompt_text: str) -> str:
        """Return the normalized reply text or raise ``GenerationError``."""

        try:
            raw = await self._invoke("primary", prompt_text)
        except ProviderError as primary_error:
            if not primary_error.is_payment:
                logger.error(
                    "[MODEL_CALL_ERROR] primary provider failed (%s): %s",
                    primary_error.code,
                    primary_error.message,
                )
                raise GenerationError(primary_error) from primary_error
            raw = await self._fallback(prompt_text, primary_error)
        return normalize_reply(raw)

    async def _fallback(self, prompt_text: str, primary_error: ProviderError) -> str:
        if not self._provider_service.has_fallback():
            logger.error(
                "Primary provider reported a payment failure and no fallback is configured: %s",
                primary_error.message,
            )
            raise GenerationError(primary_error) from primary_error

        logger.warning(
            "Primary provider returned a payment failure (%s); trying fallback provider",
            primary_error.message,
        )
        try:
            raw = await self._invoke("fallback", prompt_text)
        except ProviderError as fallback_error:
            logger.error(
                "Fallback provider failed (%s): %s", fallback_error.code, fallback_error.message
            )
            raise GenerationError(primary_error) from primary_error
        logger.info("Fallback provider succeeded.")
        return raw

    async def _invoke(self, role: ProviderRole, prompt_text: str) -> str:
        adapter, runtime_cfg = self._provider_service.get_generation_config(role)
        try:
            if self._timeout:
                result = await asyncio.wait_for(
                    adapter.generate(runtime_cfg, prompt_text), timeout=self._timeout
                )
            else:
                result = await adapter.generate(runtime_cfg, prompt_text)
        except asyncio.TimeoutError as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT",
                f"{runtime_cfg.provider} generation timed out.",
                retryable=True,
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected %s adapter failure", runtime_cfg.provider)
            raise ProviderError(
                "PROVIDER_PARSE_ERROR",
                f"{runtime_cfg.provider} returned an unusable response: {type(exc).__name__}",
            ) from exc
        return str(result.content or "")


def normalize_reply(raw: str) -> str:
    """Strip commas and keep the first non-blank line of the model output."""

    cleaned = raw.replace(",", "").strip()
    first_line = next((line for line in cleaned.splitlines() if line.strip()), cleaned)
    return first_line.strip()
