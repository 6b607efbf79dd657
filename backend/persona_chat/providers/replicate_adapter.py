from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

from persona_chat.providers.base import (
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    classify_failure,
    join_url,
    require_api_key,
)

TERMINAL_STATUSES = frozenset({"succeeded", "failed", "canceled"})


class ReplicateAdapter(HTTPProviderAdapter):
    """Adapter for the Replicate predictions API.

    ``model_name`` is either ``owner/name:version`` (pinned version) or
    ``owner/name`` (official model, latest version). Predictions are created with
    ``Prefer: wait`` and polled until they reach a terminal status.
    """

    def __init__(
        self,
        timeout_sec: float = 90,
        http_client: Optional[httpx.AsyncClient] = None,
        poll_interval_sec: float = 1.0,
        max_polls: int = 120,
        max_length: int = 2048,
    ) -> None:
        super().__init__(timeout_sec=timeout_sec, http_client=http_client)
        self._poll_interval = poll_interval_sec
        self._max_polls = max_polls
        self._max_length = max_length

    async def generate(self, cfg: ProviderRuntimeConfig, prompt: str) -> LLMResult:
        api_key = require_api_key(cfg.api_key, "Replicate")
        headers = {"Authorization": f"Bearer {api_key}", "Prefer": "wait"}
        url, payload = self._build_request(cfg, prompt)
        prediction = await self._request_json("POST", url, headers=headers, json=payload)

        polls = 0
        while prediction.get("status") not in TERMINAL_STATUSES:
            if polls >= self._max_polls:
                raise ProviderError(
                    "PROVIDER_TIMEOUT", "Replicate prediction did not finish in time.", retryable=True
                )
            poll_url = self._poll_url(cfg, prediction)
            await asyncio.sleep(self._poll_interval)
            prediction = await self._request_json(
                "GET", poll_url, headers={"Authorization": f"Bearer {api_key}"}
            )
            polls += 1

        status = prediction.get("status")
        if status != "succeeded":
            detail = str(prediction.get("error") or f"Prediction {status}.")
            raise ProviderError(
                "PROVIDER_PREDICTION_FAILED",
                f"Replicate prediction {status}: {detail}",
                kind=classify_failure(None, detail),
            )

        metrics = prediction.get("metrics") or {}
        return LLMResult(
            content=self._parse_output(prediction.get("output")),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(metrics, "input_token_count"),
            token_out=self._get_int(metrics, "output_token_count"),
        )

    def _build_request(self, cfg: ProviderRuntimeConfig, prompt: str) -> tuple[str, dict[str, Any]]:
        model_ref = cfg.model_name.strip()
        if not model_ref:
            raise ProviderError("PROVIDER_MODEL_INVALID", "Replicate model must not be empty.")
        model_input = {"prompt": prompt, "max_length": self._max_length}
        if ":" in model_ref:
            _, version = model_ref.split(":", 1)
            url = join_url(cfg.base_url, "/v1/predictions", "Replicate", "/v1")
            return url, {"version": version, "input": model_input}
        url = join_url(cfg.base_url, f"/v1/models/{model_ref}/predictions", "Replicate", "/v1")
        return url, {"input": model_input}

    @staticmethod
    def _poll_url(cfg: ProviderRuntimeConfig, prediction: dict[str, Any]) -> str:
        urls = prediction.get("urls") or {}
        if isinstance(urls, dict) and isinstance(urls.get("get"), str):
            return urls["get"]
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Replicate prediction has no id.")
        return join_url(cfg.base_url, f"/v1/predictions/{prediction_id}", "Replicate", "/v1")

    @staticmethod
    def _parse_output(output: Any) -> str:
        # Language models stream tokens, so output is usually a list of fragments.
        if isinstance(output, str):
            return output
        if isinstance(output, list):
            return "".join(str(item) for item in output if item is not None)
        if output is None:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Replicate returned no output.")
        return str(output)
