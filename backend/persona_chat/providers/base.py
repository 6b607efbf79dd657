from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol

import httpx


@dataclass
class ProviderRuntimeConfig:
    """Runtime configuration needed by an LLM adapter."""

    provider: str
    model_name: str
    base_url: str | None = None
    api_key: str | None = None


@dataclass
class LLMResult:
    """Raw text returned from an LLM generation call."""

    content: str
    model_provider: str
    model_name: str
    token_in: int | None = None
    token_out: int | None = None


class LLMAdapter(Protocol):
    """Adapter interface for LLM providers."""

    async def generate(self, cfg: ProviderRuntimeConfig, prompt: str) -> LLMResult:
        """Generate raw text for a single prompt string."""


class ProviderErrorKind(str, Enum):
    """Coarse failure class used to decide whether a fallback may help."""

    PAYMENT = "payment"
    OTHER = "other"


PAYMENT_STATUS_CODES = frozenset({402})
PAYMENT_MARKERS = (
    "insufficient credit",
    "insufficient balance",
    "insufficient_quota",
    "insufficient funds",
    "billing",
    "payment required",
)


class ProviderError(RuntimeError):
    """Raised when a provider operation fails."""

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
        kind: ProviderErrorKind = ProviderErrorKind.OTHER,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable
        self.status_code = status_code
        self.kind = kind

    @property
    def is_payment(self) -> bool:
        return self.kind is ProviderErrorKind.PAYMENT


def classify_failure(status_code: int | None, *details: str | None) -> ProviderErrorKind:
    """Map a provider status code and error text to a failure kind."""

    if status_code in PAYMENT_STATUS_CODES:
        return ProviderErrorKind.PAYMENT
    haystack = " ".join(detail for detail in details if detail).lower()
    if any(marker in haystack for marker in PAYMENT_MARKERS):
        return ProviderErrorKind.PAYMENT
    return ProviderErrorKind.OTHER


def build_status_error(response: httpx.Response) -> ProviderError:
    """Build a normalized provider error from an HTTP response."""

    status = response.status_code
    message, error_code = _extract_response_detail(response)
    formatted = f"Provider returned {status}: {message}"
    kind = classify_failure(status, message, error_code)
    if kind is ProviderErrorKind.PAYMENT:
        return ProviderError("PROVIDER_PAYMENT_REQUIRED", formatted, status_code=status, kind=kind)
    if status in {408, 429}:
        code = "PROVIDER_TIMEOUT" if status == 408 else "PROVIDER_RATE_LIMIT"
        return ProviderError(code, formatted, retryable=True, status_code=status)
    if status >= 500:
        return ProviderError(
            "PROVIDER_UPSTREAM",
            formatted,
            retryable=True,
            status_code=status,
        )
    return ProviderError("PROVIDER_BAD_STATUS", formatted, status_code=status)


def require_api_key(api_key: Optional[str], provider_name: str) -> str:
    """Return an API key or raise a normalized configuration error."""

    if api_key:
        return api_key
    raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider_name}.")


def join_url(base_url: Optional[str], path: str, provider_name: str, version_prefix: str = "") -> str:
    """Join a base URL and path without doubling a version segment."""

    if not base_url:
        raise ProviderError(
            "PROVIDER_BASE_URL_MISSING", f"Base URL is required for {provider_name}."
        )
    base = base_url.rstrip("/")
    if version_prefix and base.endswith(version_prefix) and path.startswith(version_prefix + "/"):
        return base + path[len(version_prefix) :]
    return base + path


def _extract_response_detail(response: httpx.Response) -> tuple[str, str | None]:
    """Extract a concise error message and optional error code from a payload."""

    fallback = (response.text or "Unknown error from provider.").strip()
    try:
        payload: Any = response.json()
    except ValueError:
        return fallback, None

    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            code = error.get("code") or error.get("type") or error.get("status")
            code_text = str(code) if code is not None else None
            detail = error.get("message") or code_text
            if isinstance(detail, str) and detail.strip():
                return detail.strip(), code_text
        if isinstance(error, str) and error.strip():
            return error.strip(), None
        # Replicate reports problems as RFC 7807 documents.
        for field in ("detail", "message", "title"):
            value = payload.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip(), None
    return fallback, None


class HTTPProviderAdapter:
    """Shared HTTP behavior for provider adapters."""

    def __init__(
        self, timeout_sec: float = 90, http_client: Optional[httpx.AsyncClient] = None
    ) -> None:
        self._timeout = timeout_sec
        self._client = http_client

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self._request(method, url, headers=headers, json=json)
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError("PROVIDER_PARSE_ERROR", "Invalid JSON from provider.") from exc
        if not isinstance(payload, dict):
            raise ProviderError("PROVIDER_PARSE_ERROR", "Provider returned invalid JSON payload.")
        return payload

    async def _request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            if self._client:
                response = await self._client.request(
                    method, url, headers=headers, json=json, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            raise ProviderError(
                "PROVIDER_TIMEOUT", "Provider request timed out.", retryable=True
            ) from exc
        except httpx.RequestError as exc:
            raise ProviderError(
                "PROVIDER_CONNECTION_ERROR",
                "Provider connection failed.",
                retryable=True,
            ) from exc
        if response.status_code >= 400:
            raise build_status_error(response)
        return response

    @staticmethod
    def _get_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None
