from __future__ import annotations

import json

import httpx
import pytest

from persona_chat.providers.base import ProviderError, ProviderErrorKind, ProviderRuntimeConfig
from persona_chat.providers.gemini_adapter import GeminiAdapter
from persona_chat.providers.openai_adapter import DeepSeekAdapter, OpenAIAdapter
from persona_chat.providers.replicate_adapter import ReplicateAdapter


@pytest.mark.anyio
async def test_replicate_adapter_pinned_version_and_polling():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.method == "POST" and request.url.path == "/v1/predictions":
            body = json.loads(request.content)
            assert body["version"] == "abc123"
            assert body["input"]["prompt"] == "hello"
            assert request.headers["Authorization"] == "Bearer r8_test"
            assert request.headers["Prefer"] == "wait"
            return httpx.Response(
                201,
                json={
                    "id": "p1",
                    "status": "processing",
                    "urls": {"get": "https://api.replicate.com/v1/predictions/p1"},
                },
            )
        if request.method == "GET" and request.url.path == "/v1/predictions/p1":
            return httpx.Response(
                200,
                json={
                    "id": "p1",
                    "status": "succeeded",
                    "output": ["Hi", " there"],
                    "metrics": {"input_token_count": 4, "output_token_count": 2},
                },
            )
        return httpx.Response(404, json={"detail": "not found"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = ReplicateAdapter(http_client=client, poll_interval_sec=0)
        cfg = ProviderRuntimeConfig(
            provider="replicate",
            model_name="owner/llama:abc123",
            base_url="https://api.replicate.com",
            api_key="r8_test",
        )
        result = await adapter.generate(cfg, "hello")

    assert result.content == "Hi there"
    assert result.token_in == 4
    assert result.token_out == 2
    assert seen == [("POST", "/v1/predictions"), ("GET", "/v1/predictions/p1")]


@pytest.mark.anyio
async def test_replicate_adapter_official_model_path():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models/meta/llama-2-13b-chat/predictions"
        assert "version" not in json.loads(request.content)
        return httpx.Response(201, json={"id": "p2", "status": "succeeded", "output": "done"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = ReplicateAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="replicate",
            model_name="meta/llama-2-13b-chat",
            base_url="https://api.replicate.com/v1",
            api_key="r8_test",
        )
        result = await adapter.generate(cfg, "hello")

    assert result.content == "done"


@pytest.mark.anyio
async def test_replicate_402_is_payment_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            402,
            json={"title": "Insufficient credit", "detail": "You have insufficient credit to run this model."},
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = ReplicateAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="replicate",
            model_name="owner/llama:abc123",
            base_url="https://api.replicate.com",
            api_key="r8_test",
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hello")

    assert exc_info.value.is_payment
    assert exc_info.value.code == "PROVIDER_PAYMENT_REQUIRED"
    assert exc_info.value.status_code == 402


@pytest.mark.anyio
async def test_replicate_failed_prediction_is_other_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"id": "p3", "status": "failed", "error": "CUDA out of memory"})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = ReplicateAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="replicate",
            model_name="owner/llama:abc123",
            base_url="https://api.replicate.com",
            api_key="r8_test",
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hello")

    assert exc_info.value.code == "PROVIDER_PREDICTION_FAILED"
    assert exc_info.value.kind is ProviderErrorKind.OTHER


@pytest.mark.anyio
async def test_replicate_requires_api_key():
    adapter = ReplicateAdapter()
    cfg = ProviderRuntimeConfig(
        provider="replicate", model_name="owner/llama:abc", base_url="https://api.replicate.com"
    )
    with pytest.raises(ProviderError) as exc_info:
        await adapter.generate(cfg, "hello")
    assert exc_info.value.code == "API_KEY_REQUIRED"


@pytest.mark.anyio
async def test_gemini_adapter_generate():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1beta/models/gemini-test:generateContent"
        assert request.headers.get("x-goog-api-key") == "gemini-key"
        assert "key" not in request.url.params
        return httpx.Response(
            200,
            json={
                "candidates": [{"content": {"parts": [{"text": "hello "}, {"text": "from gemini"}]}}],
                "usageMetadata": {"promptTokenCount": 2, "candidatesTokenCount": 3},
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = GeminiAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="gemini",
            model_name="gemini-test",
            base_url="https://generativelanguage.googleapis.com",
            api_key="gemini-key",
        )
        result = await adapter.generate(cfg, "hi")

    assert result.content == "hello from gemini"
    assert result.token_in == 2
    assert result.token_out == 3


@pytest.mark.anyio
async def test_gemini_empty_candidates_is_parse_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []}))
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = GeminiAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="gemini",
            model_name="models/gemini-test",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            api_key="gemini-key",
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")
    assert exc_info.value.code == "PROVIDER_PARSE_ERROR"


@pytest.mark.anyio
async def test_openai_adapter_generate():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/chat/completions"
        body = json.loads(request.content)
        assert body["messages"] == [{"role": "user", "content": "hi"}]
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": "hello from openai"}}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 7},
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="openai",
            model_name="gpt-test",
            base_url="https://api.openai.com/v1",
            api_key="sk-test",
        )
        result = await adapter.generate(cfg, "hi")

    assert result.content == "hello from openai"
    assert result.token_in == 5
    assert result.token_out == 7


@pytest.mark.anyio
async def test_openai_quota_exhaustion_is_payment_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={
                "error": {
                    "message": "You exceeded your current quota.",
                    "type": "insufficient_quota",
                    "code": "insufficient_quota",
                }
            },
        )

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="openai", model_name="gpt-test", base_url="https://api.openai.com", api_key="sk-test"
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")

    assert exc_info.value.is_payment


@pytest.mark.anyio
async def test_openai_plain_rate_limit_is_other_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limit reached", "code": "rate_limit"}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="openai", model_name="gpt-test", base_url="https://api.openai.com", api_key="sk-test"
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")

    assert exc_info.value.code == "PROVIDER_RATE_LIMIT"
    assert exc_info.value.kind is ProviderErrorKind.OTHER


@pytest.mark.anyio
async def test_deepseek_402_is_payment_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/chat/completions"
        return httpx.Response(402, json={"error": {"message": "Insufficient Balance"}})

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = DeepSeekAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="deepseek",
            model_name="deepseek-chat",
            base_url="https://api.deepseek.com",
            api_key="sk-test",
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")

    assert exc_info.value.is_payment
    assert exc_info.value.status_code == 402


@pytest.mark.anyio
async def test_bad_request_is_not_payment_failure():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(400, json={"error": {"message": "prompt too long"}})
    )
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="openai", model_name="gpt-test", base_url="https://api.openai.com", api_key="sk-test"
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")

    assert exc_info.value.code == "PROVIDER_BAD_STATUS"
    assert not exc_info.value.is_payment
    assert "prompt too long" in exc_info.value.message


@pytest.mark.anyio
async def test_openai_null_message_is_parse_error():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"choices": [{"message": None}], "usage": None})
    )
    async with httpx.AsyncClient(transport=transport) as client:
        adapter = OpenAIAdapter(http_client=client)
        cfg = ProviderRuntimeConfig(
            provider="openai", model_name="gpt-test", base_url="https://api.openai.com", api_key="sk-test"
        )
        with pytest.raises(ProviderError) as exc_info:
            await adapter.generate(cfg, "hi")

    assert exc_info.value.code == "PROVIDER_PARSE_ERROR"
    assert not exc_info.value.is_payment
