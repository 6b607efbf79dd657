import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from persona_chat.core.config import get_settings
from persona_chat.db.base import create_engine, create_sessionmaker, init_db
from persona_chat.main import create_app
from persona_chat.providers.base import LLMResult, ProviderError, ProviderRuntimeConfig
from persona_chat.repos.persona_repo import PersonaRepo


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_persona_chat.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("RECALL_MODE", "local")
    monkeypatch.setenv("EMBED_PROVIDER", "deterministic")
    monkeypatch.setenv("EMBED_DIM", "64")
    monkeypatch.setenv("PRIMARY_PROVIDER", "replicate")
    monkeypatch.setenv("PRIMARY_API_KEY", "r8_testtoken")
    monkeypatch.setenv("FALLBACK_PROVIDER", "gemini")
    monkeypatch.setenv("FALLBACK_API_KEY", "test-gemini-key")
    monkeypatch.setenv("RATE_LIMIT_REQUESTS", "50")
    get_settings.cache_clear()
    app = create_app()
    app.state.primary_stub = StubAdapter(replies=["Nice to meet you, friend"])
    app.state.fallback_stub = StubAdapter(replies=["Fallback says hi"])
    app.state.provider_service.set_adapters(
        {"replicate": app.state.primary_stub, "gemini": app.state.fallback_stub}
    )
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.engine.dispose()


@pytest.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_store.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


async def create_persona(
    sessionmaker,
    persona_id: str = "ada",
    instruction: str = "You are Ada, a curious mathematician.",
    seed: str = "Hello\n\nHow are you",
    name: str | None = None,
) -> None:
    async with sessionmaker() as db:
        async with db.begin():
            await PersonaRepo(db).upsert_persona(
                persona_id=persona_id, instruction=instruction, seed=seed, name=name
            )


class StubAdapter:
    """Adapter stub used to avoid external API calls in tests.

    Replies are consumed in order; an exception instance in the list is raised
    instead. The last item repeats once the list is exhausted.
    """

    def __init__(self, replies: list | None = None) -> None:
        self.replies = list(replies or ["stub reply"])
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, cfg: ProviderRuntimeConfig, prompt: str) -> LLMResult:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, ProviderError):
            raise reply
        return LLMResult(
            content=reply,
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=1,
            token_out=1,
        )
