from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from persona_chat.api import chat as chat_api
from persona_chat.api import knowledge as knowledge_api
from persona_chat.core.config import get_settings
from persona_chat.core.logging import setup_logging
from persona_chat.db.base import create_engine, create_sessionmaker, init_db
from persona_chat.memory.history_store import SQLHistoryStore
from persona_chat.services.chat_service import ChatService
from persona_chat.services.generation_service import GenerationOrchestrator
from persona_chat.services.provider_service import ProviderService
from persona_chat.services.rate_limiter import SlidingWindowRateLimiter
from persona_chat.services.recall_service import create_recall_client


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings.db_url)
    sessionmaker = create_sessionmaker(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(engine)
        yield
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    app.state.engine = engine
    app.state.sessionmaker = sessionmaker
    app.state.history_store = SQLHistoryStore(sessionmaker, window=settings.history_window)
    app.state.recall_client = create_recall_client(sessionmaker=sessionmaker, settings=settings)
    app.state.provider_service = ProviderService(settings)
    app.state.generator = GenerationOrchestrator(
        app.state.provider_service, timeout_sec=settings.generation_timeout_sec
    )
    app.state.chat_service = ChatService(
        sessionmaker=sessionmaker,
        history_store=app.state.history_store,
        recall_client=app.state.recall_client,
        generator=app.state.generator,
        settings=settings,
    )
    app.state.rate_limiter = SlidingWindowRateLimiter(
        settings.rate_limit_requests, settings.rate_limit_window_sec
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_api.router)
    app.include_router(knowledge_api.router)

    return app


def run() -> None:
    """Serve the application with uvicorn using configured host and port."""

    import uvicorn

    settings = get_settings()
    uvicorn.run("persona_chat.main:app", host=settings.app_host, port=settings.app_port)


app = create_app()
