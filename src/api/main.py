from __future__ import annotations

import os

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.request_context import RequestContextMiddleware
from api.routes import chat, health
from api.websocket.manager import WebSocketManager
from core.constants import Settings, get_settings
from core.interpreter import FunctionCallInterpreter
from core.session_registry import SessionRegistry
from integrations.generation_client import GenerationClient
from integrations.record_store import AssistanceRequestStore, InMemoryRequestStore, PostgresRequestStore
from utils.client_factory import create_generation_client_from_settings
from utils.db_utils import create_database_pool, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

# Load environment variables from src/.env at module load time
env_path = os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env")
load_dotenv(env_path)


async def _create_record_store(app: FastAPI, settings: Settings) -> AssistanceRequestStore:
    """Build the configured record store. The pool, if any, is kept on app.state."""
    app.state.db_pool = None
    if settings.record_store == "memory":
        logger.warning("Using in-memory record store; assistance requests are not persisted")
        return InMemoryRequestStore()

    app.state.db_pool = await create_database_pool(settings.database_url)
    logger.info("Record store connected to PostgreSQL")
    store = PostgresRequestStore(app.state.db_pool)
    if settings.db_create_schema:
        await store.create_schema()
        logger.info("assistance_requests schema ensured")
    return store


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings = get_settings()

    openai_client = create_generation_client_from_settings(settings)
    logger.info(f"Generation backend: {settings.llm_base_url} (model: {settings.llm_model})")

    app.state.record_store = await _create_record_store(app, settings)
    app.state.session_registry = SessionRegistry()
    app.state.generation_client = GenerationClient.from_settings(openai_client, settings)
    app.state.interpreter = FunctionCallInterpreter(app.state.record_store)

    app.state.ws_manager = WebSocketManager(
        idle_timeout_seconds=settings.ws_idle_timeout_seconds,
        max_connections=settings.ws_max_connections,
    )
    await app.state.ws_manager.start_idle_checker()

    try:
        yield
    finally:
        await app.state.ws_manager.graceful_shutdown()
        await openai_client.close()
        if app.state.db_pool is not None:
            await graceful_pool_close(app.state.db_pool)
        logger.info("Shutdown complete")


app = FastAPI(
    title="Ward Assist Relay",
    version=health.VERSION,
    lifespan=lifespan,
)

app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(health.router, prefix="/api", tags=["health"])
app.include_router(chat.router, prefix="/ws", tags=["websocket"])


if __name__ == "__main__":
    import uvicorn

    configure_uvicorn_logging()
    settings = get_settings()
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        reload_dirs=["src"],
        log_config=None,
    )
