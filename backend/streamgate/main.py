"""
StreamGate - Main FastAPI Application
Chat-completion gateway that streams model responses as typed events.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from .config import settings
from .database import AsyncSessionLocal, engine, init_db, close_db
from .routers import (
    chat_router,
    conversations_router,
    artifacts_router,
    updates_router
)
from .services.llm_service import get_llm_service
from .services.retrieval_service import NullRetrievalService
from .services.search_service import SearchService
from .services.update_broker import UpdateBroker
from .utils.locks import GenerationLocks


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(name)s %(levelname)s %(message)s"
)
logger = logging.getLogger(__name__)


def configure_state(app: FastAPI, session_factory=AsyncSessionLocal, **overrides) -> None:
    """Attach the shared collaborators the routes resolve from app.state."""
    app.state.session_factory = session_factory
    app.state.llm_factory = overrides.get("llm_factory", get_llm_service)
    app.state.search_service = overrides.get("search_service") or SearchService()
    app.state.retrieval_service = overrides.get("retrieval_service") or NullRetrievalService()
    app.state.locks = overrides.get("locks") or GenerationLocks()
    app.state.broker = overrides.get("broker") or UpdateBroker()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    await init_db(engine)
    if not hasattr(app.state, "session_factory"):
        configure_state(app)
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)

    yield

    await close_db(engine)


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Streaming chat-completion gateway with thinking, artifact and tool channels",
    lifespan=lifespan
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(chat_router)
app.include_router(conversations_router)
app.include_router(artifacts_router)
app.include_router(updates_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "endpoints": {
            "chat": "/api/chat",
            "conversations": "/api/conversations",
            "artifacts": "/api/artifacts",
            "updates": "/api/updates"
        }
    }
