"""
FastAPI application entry point.

WHAT: Main application setup and wiring
WHY: Initialize all components and routes
HOW: create_app() builds the store, broker, directory, A2A client and orchestrator,
     stores them on app.state and registers middleware, routers and handlers
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.engine import Engine

from .a2a.client import A2AClient
from .a2a.directory import InMemoryAgentDirectory, TemplateAgentDirectory
from .agents.negotiation_loop import MessageSender
from .core import database
from .core.config import settings
from .core.database import close_db, create_session_factory, init_db
from .core.events import EventBroker
from .core.store import MarketplaceStore
from .llm.provider import LLMProvider
from .services.auto_search import AutoSearchOrchestrator
from .services.matcher import CounterpartyMatcher, LLMListingScorer
from .utils.logger import setup_logging, get_logger
from .middleware.error_handler import register_exception_handlers
from .api.v1.router import api_router

# Setup logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    WHAT: Startup and shutdown logic
    WHY: Create tables, then stop background pipelines and close connections cleanly
    HOW: Async context manager for FastAPI lifespan
    """
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    init_db(app.state.engine)
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await app.state.orchestrator.shutdown()
    if app.state.owns_sender:
        await app.state.sender.close()
    close_db(app.state.engine)
    logger.info("Application shutdown complete")


def create_app(
    *,
    engine: Optional[Engine] = None,
    store: Optional[MarketplaceStore] = None,
    broker: Optional[EventBroker] = None,
    directory: Optional[InMemoryAgentDirectory] = None,
    sender: Optional[MessageSender] = None,
    provider: Optional[LLMProvider] = None,
    orchestrator: Optional[AutoSearchOrchestrator] = None,
) -> FastAPI:
    """
    Build the application.

    Every collaborator can be injected; the defaults use the configured database,
    the shared LLM provider and a real A2A client.

    Args:
        engine: SQLAlchemy engine (defaults to DATABASE_URL)
        store: Persistence contract (defaults to a store over `engine`)
        broker: Event broker
        directory: Agent endpoint directory (unknown ids use AGENT_ENDPOINT_TEMPLATE)
        sender: A2A message sender
        provider: LLM provider for matching and negotiation
        orchestrator: Auto-search orchestrator

    Returns:
        Configured FastAPI app
    """
    engine = engine or database.engine
    if store is None:
        factory = database.SessionLocal if engine is database.engine else create_session_factory(engine)
        store = MarketplaceStore(factory)
    broker = broker or EventBroker()
    directory = directory or InMemoryAgentDirectory(fallback=TemplateAgentDirectory())
    owns_sender = sender is None
    sender = sender or A2AClient()
    if orchestrator is None:
        matcher = CounterpartyMatcher(LLMListingScorer(provider))
        orchestrator = AutoSearchOrchestrator(store, broker, matcher, directory, sender, provider)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.state.engine = engine
    app.state.store = store
    app.state.broker = broker
    app.state.directory = directory
    app.state.sender = sender
    app.state.owns_sender = owns_sender
    app.state.orchestrator = orchestrator

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bazaar.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
