"""
Request-scoped access to application services.

WHAT: FastAPI dependencies returning the store, broker, directory and orchestrator
WHY: Routes get the instances wired into the app, so tests can build an app with doubles
HOW: Read from app.state, populated by create_app()
"""

from fastapi import Request

from ...a2a.directory import InMemoryAgentDirectory
from ...core.events import EventBroker
from ...core.store import MarketplaceStore
from ...services.auto_search import AutoSearchOrchestrator


def get_store(request: Request) -> MarketplaceStore:
    return request.app.state.store


def get_broker(request: Request) -> EventBroker:
    return request.app.state.broker


def get_directory(request: Request) -> InMemoryAgentDirectory:
    return request.app.state.directory


def get_orchestrator(request: Request) -> AutoSearchOrchestrator:
    return request.app.state.orchestrator
