"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and in-memory collaborators
WHY: Every layer is tested against the same store, broker and agent doubles
HOW: Define pytest markers, fixtures, and seed helpers
"""

import pytest

from bazaar.core.database import create_db_engine, create_session_factory, init_db
from bazaar.core.events import EventBroker
from bazaar.core.store import MarketplaceStore
from bazaar.llm.provider_factory import reset_provider

from tests.fixtures.mock_llm import MockLLMProvider
from tests.fixtures.counterparty import ScriptedCounterparty
from tests.fixtures.data import BUYER_ID, SELLER_ENDPOINT, SELLER_ID


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


@pytest.fixture(autouse=True)
def reset_provider_singleton():
    """
    Reset provider singleton before each test.

    WHAT: Clear provider cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_provider() before and after each test
    """
    reset_provider()
    yield
    reset_provider()


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    db_engine = create_db_engine("sqlite://")
    init_db(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def store(engine):
    return MarketplaceStore(create_session_factory(engine))


@pytest.fixture
def broker():
    return EventBroker(queue_size=64)


@pytest.fixture
def mock_provider():
    return MockLLMProvider()


@pytest.fixture
def counterparty():
    """Seller agent double that agrees at 14 HBAR on its second reply."""
    return ScriptedCounterparty([
        "Hello! Yes, I'm available. The table is 15 HBAR.",
        "I accept 14 HBAR. Deal!",
    ])


@pytest.fixture
def listing(store):
    """OPEN table listing (band 10-15 HBAR) with its WAITING room."""
    return store.create_listing(
        SELLER_ID,
        "White and Black Desk and Chair Set",
        "Sturdy desk with matching chair, barely used",
        10.0,
        15.0,
        category="furniture",
        seller_endpoint=SELLER_ENDPOINT,
    )


@pytest.fixture
def buy_request(store):
    """Buy request for a table with budget 12-18 HBAR."""
    return store.create_buy_request(
        BUYER_ID,
        "black and white table",
        "Looking for a black and white table for my home office",
        12.0,
        18.0,
        category="furniture",
    )
