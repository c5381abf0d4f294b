"""
Integration tests for the HTTP API.

WHAT: Listings, buy requests, long-poll, rooms, agent directory and health routes
WHY: Status codes and error bodies are the contract agents code against
HOW: TestClient over create_app() with an in-memory store and scripted collaborators
"""

import pytest
from fastapi.testclient import TestClient

from bazaar.a2a.directory import InMemoryAgentDirectory
from bazaar.api.v1.endpoints import status as status_endpoints
from bazaar.main import create_app
from bazaar.models.matching import MatchScore
from bazaar.services.auto_search import AutoSearchOrchestrator
from bazaar.services.matcher import CounterpartyMatcher

from tests.fixtures.data import BUYER_ID, SELLER_ENDPOINT, SELLER_ID
from tests.fixtures.mock_llm import MockLLMProvider

API = "/api/v1"


class ScoreEverything:
    """Scorer double that rates every open listing 90."""

    async def score(self, buy_request, listings):
        return [MatchScore(listing["id"], 90, "looks right") for listing in listings]


@pytest.fixture
def directory():
    return InMemoryAgentDirectory()


@pytest.fixture
def client(engine, store, broker, directory, counterparty):
    orchestrator = AutoSearchOrchestrator(
        store,
        broker,
        CounterpartyMatcher(ScoreEverything()),
        directory,
        counterparty,
        MockLLMProvider(["Would you take 14 HBAR?"]),
    )
    app = create_app(
        engine=engine,
        store=store,
        broker=broker,
        directory=directory,
        sender=counterparty,
        orchestrator=orchestrator,
    )
    with TestClient(app) as test_client:
        yield test_client


def listing_body(**overrides):
    body = {
        "sellerAgentId": SELLER_ID,
        "title": "White and Black Desk and Chair Set",
        "description": "Sturdy desk with matching chair",
        "category": "furniture",
        "basePrice": 10,
        "expectedPrice": 15,
        "sellerEndpoint": SELLER_ENDPOINT,
    }
    body.update(overrides)
    return body


def buy_request_body(**overrides):
    body = {
        "buyerAgentId": BUYER_ID,
        "title": "black and white table",
        "description": "Looking for a black and white table",
        "minPrice": 12,
        "maxPrice": 18,
    }
    body.update(overrides)
    return body


@pytest.mark.integration
class TestListingsApi:

    def test_create_and_get_listing(self, client):
        response = client.post(f"{API}/listings", json=listing_body())

        assert response.status_code == 201
        listing = response.json()["listing"]
        assert listing["status"] == "OPEN"
        assert listing["roomId"]

        fetched = client.get(f"{API}/listings/{listing['id']}").json()
        assert fetched["roomId"] == listing["roomId"]
        assert fetched["expectedPrice"] == 15

        open_listings = client.get(f"{API}/listings", params={"status": "OPEN"}).json()
        assert open_listings["count"] == 1

    def test_missing_listing(self, client):
        response = client.get(f"{API}/listings/999")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "LISTING_NOT_FOUND"
        assert "timestamp" in body

    def test_invalid_listing(self, client):
        response = client.post(f"{API}/listings", json=listing_body(title="", basePrice=-1))

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


@pytest.mark.integration
class TestBuyRequestsApi:

    def test_min_above_max_rejected_before_search(self, client, store):
        response = client.post(f"{API}/buy-requests", json=buy_request_body(minPrice=20, maxPrice=10))

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        assert store.list_open_buy_requests() == []

    def test_missing_description_rejected(self, client):
        body = buy_request_body()
        del body["description"]
        assert client.post(f"{API}/buy-requests", json=body).status_code == 400

    def test_search_without_listings_ends_in_no_results(self, client):
        response = client.post(f"{API}/buy-requests", json=buy_request_body())

        assert response.status_code == 201
        created = response.json()
        assert created["success"] is True
        assert created["searchStarted"] is True
        assert created["minPrice"] == 12

        waited = client.get(f"{API}/buy-requests/{created['buyRequestId']}/wait", params={"timeout": 5}).json()
        assert waited["reached"] is True
        assert waited["buyRequest"]["searchStep"] == "no_results"

    def test_full_pipeline_over_http(self, client, counterparty):
        client.post(f"{API}/agents/{SELLER_ID}/endpoint", json={"endpoint": SELLER_ENDPOINT})
        listing = client.post(f"{API}/listings", json=listing_body()).json()["listing"]

        created = client.post(f"{API}/buy-requests", json=buy_request_body()).json()
        waited = client.get(f"{API}/buy-requests/{created['buyRequestId']}/wait", params={"timeout": 10}).json()

        assert waited["reached"] is True
        buy_request = waited["buyRequest"]
        assert buy_request["searchStep"] == "complete"
        assert buy_request["status"] == "CLOSED"
        assert buy_request["negotiationRoomId"] == listing["roomId"]

        room = client.get(f"{API}/negotiation/rooms/{listing['roomId']}").json()
        assert room["status"] == "COMPLETED"
        assert room["agreedPrice"] == 14
        assert len(room["messages"]) == 4
        assert counterparty.calls[0]["endpoint"] == SELLER_ENDPOINT

        assert client.get(f"{API}/listings/{listing['id']}").json()["status"] == "RESERVED"

    def test_unknown_seller_endpoint_ends_in_error(self, client):
        client.post(f"{API}/listings", json=listing_body())

        created = client.post(f"{API}/buy-requests", json=buy_request_body()).json()
        waited = client.get(f"{API}/buy-requests/{created['buyRequestId']}/wait", params={"timeout": 5}).json()

        assert waited["buyRequest"]["searchStep"] == "error"
        assert "No negotiation endpoint registered" in waited["buyRequest"]["searchError"]

    def test_wait_times_out_with_last_projection(self, client, buy_request):
        response = client.get(f"{API}/buy-requests/{buy_request['id']}/wait", params={"timeout": 0.2})

        assert response.status_code == 200
        body = response.json()
        assert body["reached"] is False
        assert body["buyRequest"]["searchStep"] == "idle"

    def test_wait_for_current_step_returns_at_once(self, client, buy_request):
        body = client.get(
            f"{API}/buy-requests/{buy_request['id']}/wait", params={"until": "idle", "timeout": 5}
        ).json()
        assert body["reached"] is True

    def test_wait_on_missing_buy_request(self, client):
        response = client.get(f"{API}/buy-requests/missing/wait", params={"timeout": 0.1})
        assert response.status_code == 404
        assert response.json()["error"] == "BUY_REQUEST_NOT_FOUND"

    def test_get_and_close_buy_request(self, client, buy_request):
        fetched = client.get(f"{API}/buy-requests/{buy_request['id']}").json()
        assert fetched["searchMessage"] == "Waiting to start..."
        assert client.get(f"{API}/buy-requests").json()["count"] == 1

        closed = client.patch(f"{API}/buy-requests/{buy_request['id']}/status", json={"status": "CLOSED"})

        assert closed.status_code == 200
        assert closed.json()["status"] == "CLOSED"
        assert client.get(f"{API}/buy-requests").json()["count"] == 0

    def test_stream_of_missing_buy_request(self, client):
        assert client.get(f"{API}/buy-requests/missing/stream").status_code == 404


@pytest.mark.integration
class TestNegotiationApi:

    @pytest.fixture
    def room_id(self, store, listing):
        store.claim_room(listing["roomId"], BUYER_ID, None)
        return listing["roomId"]

    def test_participant_message(self, client, room_id):
        response = client.post(
            f"{API}/negotiation/rooms/{room_id}/messages",
            json={"senderAgentId": SELLER_ID, "content": "Still available at 15 HBAR", "metadata": {"round": 1}},
        )

        assert response.status_code == 201
        assert response.json()["sender"] == "seller"

        messages = client.get(f"{API}/negotiation/rooms/{room_id}/messages").json()
        assert messages["count"] == 1
        assert messages["messages"][0]["metadata"] == {"round": 1}

    def test_non_participant_forbidden(self, client, room_id):
        response = client.post(
            f"{API}/negotiation/rooms/{room_id}/messages",
            json={"senderAgentId": 99, "content": "let me in"},
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NOT_ROOM_PARTICIPANT"

    def test_closed_room_rejects_messages(self, client, room_id):
        closed = client.patch(f"{API}/negotiation/rooms/{room_id}/status", json={"status": "CANCELLED"})
        assert closed.status_code == 200
        assert closed.json()["status"] == "CANCELLED"

        response = client.post(
            f"{API}/negotiation/rooms/{room_id}/messages",
            json={"senderAgentId": SELLER_ID, "content": "hello?"},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "ROOM_CLOSED"

    def test_waiting_room_cannot_be_closed(self, client, listing):
        response = client.patch(f"{API}/negotiation/rooms/{listing['roomId']}/status", json={"status": "CANCELLED"})
        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_ROOM_TRANSITION"

    def test_room_cannot_be_completed_by_hand(self, client, room_id):
        response = client.patch(f"{API}/negotiation/rooms/{room_id}/status", json={"status": "COMPLETED"})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"
        room = client.get(f"{API}/negotiation/rooms/{room_id}").json()
        assert room["status"] == "ACTIVE"
        assert room["outcome"] is None

    def test_room_cannot_be_activated_by_hand(self, client, listing):
        response = client.patch(f"{API}/negotiation/rooms/{listing['roomId']}/status", json={"status": "ACTIVE"})
        assert response.status_code == 400

    def test_missing_room(self, client):
        assert client.get(f"{API}/negotiation/rooms/missing").status_code == 404
        assert client.get(f"{API}/negotiation/rooms/missing/messages").status_code == 404
        assert client.get(f"{API}/negotiation/rooms/missing/stream").status_code == 404

    def test_agent_rooms(self, client, room_id):
        body = client.get(f"{API}/negotiation/agent/{BUYER_ID}/rooms").json()
        assert body["count"] == 1
        assert body["rooms"][0]["role"] == "buyer"
        assert client.get(f"{API}/negotiation/agent/42/rooms").json()["count"] == 0


@pytest.mark.integration
class TestAgentsApi:

    def test_unregistered_agent(self, client):
        response = client.get(f"{API}/agents/7/endpoint")
        assert response.status_code == 404
        assert response.json()["error"] == "AGENT_ENDPOINT_NOT_FOUND"

    def test_register_then_resolve(self, client, directory):
        registered = client.post(f"{API}/agents/7/endpoint", json={"endpoint": "http://agent7.test/a2a/"})

        assert registered.status_code == 200
        assert registered.json() == {"agentId": 7, "endpoint": "http://agent7.test/a2a/"}
        assert client.get(f"{API}/agents/7/endpoint").json()["endpoint"] == "http://agent7.test/a2a/"
        assert directory.registered() == {7: "http://agent7.test/a2a/"}


@pytest.mark.integration
class TestStatusApi:

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_health_with_provider_up(self, client, monkeypatch):
        monkeypatch.setattr(status_endpoints, "get_provider", lambda: MockLLMProvider())

        body = client.get(f"{API}/health").json()

        assert body["status"] == "healthy"
        assert body["components"]["database"]["available"] is True
        assert body["components"]["auto_search"]["running"] == 0

    def test_health_degraded_when_provider_down(self, client, monkeypatch):
        monkeypatch.setattr(status_endpoints, "get_provider", lambda: MockLLMProvider(should_fail=True))

        body = client.get(f"{API}/health").json()

        assert body["status"] == "degraded"
        assert body["components"]["llm"]["available"] is False

    def test_llm_status(self, client, monkeypatch):
        monkeypatch.setattr(status_endpoints, "get_provider", lambda: MockLLMProvider())

        body = client.get(f"{API}/llm/status").json()

        assert body["llm"]["models"] == ["mock-model"]
        assert body["database"]["available"] is True
