"""Integration tests for the session API routes."""

import asyncio
import uuid
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from backend.app.adapters.platform import FixturePlatformGateway
from backend.app.api.deps import get_engine
from backend.app.config import Settings
from backend.app.db.inmemory import InMemorySessionRepository
from backend.app.errors import SessionBusyError
from backend.app.main import app
from backend.app.models.platform import Leg
from backend.app.orchestration.engine import AssistantEngine, build_engine
from backend.app.tools.executor import BreakerRegistry, ToolConfig


@pytest.fixture
def client(engine: AssistantEngine) -> Iterator[TestClient]:
    """Test client wired to an in-memory engine."""
    app.dependency_overrides[get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


class SlowLegLookupGateway(FixturePlatformGateway):
    """Leg lookups take long enough for a client to walk away."""

    async def find_leg(self, query: str) -> Leg | None:
        await asyncio.sleep(0.2)
        return await super().find_leg(query)


class BusyLocks:
    """Every session is locked by someone else."""

    @asynccontextmanager
    async def hold(self, session_id: uuid.UUID) -> AsyncIterator[None]:
        raise SessionBusyError(f"Session {session_id} is busy", session_id=session_id)
        yield

    async def is_held(self, session_id: uuid.UUID) -> bool:
        return True


def auth(user_id: uuid.UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


def create_session(client: TestClient, headers: dict[str, str] | None = None, **body: object) -> dict:
    response = client.post("/sessions", json=body, headers=headers or {})
    assert response.status_code == 201
    return response.json()


class TestSessions:
    def test_create_anonymous_session(self, client: TestClient) -> None:
        data = create_session(client, crew_requirements="Looking for two crew")

        assert data["owner_id"] is None
        assert data["version"] == 0
        assert data["status"] == "active"
        assert data["crew_requirements"] == "Looking for two crew"

    def test_create_with_onboarding(self, client: TestClient) -> None:
        data = create_session(client, auth(uuid.uuid4()), start_onboarding=True)

        assert [m["id"] for m in data["modules"]["modules"]] == ["journey", "profile", "boat"]
        assert data["version"] == 1

    def test_owned_session_is_hidden_from_other_users(self, client: TestClient) -> None:
        owner = uuid.uuid4()
        data = create_session(client, auth(owner))

        assert client.get(f"/sessions/{data['id']}", headers=auth(owner)).status_code == 200

        response = client.get(f"/sessions/{data['id']}", headers=auth(uuid.uuid4()))
        assert response.status_code == 404
        assert response.json()["error"] == "session_not_found"

        assert client.get(f"/sessions/{data['id']}").status_code == 404

    def test_unknown_session(self, client: TestClient) -> None:
        response = client.get(f"/sessions/{uuid.uuid4()}")

        assert response.status_code == 404

    def test_malformed_bearer_token(self, client: TestClient) -> None:
        response = client.post("/sessions", json={}, headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401


class TestTurns:
    def test_turn_then_confirm_writes_section(self, client: TestClient) -> None:
        session = create_session(client)

        response = client.post(
            f"/sessions/{session['id']}/turns", json={"message": "I want to register for the Baltic leg"}
        )

        assert response.status_code == 200
        turn = response.json()
        assert turn["intent"]["use_case"] == "register"
        assert turn["status"] == "awaiting-confirmation"
        assert turn["message"]["role"] == "assistant"
        draft_id = turn["confirmation"]["draft_id"]
        assert turn["confirmation"]["actions"] == ["confirm", "edit", "cancel"]

        confirmed = client.post(f"/sessions/{session['id']}/drafts/{draft_id}/confirm")

        assert confirmed.status_code == 200
        assert confirmed.json()["draft_status"] == "confirmed"
        sections = client.get(f"/sessions/{session['id']}/sections").json()
        assert sections["journey_details"]["leg_id"] == "leg-baltic-01"

    def test_empty_message_rejected(self, client: TestClient) -> None:
        session = create_session(client)

        response = client.post(f"/sessions/{session['id']}/turns", json={"message": ""})

        assert response.status_code == 422

    def test_fatal_tool_failure_maps_to_502(self, client: TestClient) -> None:
        session = create_session(client)

        response = client.post(
            f"/sessions/{session['id']}/turns", json={"message": "I want to register for leg-nowhere-99"}
        )

        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "tool_invocation_failure"
        assert body["details"]["tool_name"] == "get_leg_details"
        assert client.get(f"/sessions/{session['id']}").json()["session"]["version"] == 0

    def test_edit_then_cancel_draft(self, client: TestClient) -> None:
        session = create_session(client)
        turn = client.post(
            f"/sessions/{session['id']}/turns",
            json={"message": "Help me improve my profile. My name is Jane Sailor and I am a competent crew."},
        ).json()
        draft_id = turn["confirmation"]["draft_id"]

        edited = client.post(
            f"/sessions/{session['id']}/drafts/{draft_id}/edit", json={"feedback": "Change my name to Jane Doe"}
        )

        assert edited.status_code == 200
        assert edited.json()["confirmation"]["fields"]["full_name"] == "Jane Doe"
        assert edited.json()["confirmation"]["revision"] == 2

        cancelled = client.post(f"/sessions/{session['id']}/drafts/{draft_id}/cancel")
        assert cancelled.json()["draft_status"] == "discarded"

        again = client.post(f"/sessions/{session['id']}/drafts/{draft_id}/confirm")
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

    def test_unknown_draft(self, client: TestClient) -> None:
        session = create_session(client)

        response = client.post(f"/sessions/{session['id']}/drafts/{uuid.uuid4()}/confirm")

        assert response.status_code == 404
        assert response.json()["error"] == "draft_not_found"


class TestSectionsAndModules:
    def test_stale_patch_conflicts(self, client: TestClient) -> None:
        session = create_session(client)
        url = f"/sessions/{session['id']}/sections"

        first = client.patch(url, json={"expected_version": 0, "journey_details": {"start_location": "Kiel"}})
        stale = client.patch(url, json={"expected_version": 0, "journey_details": {"start_location": "Oslo"}})

        assert first.status_code == 200
        assert first.json()["version"] == 1
        assert stale.status_code == 409
        assert stale.json()["error"] == "version_conflict"

    def test_next_without_confirmed_draft(self, client: TestClient) -> None:
        owner = uuid.uuid4()
        session = create_session(client, auth(owner), start_onboarding=True)

        response = client.post(
            f"/sessions/{session['id']}/modules/advance", json={"action": "next"}, headers=auth(owner)
        )

        assert response.status_code == 409
        assert response.json()["error"] == "module_action_required"

    def test_skip_advances(self, client: TestClient) -> None:
        owner = uuid.uuid4()
        session = create_session(client, auth(owner), start_onboarding=True)

        response = client.post(
            f"/sessions/{session['id']}/modules/advance", json={"action": "skip"}, headers=auth(owner)
        )

        assert response.status_code == 200
        assert response.json()["current_module"]["id"] == "profile"


class TestLinkOwner:
    def test_link_requires_auth(self, client: TestClient) -> None:
        session = create_session(client)

        response = client.post(f"/sessions/{session['id']}/link", json={"expected_version": 0})

        assert response.status_code == 401

    def test_anonymous_session_waits_for_auth_then_links(self, client: TestClient) -> None:
        session = create_session(client, start_onboarding=True)
        advance = f"/sessions/{session['id']}/modules/advance"
        client.post(advance, json={"action": "skip"})

        waiting = client.post(advance, json={"action": "next"}).json()
        assert waiting["status"] == "awaiting-auth"

        owner = uuid.uuid4()
        linked = client.post(
            f"/sessions/{session['id']}/link",
            json={"expected_version": waiting["version"]},
            headers=auth(owner),
        )

        assert linked.status_code == 200
        assert linked.json()["owner_id"] == str(owner)
        assert linked.json()["status"] == "active"
        # Now owned, so the anonymous caller loses access
        assert client.get(f"/sessions/{session['id']}").status_code == 404


class TestTurnCancellation:
    @pytest.fixture
    def slow_engine(self, settings: Settings, tool_config: ToolConfig) -> AssistantEngine:
        return build_engine(
            settings,
            repository=InMemorySessionRepository(),
            gateway=SlowLegLookupGateway(),
            tool_config=tool_config,
            breakers=BreakerRegistry(),
        )

    @pytest.fixture
    def slow_client(self, slow_engine: AssistantEngine) -> Iterator[TestClient]:
        app.dependency_overrides[get_engine] = lambda: slow_engine
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_disconnected_client_cancels_the_turn(self, slow_client: TestClient) -> None:
        session = create_session(slow_client)

        with patch("starlette.requests.Request.is_disconnected", new=AsyncMock(return_value=True)):
            response = slow_client.post(
                f"/sessions/{session['id']}/turns", json={"message": "I want to register for the Baltic leg"}
            )

        assert response.status_code == 499
        assert response.json()["error"] == "turn_cancelled"
        stored = slow_client.get(f"/sessions/{session['id']}").json()["session"]
        assert stored["version"] == 0
        assert stored["conversation"] == []

    def test_connected_client_finishes_the_turn(self, slow_client: TestClient) -> None:
        session = create_session(slow_client)

        response = slow_client.post(
            f"/sessions/{session['id']}/turns", json={"message": "I want to register for the Baltic leg"}
        )

        assert response.status_code == 200
        assert response.json()["version"] == 1


def test_busy_session_maps_to_409(settings: Settings, tool_config: ToolConfig) -> None:
    repository = InMemorySessionRepository()
    engine = build_engine(
        settings, repository=repository, locks=BusyLocks(), tool_config=tool_config, breakers=BreakerRegistry()
    )
    app.dependency_overrides[get_engine] = lambda: engine
    try:
        client = TestClient(app)
        session = create_session(client)

        response = client.post(f"/sessions/{session['id']}/turns", json={"message": "Help me find sailing trips"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 409
    assert response.json()["error"] == "session_busy"
