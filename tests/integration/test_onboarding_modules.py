"""Integration tests for onboarding modules driven through the engine."""

import uuid

import pytest

from backend.app.errors import ModuleActionRequired
from backend.app.models.common import DataType, ModuleAction, SessionStatus, UseCase
from backend.app.models.turns import CreateSessionRequest
from backend.app.orchestration.engine import AssistantEngine

ONBOARDING = CreateSessionRequest(start_onboarding=True)


@pytest.mark.asyncio
async def test_journey_module_runs_route_generation_on_next(engine: AssistantEngine) -> None:
    session = await engine.create_session(uuid.uuid4(), ONBOARDING)
    assert session.version == 1

    response = await engine.handle_turn(
        session.id, "We sail from Helsinki to Stockholm via Tallinn, 2026-06-01 to 2026-06-10"
    )

    assert response.confirmation is not None
    assert response.confirmation.data_type == DataType.journey_summary
    assert response.confirmation.fields == {
        "start_location": "Helsinki",
        "end_location": "Stockholm",
        "waypoints": ["Tallinn"],
        "start_date": "2026-06-01",
        "end_date": "2026-06-10",
    }
    await engine.confirm_draft(session.id, response.confirmation.draft_id)

    state = await engine.advance_module(session.id, ModuleAction.next)

    assert state.tool_invocation is not None
    assert state.tool_invocation.tool_name == "generate_journey_route"
    assert state.tool_invocation.output is not None
    assert state.tool_invocation.output["name"] == "Helsinki to Stockholm"
    assert len(state.tool_invocation.output["legs"]) == 2
    assert state.current_module is not None
    assert state.current_module.id == "profile"
    assert state.modules[0].completed and not state.modules[0].skipped

    stored = await engine.repository.load(session.id)
    assert stored.journey_details is not None
    assert stored.conversation[-1].tool_invocations == (state.tool_invocation.id,)


@pytest.mark.asyncio
async def test_profile_module_saves_to_the_owners_account(engine: AssistantEngine) -> None:
    session = await engine.create_session(uuid.uuid4(), ONBOARDING)
    await engine.advance_module(session.id, ModuleAction.skip)

    response = await engine.handle_turn(session.id, "My name is Jane Sailor and I am a competent crew")
    assert response.confirmation is not None
    assert response.confirmation.data_type == DataType.skipper_profile
    await engine.confirm_draft(session.id, response.confirmation.draft_id)

    state = await engine.advance_module(session.id, ModuleAction.next)

    assert state.tool_invocation is not None
    assert state.tool_invocation.tool_name == "update_user_profile"
    assert state.tool_invocation.output is not None
    assert state.current_module is not None
    assert state.current_module.id == "boat"
    sections = await engine.get_sections(session.id)
    assert sections.skipper_profile == {"full_name": "Jane Sailor", "experience_level": 2}


@pytest.mark.asyncio
async def test_unclassified_turn_reports_its_intent_and_feeds_the_module(engine: AssistantEngine) -> None:
    session = await engine.create_session(uuid.uuid4(), ONBOARDING)
    await engine.advance_module(session.id, ModuleAction.skip)

    response = await engine.handle_turn(session.id, "My name is Jane Sailor")

    assert response.intent.use_case == UseCase.unknown
    assert response.confirmation is not None
    assert response.confirmation.data_type == DataType.skipper_profile
    assert response.confirmation.fields["full_name"] == "Jane Sailor"


@pytest.mark.asyncio
async def test_next_without_confirmed_draft_is_rejected(engine: AssistantEngine) -> None:
    session = await engine.create_session(uuid.uuid4(), ONBOARDING)

    with pytest.raises(ModuleActionRequired) as exc_info:
        await engine.advance_module(session.id, ModuleAction.next)

    assert exc_info.value.details["module_id"] == "journey"
    stored = await engine.repository.load(session.id)
    assert stored.version == session.version
    assert engine.sequencer.current_module(stored).id == "journey"  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_anonymous_session_waits_for_auth_then_resumes(engine: AssistantEngine) -> None:
    session = await engine.create_session(None, ONBOARDING)
    await engine.advance_module(session.id, ModuleAction.skip)

    waiting = await engine.advance_module(session.id, ModuleAction.next)

    assert waiting.status == SessionStatus.awaiting_auth
    assert waiting.current_module is not None
    assert waiting.current_module.id == "profile"
    assert waiting.tool_invocation is None

    owner_id = uuid.uuid4()
    linked = await engine.link_owner(session.id, owner_id, expected_version=waiting.version)

    assert linked.owner_id == owner_id
    assert linked.status == SessionStatus.active
    assert linked.version == waiting.version + 1


@pytest.mark.asyncio
async def test_skip_through_every_module_completes_the_session(engine: AssistantEngine) -> None:
    session = await engine.create_session(None, ONBOARDING)

    for _ in range(3):
        state = await engine.advance_module(session.id, ModuleAction.skip)

    assert state.status == SessionStatus.completed
    assert state.current_module is None
    assert all(m.skipped for m in state.modules)

    reopened = await engine.advance_module(session.id, ModuleAction.back)
    assert reopened.status == SessionStatus.active
    assert reopened.current_module is not None
    assert reopened.current_module.id == "boat"


@pytest.mark.asyncio
async def test_boat_module_keeps_the_confirmed_profile(engine: AssistantEngine) -> None:
    session = await engine.create_session(uuid.uuid4(), ONBOARDING)
    await engine.advance_module(session.id, ModuleAction.skip)
    profile = await engine.handle_turn(session.id, "My name is Jane Sailor and I am a competent crew")
    assert profile.confirmation is not None
    await engine.confirm_draft(session.id, profile.confirmation.draft_id)
    await engine.advance_module(session.id, ModuleAction.next)

    boat = await engine.handle_turn(session.id, "My boat is a Hallberg Rassy 42 and my home port is Kiel")
    assert boat.confirmation is not None
    assert boat.confirmation.data_type == DataType.boat_summary
    await engine.confirm_draft(session.id, boat.confirmation.draft_id)

    sections = await engine.get_sections(session.id)
    assert sections.skipper_profile == {
        "full_name": "Jane Sailor",
        "experience_level": 2,
        "boat": {"make_model": "Hallberg Rassy 42", "home_port": "Kiel"},
    }

    state = await engine.advance_module(session.id, ModuleAction.next)
    assert state.tool_invocation is not None
    assert state.tool_invocation.tool_name == "create_boat"
    assert state.status == SessionStatus.completed
