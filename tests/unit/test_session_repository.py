"""Unit tests for the in-memory session repository."""

import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from backend.app.db.inmemory import InMemorySessionRepository
from backend.app.errors import SessionNotFound, VersionConflict
from backend.app.models.common import MessageRole, SessionStatus


@pytest.mark.asyncio
async def test_create_starts_at_version_zero() -> None:
    repo = InMemorySessionRepository()

    session = await repo.create(None, skipper_profile="Weekend sailor")

    assert session.version == 0
    assert session.status == SessionStatus.active
    loaded = await repo.load(session.id)
    assert loaded.skipper_profile == "Weekend sailor"


@pytest.mark.asyncio
async def test_save_increments_version() -> None:
    repo = InMemorySessionRepository()
    session = await repo.create()

    saved = await repo.save(session.with_message(MessageRole.user, "hello"), expected_version=0)

    assert saved.version == 1
    loaded = await repo.load(session.id)
    assert loaded.version == 1
    assert [m.content for m in loaded.conversation] == ["hello"]


@pytest.mark.asyncio
async def test_stale_save_conflicts_and_changes_nothing() -> None:
    repo = InMemorySessionRepository()
    session = await repo.create()
    await repo.save(session.with_message(MessageRole.user, "first"), expected_version=0)

    with pytest.raises(VersionConflict) as exc_info:
        await repo.save(session.with_message(MessageRole.user, "second"), expected_version=0)

    assert exc_info.value.details["current_version"] == 1
    loaded = await repo.load(session.id)
    assert [m.content for m in loaded.conversation] == ["first"]


@pytest.mark.asyncio
async def test_concurrent_saves_exactly_one_wins() -> None:
    repo = InMemorySessionRepository()
    session = await repo.create()

    results = await asyncio.gather(
        repo.save(session.with_message(MessageRole.user, "a"), expected_version=0),
        repo.save(session.with_message(MessageRole.user, "b"), expected_version=0),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, VersionConflict)]
    assert len(conflicts) == 1
    loaded = await repo.load(session.id)
    assert loaded.version == 1
    assert len(loaded.conversation) == 1


@pytest.mark.asyncio
async def test_loaded_sessions_are_independent_copies() -> None:
    repo = InMemorySessionRepository()
    session = await repo.create()

    first = await repo.load(session.id)
    first.conversation.append(first.with_message(MessageRole.user, "sneaky").conversation[0])

    second = await repo.load(session.id)
    assert second.conversation == []


@pytest.mark.asyncio
async def test_unknown_session() -> None:
    repo = InMemorySessionRepository()

    with pytest.raises(SessionNotFound):
        await repo.load(uuid.uuid4())


@pytest.mark.asyncio
async def test_expired_session_is_not_found() -> None:
    repo = InMemorySessionRepository(ttl_days=7)
    session = await repo.create()
    stale = session.model_copy(update={"updated_at": datetime.now(UTC) - timedelta(days=8)})
    repo._sessions[session.id] = stale.model_dump_json()

    with pytest.raises(SessionNotFound, match="expired"):
        await repo.load(session.id)


@pytest.mark.asyncio
async def test_link_owner_leaves_awaiting_auth() -> None:
    repo = InMemorySessionRepository()
    session = await repo.create()
    session = await repo.save(session.model_copy(update={"status": SessionStatus.awaiting_auth}), 0)
    owner_id = uuid.uuid4()

    linked = await repo.link_owner(session.id, owner_id, expected_version=1)

    assert linked.owner_id == owner_id
    assert linked.status == SessionStatus.active
    assert linked.version == 2
