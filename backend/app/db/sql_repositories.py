"""SQL implementations of repository interfaces."""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.db.models import AssistantSession
from backend.app.errors import SessionNotFound, VersionConflict
from backend.app.models.common import SectionValue, SessionStatus
from backend.app.models.session import Session


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _columns(session: Session) -> dict[str, Any]:
    payload = session.model_dump(mode="json")
    return {
        "owner_id": session.owner_id,
        "status": session.status.value,
        "conversation": payload["conversation"],
        "tool_invocations": payload["tool_invocations"],
        "skipper_profile": payload["skipper_profile"],
        "crew_requirements": payload["crew_requirements"],
        "journey_details": payload["journey_details"],
        "state": {
            "drafts": payload["drafts"],
            "modules": payload["modules"],
            "last_use_case": payload["last_use_case"],
        },
    }


def _to_session(row: AssistantSession) -> Session:
    state = row.state or {}
    return Session.model_validate(
        {
            "id": row.session_id,
            "owner_id": row.owner_id,
            "conversation": row.conversation,
            "tool_invocations": row.tool_invocations,
            "skipper_profile": row.skipper_profile,
            "crew_requirements": row.crew_requirements,
            "journey_details": row.journey_details,
            "drafts": state.get("drafts", []),
            "modules": state.get("modules"),
            "last_use_case": state.get("last_use_case"),
            "status": row.status,
            "version": row.version,
            "created_at": _aware(row.created_at),
            "updated_at": _aware(row.updated_at),
        }
    )


class SqlSessionRepository:
    """SQL implementation of SessionRepository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], ttl_days: int = 7) -> None:
        self._session_factory = session_factory
        self._ttl = timedelta(days=ttl_days)

    async def create(
        self,
        owner_id: uuid.UUID | None = None,
        *,
        skipper_profile: SectionValue = None,
        crew_requirements: SectionValue = None,
        journey_details: SectionValue = None,
    ) -> Session:
        """Create a new session."""
        now = datetime.now(UTC)
        session = Session(
            owner_id=owner_id,
            skipper_profile=skipper_profile,
            crew_requirements=crew_requirements,
            journey_details=journey_details,
            created_at=now,
            updated_at=now,
        )
        row = AssistantSession(
            session_id=session.id,
            version=session.version,
            created_at=now,
            updated_at=now,
            expires_at=now + self._ttl,
            **_columns(session),
        )
        async with self._session_factory() as db:
            db.add(row)
            await db.commit()
        return session

    async def load(self, session_id: uuid.UUID) -> Session:
        """Load a session by ID."""
        async with self._session_factory() as db:
            row = (
                await db.execute(select(AssistantSession).where(AssistantSession.session_id == session_id))
            ).scalar_one_or_none()

        if row is None:
            raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
        if _aware(row.expires_at) <= datetime.now(UTC):
            raise SessionNotFound(f"Session {session_id} expired", session_id=session_id)
        return _to_session(row)

    async def save(self, session: Session, expected_version: int) -> Session:
        """Conditional UPDATE on (id, version) inside one transaction."""
        now = datetime.now(UTC)
        async with self._session_factory() as db:
            async with db.begin():
                result = await db.execute(
                    update(AssistantSession)
                    .where(
                        AssistantSession.session_id == session.id,
                        AssistantSession.version == expected_version,
                        AssistantSession.expires_at > now,
                    )
                    .values(
                        version=expected_version + 1,
                        updated_at=now,
                        expires_at=now + self._ttl,
                        **_columns(session),
                    )
                )
                if result.rowcount == 1:
                    return session.model_copy(update={"version": expected_version + 1, "updated_at": now})

                current = (
                    await db.execute(
                        select(AssistantSession.version, AssistantSession.expires_at).where(
                            AssistantSession.session_id == session.id
                        )
                    )
                ).one_or_none()

        if current is None or _aware(current.expires_at) <= now:
            raise SessionNotFound(f"Session {session.id} not found", session_id=session.id)
        raise VersionConflict(
            f"Session {session.id} is at version {current.version}, expected {expected_version}",
            session_id=session.id,
            expected_version=expected_version,
            current_version=current.version,
        )

    async def link_owner(self, session_id: uuid.UUID, owner_id: uuid.UUID, expected_version: int) -> Session:
        """Attach an owner and leave awaiting-auth."""
        session = await self.load(session_id)
        status = SessionStatus.active if session.status == SessionStatus.awaiting_auth else session.status
        return await self.save(session.model_copy(update={"owner_id": owner_id, "status": status}), expected_version)
