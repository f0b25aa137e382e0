"""In-memory implementations of repository interfaces."""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import UUID

from backend.app.errors import SessionNotFound, VersionConflict
from backend.app.models.common import SectionValue, SessionStatus
from backend.app.models.session import Session


class InMemorySessionRepository:
    """In-memory implementation of SessionRepository.

    Stores JSON snapshots so callers never share mutable state with the store.
    """

    def __init__(self, ttl_days: int = 7) -> None:
        self._sessions: dict[UUID, str] = {}
        self._lock = asyncio.Lock()
        self._ttl = timedelta(days=ttl_days)

    def _expired(self, session: Session) -> bool:
        return datetime.now(UTC) - session.updated_at > self._ttl

    def _get(self, session_id: UUID) -> Session:
        snapshot = self._sessions.get(session_id)
        if snapshot is None:
            raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
        session = Session.model_validate_json(snapshot)
        if self._expired(session):
            del self._sessions[session_id]
            raise SessionNotFound(f"Session {session_id} expired", session_id=session_id)
        return session

    async def create(
        self,
        owner_id: UUID | None = None,
        *,
        skipper_profile: SectionValue = None,
        crew_requirements: SectionValue = None,
        journey_details: SectionValue = None,
    ) -> Session:
        """Create a new session."""
        session = Session(
            owner_id=owner_id,
            skipper_profile=skipper_profile,
            crew_requirements=crew_requirements,
            journey_details=journey_details,
        )
        async with self._lock:
            self._sessions[session.id] = session.model_dump_json()
        return session

    async def load(self, session_id: UUID) -> Session:
        """Load a session by ID."""
        async with self._lock:
            return self._get(session_id)

    async def save(self, session: Session, expected_version: int) -> Session:
        """Replace the stored session if its version matches."""
        async with self._lock:
            current = self._get(session.id)
            if current.version != expected_version:
                raise VersionConflict(
                    f"Session {session.id} is at version {current.version}, expected {expected_version}",
                    session_id=session.id,
                    expected_version=expected_version,
                    current_version=current.version,
                )
            stored = session.model_copy(update={"version": expected_version + 1, "updated_at": datetime.now(UTC)})
            self._sessions[session.id] = stored.model_dump_json()
            return stored

    async def link_owner(self, session_id: UUID, owner_id: UUID, expected_version: int) -> Session:
        """Attach an owner and leave awaiting-auth."""
        session = await self.load(session_id)
        status = SessionStatus.active if session.status == SessionStatus.awaiting_auth else session.status
        return await self.save(session.model_copy(update={"owner_id": owner_id, "status": status}), expected_version)
