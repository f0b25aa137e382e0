"""Repository protocol interfaces for session storage."""

from typing import Protocol
from uuid import UUID

from backend.app.models.common import SectionValue
from backend.app.models.session import Session


class SessionRepository(Protocol):
    """Repository for assistant sessions with optimistic concurrency."""

    async def create(
        self,
        owner_id: UUID | None = None,
        *,
        skipper_profile: SectionValue = None,
        crew_requirements: SectionValue = None,
        journey_details: SectionValue = None,
    ) -> Session:
        """Create and store a new session at version 0.

        Args:
            owner_id: Authenticated owner, None for an anonymous session
            skipper_profile: Optional pre-populated section
            crew_requirements: Optional pre-populated section
            journey_details: Optional pre-populated section

        Returns:
            Stored session
        """
        ...

    async def load(self, session_id: UUID) -> Session:
        """Load a session by ID.

        Raises:
            SessionNotFound: Unknown or expired session
        """
        ...

    async def save(self, session: Session, expected_version: int) -> Session:
        """Atomically replace the stored session.

        Conversation, sections, drafts, modules and status are written
        together or not at all.

        Args:
            session: New session value
            expected_version: Version the caller loaded

        Returns:
            Stored session with version expected_version + 1

        Raises:
            VersionConflict: Stored version differs from expected_version
            SessionNotFound: Unknown or expired session
        """
        ...

    async def link_owner(self, session_id: UUID, owner_id: UUID, expected_version: int) -> Session:
        """Attach an owner to an anonymous session.

        Raises:
            VersionConflict: Stored version differs from expected_version
            SessionNotFound: Unknown or expired session
        """
        ...
