"""Confirmation controller - the draft state machine.

    proposed -> presented -> confirmed -> persisted
                          -> edit_requested -> proposed (revision + 1)
    any non-terminal      -> discarded

Every operation takes a Session value and returns a new one; nothing is
written here. A confirmation replaces the labelled section and moves the
draft to persisted in the same returned value, so one save commits both.
"""

import logging
from collections.abc import Sequence
from uuid import UUID

from backend.app.errors import (
    DraftConflictError,
    DraftNotFound,
    ExtractionIncomplete,
    InvalidTransitionError,
    RefinementLoopExceeded,
)
from backend.app.models.common import ConfirmationPhase, SessionStatus
from backend.app.models.drafts import DraftRecord, merge_into_section, missing_required
from backend.app.models.session import Session, ToolInvocation
from backend.app.models.turns import ConfirmationPrompt
from backend.app.orchestration.extractor import StructuredExtractor
from backend.app.utils.metrics import record_draft_transition

logger = logging.getLogger(__name__)

TRANSITIONS: dict[ConfirmationPhase, frozenset[ConfirmationPhase]] = {
    ConfirmationPhase.proposed: frozenset(
        {ConfirmationPhase.presented, ConfirmationPhase.edit_requested, ConfirmationPhase.discarded}
    ),
    ConfirmationPhase.presented: frozenset(
        {ConfirmationPhase.confirmed, ConfirmationPhase.edit_requested, ConfirmationPhase.discarded}
    ),
    ConfirmationPhase.edit_requested: frozenset({ConfirmationPhase.proposed, ConfirmationPhase.discarded}),
    ConfirmationPhase.confirmed: frozenset({ConfirmationPhase.persisted}),
    ConfirmationPhase.persisted: frozenset(),
    ConfirmationPhase.discarded: frozenset(),
}


def _settle_status(session: Session) -> Session:
    """awaiting-confirmation while a presented draft exists, else back to active."""
    if session.status not in (SessionStatus.active, SessionStatus.awaiting_confirmation):
        return session
    waiting = any(d.phase == ConfirmationPhase.presented for d in session.drafts)
    status = SessionStatus.awaiting_confirmation if waiting else SessionStatus.active
    return session.model_copy(update={"status": status}) if status != session.status else session


class ConfirmationController:
    """Drives drafts through the confirmation state machine."""

    def __init__(self, extractor: StructuredExtractor, max_refinement_iterations: int | None = None) -> None:
        self._extractor = extractor
        self._max_iterations = max_refinement_iterations

    def _draft(self, session: Session, draft_id: UUID) -> DraftRecord:
        draft = session.get_draft(draft_id)
        if draft is None:
            raise DraftNotFound(f"Draft {draft_id} not found", session_id=session.id, draft_id=draft_id)
        return draft

    def _move(self, session: Session, draft: DraftRecord, phase: ConfirmationPhase) -> DraftRecord:
        if phase not in TRANSITIONS[draft.phase]:
            raise InvalidTransitionError(
                f"Cannot move {draft.data_type.value} draft from {draft.phase.value} to {phase.value}",
                session_id=session.id,
                draft_id=draft.id,
                data_type=draft.data_type.value,
                phase=draft.phase.value,
            )
        record_draft_transition(draft.data_type.value, phase.value)
        return draft.with_phase(phase)

    def propose(self, session: Session, draft: DraftRecord) -> Session:
        """Add a proposed draft, or replace the open draft it refines.

        Raises:
            DraftConflictError: A different draft of the same type is open
        """
        current = session.open_draft(draft.data_type)
        if current is not None and current.id != draft.id:
            raise DraftConflictError(
                f"A {draft.data_type.value} draft is already open",
                session_id=session.id,
                data_type=draft.data_type.value,
                open_draft_id=current.id,
            )
        if draft.phase != ConfirmationPhase.proposed:
            draft = self._move(session, draft, ConfirmationPhase.proposed)
        else:
            record_draft_transition(draft.data_type.value, ConfirmationPhase.proposed.value)
        return _settle_status(session.with_draft(draft))

    def present(self, session: Session, draft_id: UUID) -> Session:
        """Show a draft to the user.

        Raises:
            ExtractionIncomplete: Required fields are unset; the draft stays proposed
        """
        draft = self._draft(session, draft_id)
        if draft.phase == ConfirmationPhase.presented:
            return session
        missing = missing_required(draft.data_type, draft.fields)
        if missing:
            raise ExtractionIncomplete(
                f"{draft.data_type.value} draft is missing required fields",
                missing_fields=missing,
                session_id=session.id,
                draft_id=draft.id,
                data_type=draft.data_type.value,
            )
        presented = self._move(session, draft, ConfirmationPhase.presented)
        return _settle_status(session.with_draft(presented.model_copy(update={"missing_fields": []})))

    def confirm(self, session: Session, draft_id: UUID) -> Session:
        """Accept a presented draft and write its field bag to the labelled section.

        Re-confirming an already confirmed draft returns the session unchanged.
        """
        draft = self._draft(session, draft_id)
        if draft.phase in (ConfirmationPhase.confirmed, ConfirmationPhase.persisted):
            logger.info(f"[confirmation] draft {draft.id} already confirmed, no-op")
            return session

        confirmed = self._move(session, draft, ConfirmationPhase.confirmed)
        persisted = self._move(session, confirmed, ConfirmationPhase.persisted)
        section = merge_into_section(draft.data_type, session.section(draft.section), draft.fields)
        updated = session.with_section(draft.section, section).with_draft(persisted)
        logger.info(
            f"[confirmation] {draft.data_type.value} r{draft.revision} -> {draft.section.value}",
            extra={
                "structured": {
                    "session_id": str(session.id),
                    "draft_id": str(draft.id),
                    "data_type": draft.data_type.value,
                    "section": draft.section.value,
                }
            },
        )
        return _settle_status(updated)

    async def request_edit(
        self,
        session: Session,
        draft_id: UUID,
        feedback: str,
        tool_results: Sequence[ToolInvocation] = (),
    ) -> Session:
        """Refine an open draft from free-text feedback.

        The refined draft keeps its id, gets revision + 1 and is proposed
        again; the caller presents it once it is complete.

        Raises:
            RefinementLoopExceeded: The configured edit cap was reached
        """
        draft = self._draft(session, draft_id)
        if self._max_iterations is not None and len(draft.edit_history) >= self._max_iterations:
            raise RefinementLoopExceeded(
                f"{draft.data_type.value} draft reached {self._max_iterations} edit(s); edit the fields directly",
                session_id=session.id,
                draft_id=draft.id,
                data_type=draft.data_type.value,
                max_iterations=self._max_iterations,
            )

        requested = self._move(session, draft, ConfirmationPhase.edit_requested)
        refined = await self._extractor.extract(
            draft.data_type,
            session.conversation,
            tool_results,
            previous_draft=requested,
            edit_feedback=feedback,
        )
        proposed = self._move(session, refined, ConfirmationPhase.proposed)
        return _settle_status(session.with_draft(proposed))

    def discard(self, session: Session, draft_id: UUID) -> Session:
        """Abandon a draft. Sections are never touched."""
        draft = self._draft(session, draft_id)
        if draft.phase == ConfirmationPhase.discarded:
            return session
        discarded = self._move(session, draft, ConfirmationPhase.discarded)
        return _settle_status(session.with_draft(discarded))

    @staticmethod
    def prompt_for(draft: DraftRecord, disabled: bool = False) -> ConfirmationPrompt:
        """Confirmation UI payload for a draft."""
        return ConfirmationPrompt(
            draft_id=draft.id,
            data_type=draft.data_type,
            fields=dict(draft.fields),
            revision=draft.revision,
            missing_fields=list(draft.missing_fields),
            disabled=disabled,
        )
