"""Session API - sessions, turns, sections, drafts and onboarding modules."""

import asyncio
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from backend.app.api.auth import get_current_user_id, require_user_id
from backend.app.api.deps import get_engine
from backend.app.errors import SessionNotFound
from backend.app.models.session import Session
from backend.app.models.turns import (
    AdvanceRequest,
    CreateSessionRequest,
    DraftActionResponse,
    EditDraftRequest,
    LinkOwnerRequest,
    ModuleStateResponse,
    SectionsPatch,
    SectionsResponse,
    SessionView,
    TurnRequest,
    TurnResponse,
)
from backend.app.orchestration.engine import AssistantEngine
from backend.app.tools.executor import CancelToken

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])

EngineDep = Annotated[AssistantEngine, Depends(get_engine)]
UserDep = Annotated[uuid.UUID | None, Depends(get_current_user_id)]

# How often a running turn checks whether its client is still connected
DISCONNECT_POLL_SEC = 0.05


async def _check_access(engine: AssistantEngine, session_id: uuid.UUID, user_id: uuid.UUID | None) -> Session:
    """Owned sessions are only visible to their owner; anonymous ones to anyone holding the id."""
    session = await engine.repository.load(session_id)
    if session.owner_id is not None and session.owner_id != user_id:
        raise SessionNotFound(f"Session {session_id} not found", session_id=session_id)
    return session


async def _cancel_on_disconnect(http_request: Request, token: CancelToken, session_id: uuid.UUID) -> None:
    """Cancel the turn once the client goes away."""
    while not token.cancelled:
        if await http_request.is_disconnected():
            logger.info(f"[turns] client disconnected, cancelling turn on {session_id}")
            token.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SEC)


@router.post("", response_model=Session, status_code=status.HTTP_201_CREATED)
async def create_session(request: CreateSessionRequest, engine: EngineDep, user_id: UserDep) -> Session:
    """Create a session, optionally pre-populating sections and starting onboarding."""
    return await engine.create_session(user_id, request)


@router.get("/{session_id}", response_model=SessionView)
async def get_session(session_id: uuid.UUID, engine: EngineDep, user_id: UserDep) -> SessionView:
    await _check_access(engine, session_id, user_id)
    return await engine.get_view(session_id)


@router.post("/{session_id}/turns", response_model=TurnResponse)
async def append_turn(
    session_id: uuid.UUID,
    request: TurnRequest,
    http_request: Request,
    engine: EngineDep,
    user_id: UserDep,
) -> TurnResponse:
    """Append a user message; returns the assistant message and any confirmation prompt.

    A client that disconnects mid-turn cancels it; nothing is written.
    """
    await _check_access(engine, session_id, user_id)
    token = CancelToken()
    watcher = asyncio.create_task(_cancel_on_disconnect(http_request, token, session_id))
    try:
        return await engine.handle_turn(session_id, request.message, token)
    finally:
        watcher.cancel()


@router.get("/{session_id}/sections", response_model=SectionsResponse)
async def get_sections(session_id: uuid.UUID, engine: EngineDep, user_id: UserDep) -> SectionsResponse:
    await _check_access(engine, session_id, user_id)
    return await engine.get_sections(session_id)


@router.patch("/{session_id}/sections", response_model=SectionsResponse)
async def patch_sections(
    session_id: uuid.UUID, patch: SectionsPatch, engine: EngineDep, user_id: UserDep
) -> SectionsResponse:
    """Replace sections directly, e.g. pre-population from a search box."""
    await _check_access(engine, session_id, user_id)
    return await engine.patch_sections(session_id, patch)


@router.post("/{session_id}/drafts/{draft_id}/confirm", response_model=DraftActionResponse)
async def confirm_draft(
    session_id: uuid.UUID, draft_id: uuid.UUID, engine: EngineDep, user_id: UserDep
) -> DraftActionResponse:
    await _check_access(engine, session_id, user_id)
    return await engine.confirm_draft(session_id, draft_id)


@router.post("/{session_id}/drafts/{draft_id}/edit", response_model=DraftActionResponse)
async def edit_draft(
    session_id: uuid.UUID,
    draft_id: uuid.UUID,
    request: EditDraftRequest,
    engine: EngineDep,
    user_id: UserDep,
) -> DraftActionResponse:
    await _check_access(engine, session_id, user_id)
    return await engine.edit_draft(session_id, draft_id, request.feedback)


@router.post("/{session_id}/drafts/{draft_id}/cancel", response_model=DraftActionResponse)
async def cancel_draft(
    session_id: uuid.UUID, draft_id: uuid.UUID, engine: EngineDep, user_id: UserDep
) -> DraftActionResponse:
    await _check_access(engine, session_id, user_id)
    return await engine.cancel_draft(session_id, draft_id)


@router.post("/{session_id}/modules/advance", response_model=ModuleStateResponse)
async def advance_module(
    session_id: uuid.UUID, request: AdvanceRequest, engine: EngineDep, user_id: UserDep
) -> ModuleStateResponse:
    """Skip, Next or Back on the current onboarding module."""
    await _check_access(engine, session_id, user_id)
    return await engine.advance_module(session_id, request.action)


@router.post("/{session_id}/link", response_model=Session)
async def link_owner(
    session_id: uuid.UUID,
    request: LinkOwnerRequest,
    engine: EngineDep,
    user_id: Annotated[uuid.UUID, Depends(require_user_id)],
) -> Session:
    """Attach the authenticated user to an anonymous session."""
    await _check_access(engine, session_id, user_id)
    return await engine.link_owner(session_id, user_id, request.expected_version)
