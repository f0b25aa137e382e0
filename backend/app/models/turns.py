"""Session API request/response schemas and the confirmation UI contract."""

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field

from backend.app.models.common import DataType, ModuleAction, SectionValue, SessionStatus
from backend.app.models.intent import IntentResult
from backend.app.models.modules import Module
from backend.app.models.session import Message, Session, ToolInvocation


class ConfirmationPrompt(BaseModel):
    """What the UI needs to render a draft with confirm/edit/cancel."""

    draft_id: UUID
    data_type: DataType
    fields: dict[str, Any]
    revision: int
    missing_fields: list[str] = Field(default_factory=list)
    actions: list[Literal["confirm", "edit", "cancel"]] = Field(
        default_factory=lambda: ["confirm", "edit", "cancel"]
    )
    disabled: bool = False


class ExtractionResult(BaseModel):
    """Fields the model resolved. In refinement mode, only the changed ones."""

    fields: dict[str, Any] = Field(default_factory=dict)
    cleared: list[str] = Field(default_factory=list)


class CreateSessionRequest(BaseModel):
    skipper_profile: SectionValue = None
    crew_requirements: SectionValue = None
    journey_details: SectionValue = None
    start_onboarding: bool = False


class TurnRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=8000)


class TurnResponse(BaseModel):
    """Result of one user turn."""

    session_id: UUID
    version: int
    status: SessionStatus
    message: Message
    intent: IntentResult
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)
    confirmation: ConfirmationPrompt | None = None
    notices: list[dict[str, Any]] = Field(default_factory=list)


class SectionsResponse(BaseModel):
    session_id: UUID
    version: int
    skipper_profile: SectionValue = None
    crew_requirements: SectionValue = None
    journey_details: SectionValue = None


class SectionsPatch(BaseModel):
    """Direct section replacement. Omitted sections are left untouched."""

    expected_version: int = Field(..., ge=0)
    skipper_profile: SectionValue = None
    crew_requirements: SectionValue = None
    journey_details: SectionValue = None


class EditDraftRequest(BaseModel):
    feedback: str = Field(..., min_length=1, max_length=4000)


class DraftActionResponse(BaseModel):
    session_id: UUID
    version: int
    status: SessionStatus
    draft_id: UUID
    draft_status: str
    confirmation: ConfirmationPrompt | None = None
    missing_fields: list[str] = Field(default_factory=list)
    message: Message | None = None


class AdvanceRequest(BaseModel):
    action: ModuleAction


class ModuleStateResponse(BaseModel):
    session_id: UUID
    version: int
    status: SessionStatus
    current_module: Module | None
    modules: list[Module]
    tool_invocation: ToolInvocation | None = None


class LinkOwnerRequest(BaseModel):
    expected_version: int = Field(..., ge=0)


class SessionView(BaseModel):
    """Session plus the confirmation prompts for its open drafts."""

    session: Session
    confirmations: list[ConfirmationPrompt] = Field(default_factory=list)
