"""Session, message and tool invocation models."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from backend.app.models.common import (
    DataType,
    MessageRole,
    SectionLabel,
    SectionValue,
    SessionStatus,
    UseCase,
)
from backend.app.models.drafts import DraftRecord
from backend.app.models.modules import ModuleProgress


class ToolFailure(BaseModel):
    """Typed failure recorded on a tool invocation."""

    model_config = ConfigDict(frozen=True)

    reason: str
    error_type: str
    fatal: bool = False


class ToolInvocation(BaseModel):
    """One executed tool call with its validated input and output or failure."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] | None = None
    failure: ToolFailure | None = None
    latency_ms: float = 0.0
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class Message(BaseModel):
    """Conversation message. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    tool_invocations: tuple[UUID, ...] = ()
    sequence: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class Session(BaseModel):
    """Persistent unit of one user's assistant interaction.

    Mutators return a new Session; the conversation list is replaced by an
    extended copy on append, never edited in place.
    """

    id: UUID = Field(default_factory=uuid4)
    owner_id: UUID | None = None
    conversation: list[Message] = Field(default_factory=list)
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)
    skipper_profile: SectionValue = None
    crew_requirements: SectionValue = None
    journey_details: SectionValue = None
    drafts: list[DraftRecord] = Field(default_factory=list)
    modules: ModuleProgress | None = None
    last_use_case: UseCase | None = None
    status: SessionStatus = SessionStatus.active
    version: int = Field(0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def with_message(
        self,
        role: MessageRole,
        content: str,
        invocations: list[ToolInvocation] | None = None,
        keep_invocations: int | None = None,
    ) -> "Session":
        """Append a message (and the invocations it references).

        With ``keep_invocations`` set, only that many of the most recent
        invocation records are retained; older messages keep their ids.
        """
        invocations = invocations or []
        retained = [*self.tool_invocations, *invocations]
        if keep_invocations is not None:
            retained = retained[-keep_invocations:] if keep_invocations > 0 else []
        message = Message(
            role=role,
            content=content,
            tool_invocations=tuple(inv.id for inv in invocations),
            sequence=len(self.conversation),
        )
        return self.model_copy(
            update={
                "conversation": [*self.conversation, message],
                "tool_invocations": retained,
            }
        )

    def section(self, label: SectionLabel) -> SectionValue:
        return getattr(self, label.value)

    def sections(self) -> dict[SectionLabel, SectionValue]:
        return {label: self.section(label) for label in SectionLabel}

    def with_section(self, label: SectionLabel, value: SectionValue) -> "Session":
        """Replace a labelled section wholesale."""
        return self.model_copy(update={label.value: value})

    def recent_messages(self, limit: int) -> list[Message]:
        """Bounded window of the most recent messages."""
        if limit <= 0:
            return []
        return self.conversation[-limit:]

    def get_draft(self, draft_id: UUID) -> DraftRecord | None:
        for draft in self.drafts:
            if draft.id == draft_id:
                return draft
        return None

    def open_draft(self, data_type: DataType) -> DraftRecord | None:
        """The open (proposed/editing) draft for a data type, if any."""
        for draft in self.drafts:
            if draft.data_type == data_type and draft.is_open:
                return draft
        return None

    def open_drafts(self) -> list[DraftRecord]:
        return [d for d in self.drafts if d.is_open]

    def with_draft(self, draft: DraftRecord) -> "Session":
        """Insert or replace a draft by id."""
        drafts = [d for d in self.drafts if d.id != draft.id]
        drafts.append(draft)
        return self.model_copy(update={"drafts": drafts})

    def invocations_for(self, message: Message) -> list[ToolInvocation]:
        ids = set(message.tool_invocations)
        return [inv for inv in self.tool_invocations if inv.id in ids]
