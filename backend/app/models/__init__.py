"""Models package - re-exports for convenience."""

from backend.app.models.common import (
    ConfirmationPhase,
    DataType,
    DraftStatus,
    MessageRole,
    ModuleAction,
    SectionLabel,
    SessionStatus,
    UseCase,
)
from backend.app.models.drafts import (
    BoatSummary,
    CrewRequirements,
    DraftRecord,
    JourneySummary,
    ProfileSummary,
    SkipperProfile,
)
from backend.app.models.intent import IntentResult
from backend.app.models.modules import Module, ModuleProgress, ModuleSpec
from backend.app.models.session import Message, Session, ToolFailure, ToolInvocation
from backend.app.models.tools import RoutingOutcome, ToolRequest

__all__ = [
    # Common
    "ConfirmationPhase",
    "DataType",
    "DraftStatus",
    "MessageRole",
    "ModuleAction",
    "SectionLabel",
    "SessionStatus",
    "UseCase",
    # Drafts
    "BoatSummary",
    "CrewRequirements",
    "DraftRecord",
    "JourneySummary",
    "ProfileSummary",
    "SkipperProfile",
    # Intent
    "IntentResult",
    # Modules
    "Module",
    "ModuleProgress",
    "ModuleSpec",
    # Session
    "Message",
    "Session",
    "ToolFailure",
    "ToolInvocation",
    # Tools
    "RoutingOutcome",
    "ToolRequest",
]
