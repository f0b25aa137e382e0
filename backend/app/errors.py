"""Error taxonomy for the assistant core.

Every failure carries a stable ``code`` and a ``details`` dict (session id,
tool name, data type, ...) so callers can log it and the API layer can render
a plain-language message without inspecting tracebacks.
"""

from typing import Any
from uuid import UUID


class AssistantError(Exception):
    """Base class for all assistant core failures."""

    code = "assistant_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = {k: (str(v) if isinstance(v, UUID) else v) for k, v in details.items()}

    def to_dict(self) -> dict[str, Any]:
        """Structured payload for logs and API responses."""
        return {"error": self.code, "message": self.message, "details": self.details}


class ClassificationLowConfidence(AssistantError):
    """Intent could not be resolved above the configured threshold."""

    code = "classification_low_confidence"


class ToolInvocationFailure(AssistantError):
    """A fatal tool failure aborted the turn."""

    code = "tool_invocation_failure"


class ToolNotAllowedError(AssistantError):
    """A tool outside the use case allow-list was requested."""

    code = "tool_not_allowed"


class ExtractionIncomplete(AssistantError):
    """Draft is missing required fields and cannot be presented as final."""

    code = "extraction_incomplete"

    def __init__(self, message: str, missing_fields: list[str], **details: Any) -> None:
        super().__init__(message, missing_fields=missing_fields, **details)
        self.missing_fields = missing_fields


class VersionConflict(AssistantError):
    """Stored session version does not match the expected version."""

    code = "version_conflict"


class SessionNotFound(AssistantError):
    """No live session with the given id."""

    code = "session_not_found"


class RefinementLoopExceeded(AssistantError):
    """Edit iterations exceeded the configured cap."""

    code = "refinement_loop_exceeded"


class InvalidTransitionError(AssistantError):
    """Confirmation state machine received an illegal action."""

    code = "invalid_transition"


class DraftConflictError(AssistantError):
    """Another draft of the same data type is already open."""

    code = "draft_conflict"


class DraftNotFound(AssistantError):
    """Draft id not owned by the session."""

    code = "draft_not_found"


class ModuleActionRequired(AssistantError):
    """Next was requested before the module's action succeeded."""

    code = "module_action_required"


class TurnCancelledError(AssistantError):
    """Turn was cancelled by the caller before it committed."""

    code = "turn_cancelled"


class SessionBusyError(AssistantError):
    """Another turn held the session's lock for longer than the wait allows."""

    code = "session_busy"
