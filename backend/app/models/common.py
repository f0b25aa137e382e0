"""Common types and enums shared across all models."""

from enum import Enum
from typing import Any

# JSON-serializable value type
JsonValue = str | int | float | bool | None | dict[str, Any] | list[Any]

# A labelled section holds free-form text or a typed field bag
SectionValue = str | dict[str, Any] | None


class UseCase(str, Enum):
    """Closed set of user intents that drive tool selection."""

    search_sailing_trips = "search_sailing_trips"
    improve_profile = "improve_profile"
    register = "register"
    post_demand_or_alert = "post_demand_or_alert"  # reserved, no tools yet
    unknown = "unknown"


class MessageRole(str, Enum):
    """Conversation message author."""

    user = "user"
    assistant = "assistant"
    tool = "tool"


class SessionStatus(str, Enum):
    """Session lifecycle status."""

    active = "active"
    awaiting_confirmation = "awaiting-confirmation"
    awaiting_auth = "awaiting-auth"
    completed = "completed"
    archived = "archived"


class DataType(str, Enum):
    """Draft record types the extractor can produce."""

    profile_summary = "profile-summary"
    boat_summary = "boat-summary"
    journey_summary = "journey-summary"
    skipper_profile = "skipper-profile"
    crew_requirements = "crew-requirements"


class SectionLabel(str, Enum):
    """The three independently persisted labelled sections."""

    skipper_profile = "skipper_profile"
    crew_requirements = "crew_requirements"
    journey_details = "journey_details"

    @property
    def tag(self) -> str:
        """Block tag used in the labelled-context protocol."""
        return f"[{self.value.replace('_', ' ').upper()}]"


class DraftStatus(str, Enum):
    """Externally visible draft status."""

    proposed = "proposed"
    editing = "editing"
    confirmed = "confirmed"
    discarded = "discarded"


class ConfirmationPhase(str, Enum):
    """Confirmation state machine phase."""

    proposed = "proposed"
    presented = "presented"
    edit_requested = "edit_requested"
    confirmed = "confirmed"
    persisted = "persisted"
    discarded = "discarded"


class ModuleAction(str, Enum):
    """Sequencer navigation action."""

    skip = "skip"
    next = "next"
    back = "back"
