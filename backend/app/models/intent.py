"""Intent classification result."""

from typing import Literal

from pydantic import BaseModel, Field

from backend.app.models.common import UseCase


class IntentResult(BaseModel):
    """Use case attached to a turn with its confidence."""

    use_case: UseCase
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str = ""
    source: Literal["pattern", "model", "none"] = "none"

    @property
    def actionable(self) -> bool:
        return self.use_case not in (UseCase.unknown, UseCase.post_demand_or_alert)
