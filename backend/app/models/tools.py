"""Tool routing request and outcome models."""

from typing import Any

from pydantic import BaseModel, Field

from backend.app.models.session import ToolInvocation


class ToolRequest(BaseModel):
    """A routing decision: which tool to call and with what arguments."""

    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    rationale: str = ""


class RoutingOutcome(BaseModel):
    """Joined results of one routing decision, in request order."""

    invocations: list[ToolInvocation] = Field(default_factory=list)

    @property
    def fatal_failures(self) -> list[ToolInvocation]:
        return [i for i in self.invocations if i.failure is not None and i.failure.fatal]

    @property
    def recoverable_failures(self) -> list[ToolInvocation]:
        return [i for i in self.invocations if i.failure is not None and not i.failure.fatal]
