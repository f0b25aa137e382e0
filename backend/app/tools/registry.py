"""Tool registry - name -> schema, flags and handler, indexed by use case."""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from backend.app.models.common import UseCase

ToolHandler = Callable[[Any], Awaitable[BaseModel]]


@dataclass(frozen=True)
class ToolSpec:
    """Registration for one callable tool.

    Attributes:
        name: Unique tool name
        description: One-line description shown to the model
        input_model: Pydantic model the arguments are validated against
        output_model: Pydantic model the handler result is validated against
        use_cases: Use cases whose allow-list includes this tool
        handler: Async callable taking a validated input_model instance
        parallel_safe: May run concurrently with other parallel-safe tools
        fatal_on_failure: Failure aborts the turn instead of degrading
    """

    name: str
    description: str
    input_model: type[BaseModel]
    output_model: type[BaseModel]
    use_cases: frozenset[UseCase]
    handler: ToolHandler
    parallel_safe: bool = True
    fatal_on_failure: bool = False

    def schema(self) -> dict[str, Any]:
        """Function-calling style schema for the model prompt."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.input_model.model_json_schema(),
        }


class ToolRegistry:
    """Registry of tools. Read-only once frozen."""

    def __init__(self, tools: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        self._frozen = False
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolSpec) -> None:
        if self._frozen:
            raise RuntimeError("Tool registry is frozen")
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def allow_list(self, use_case: UseCase) -> list[str]:
        """Names of tools allowed for a use case, in registration order."""
        return [name for name, tool in self._tools.items() if use_case in tool.use_cases]

    def tools_for(self, use_case: UseCase) -> list[ToolSpec]:
        return [self._tools[name] for name in self.allow_list(use_case)]

    def is_allowed(self, use_case: UseCase, name: str) -> bool:
        tool = self._tools.get(name)
        return tool is not None and use_case in tool.use_cases
