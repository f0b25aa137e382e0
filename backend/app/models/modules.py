"""Module sequencer models."""

from pydantic import BaseModel, Field


class ModuleSpec(BaseModel):
    """Configured onboarding module: an id and the tool bound to Next."""

    id: str
    action: str


class Module(BaseModel):
    """Instantiated module with its ordering key and completion flags."""

    id: str
    order: int
    action: str
    completed: bool = False
    skipped: bool = False


class ModuleProgress(BaseModel):
    """Ordered modules plus the pointer to the current one."""

    modules: list[Module] = Field(default_factory=list)
    current_index: int = 0

    @property
    def finished(self) -> bool:
        return bool(self.modules) and all(m.completed for m in self.modules)

    def ordered(self) -> list[Module]:
        return sorted(self.modules, key=lambda m: m.order)
