"""Module sequencer - ordered onboarding modules with Skip/Next/Back."""

import logging
from collections.abc import Sequence

from backend.app.errors import InvalidTransitionError, ModuleActionRequired
from backend.app.models.common import DataType, ModuleAction, SessionStatus
from backend.app.models.modules import Module, ModuleProgress, ModuleSpec
from backend.app.models.session import Session

logger = logging.getLogger(__name__)

# Known modules and the tool each one's Next runs
MODULE_CATALOG: dict[str, ModuleSpec] = {
    "journey": ModuleSpec(id="journey", action="generate_journey_route"),
    "profile": ModuleSpec(id="profile", action="update_user_profile"),
    "boat": ModuleSpec(id="boat", action="create_boat"),
}

# Draft type gathered while a module is current
MODULE_DATA_TYPES: dict[str, DataType] = {
    "journey": DataType.journey_summary,
    "profile": DataType.skipper_profile,
    "boat": DataType.boat_summary,
}


def modules_from_config(value: str) -> list[ModuleSpec]:
    """Parse a comma separated module order, e.g. ``journey,profile,boat``."""
    specs = []
    for module_id in (part.strip() for part in value.split(",")):
        if not module_id:
            continue
        if module_id not in MODULE_CATALOG:
            raise ValueError(f"Unknown onboarding module: {module_id}")
        specs.append(MODULE_CATALOG[module_id])
    return specs


class ModuleSequencer:
    """Pointer over an ordered module list stored on the session.

    The sequencer holds only the configured order; progress lives in the
    session's ModuleProgress and every operation returns a new Session.
    """

    def __init__(self, modules: Sequence[ModuleSpec]) -> None:
        if len({m.id for m in modules}) != len(modules):
            raise ValueError("Module ids must be unique")
        self._modules = tuple(modules)

    @property
    def modules(self) -> tuple[ModuleSpec, ...]:
        return self._modules

    def start(self, session: Session) -> Session:
        """Instantiate the configured modules. No-op if already started."""
        if session.modules is not None:
            return session
        progress = ModuleProgress(
            modules=[Module(id=m.id, order=i, action=m.action) for i, m in enumerate(self._modules)],
        )
        return session.model_copy(update={"modules": progress})

    def current_module(self, session: Session) -> Module | None:
        progress = session.modules
        if progress is None:
            return None
        ordered = progress.ordered()
        if progress.current_index >= len(ordered):
            return None
        return ordered[progress.current_index]

    def advance(self, session: Session, action: ModuleAction, action_succeeded: bool = False) -> Session:
        """Apply Skip, Next or Back to the current module.

        Raises:
            ModuleActionRequired: Next without a successful bound action this turn
            InvalidTransitionError: Onboarding was never started
        """
        progress = session.modules
        if progress is None:
            raise InvalidTransitionError("Onboarding has not been started", session_id=session.id)

        ordered = progress.ordered()
        index = progress.current_index

        if action == ModuleAction.back:
            if index == 0:
                return session
            new_index = min(index, len(ordered)) - 1
            status = SessionStatus.active if session.status == SessionStatus.completed else session.status
            logger.info(f"[sequencer] back to {ordered[new_index].id}")
            return session.model_copy(
                update={"modules": progress.model_copy(update={"current_index": new_index}), "status": status}
            )

        current = self.current_module(session)
        if current is None:
            raise InvalidTransitionError("All modules are already complete", session_id=session.id)

        if action == ModuleAction.next and not action_succeeded:
            raise ModuleActionRequired(
                f"Module {current.id} needs {current.action} to succeed before Next",
                session_id=session.id,
                module_id=current.id,
                tool_name=current.action,
            )

        done = current.model_copy(update={"completed": True, "skipped": action == ModuleAction.skip})
        modules = [done if m.id == current.id else m for m in progress.modules]
        new_index = index + 1
        status = session.status
        if new_index >= len(ordered):
            status = SessionStatus.completed
        logger.info(f"[sequencer] {action.value} {current.id} -> index {new_index}")
        return session.model_copy(
            update={
                "modules": ModuleProgress(modules=modules, current_index=new_index),
                "status": status,
            }
        )

    def reorder(self, session: Session, module_id: str, new_order: int) -> Session:
        """Change one module's ordering key, keeping the pointer on the same module."""
        progress = session.modules
        if progress is None:
            raise InvalidTransitionError("Onboarding has not been started", session_id=session.id)
        if module_id not in {m.id for m in progress.modules}:
            raise ValueError(f"Unknown module: {module_id}")

        current = self.current_module(session)
        modules = [m.model_copy(update={"order": new_order}) if m.id == module_id else m for m in progress.modules]
        reordered = ModuleProgress(modules=modules, current_index=progress.current_index)
        if current is not None:
            ids = [m.id for m in reordered.ordered()]
            reordered = reordered.model_copy(update={"current_index": ids.index(current.id)})
        return session.model_copy(update={"modules": reordered})
