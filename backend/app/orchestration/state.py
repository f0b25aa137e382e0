"""Turn state for the assistant pipeline."""

import time
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from backend.app.models.common import DataType
from backend.app.models.intent import IntentResult
from backend.app.models.session import Session
from backend.app.models.tools import RoutingOutcome, ToolRequest
from backend.app.tools.executor import CancelToken


@dataclass
class TurnState:
    """Working state of one user turn.

    ``session`` is the working copy; nothing reaches the store until the
    turn finishes and saves it against ``expected_version``.
    """

    session: Session
    latest_turn: str
    expected_version: int
    cancel_token: CancelToken = field(default_factory=CancelToken)
    turn_id: str = field(default_factory=lambda: uuid4().hex)
    started: float = field(default_factory=time.monotonic)

    intent: IntentResult | None = None
    requests: list[ToolRequest] = field(default_factory=list)
    outcome: RoutingOutcome = field(default_factory=RoutingOutcome)
    data_type: DataType | None = None
    draft_id: UUID | None = None
    missing_fields: list[str] = field(default_factory=list)
    # Recoverable problems surfaced to the caller (partial tool results, ...)
    notices: list[dict[str, Any]] = field(default_factory=list)
    reply: str = ""

    @property
    def session_id(self) -> str:
        return str(self.session.id)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000

    @property
    def use_case_label(self) -> str:
        """Metrics label for the turn's use case."""
        return self.intent.use_case.value if self.intent else "unclassified"
