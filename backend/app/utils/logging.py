"""Structured attempt logging for tool calls made during turns and module actions."""

import logging
from typing import Any

from backend.app.tools.executor import ToolContext

logger = logging.getLogger(__name__)

# Attempt outcomes that are part of normal operation
_QUIET_OUTCOMES = frozenset({"success", "cancelled"})


class StructuredToolLogger:
    """Logs one line per tool attempt, tagged with the turn or module that made it."""

    def log_attempt(
        self,
        ctx: ToolContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "session_id": ctx.session_id,
            "turn_id": ctx.turn_id,
            "tool": ctx.tool_name,
            "attempt": attempt,
            "outcome": outcome,
            "latency_ms": round(latency_ms, 2),
        }
        if ctx.use_case is not None:
            record["use_case"] = ctx.use_case
        if ctx.module_id is not None:
            record["module_id"] = ctx.module_id
        if error_reason:
            record["error_reason"] = error_reason

        origin = ctx.use_case or (f"module {ctx.module_id}" if ctx.module_id else "direct")
        message = f"[tool] {ctx.tool_name} #{attempt} for {origin}: {outcome}"
        level = logging.INFO if outcome in _QUIET_OUTCOMES else logging.WARNING
        logger.log(level, message, extra={"structured": record})
