"""Structured extractor - conversation plus tool results into a typed draft.

Two modes:
- Initial: no previous draft. Fields come from the authoritative labelled
  section, the bounded window of user messages and this turn's tool outputs.
- Refinement: previous draft plus edit feedback. Only the fields the
  feedback changes are replaced; everything else keeps its prior value.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from backend.app.llm.client import LLMClient
from backend.app.models.common import DataType, MessageRole, SectionValue
from backend.app.models.drafts import DraftRecord, missing_required, normalize_fields
from backend.app.models.session import Message, ToolInvocation
from backend.app.orchestration.context import authoritative_section, render_block

logger = logging.getLogger(__name__)

FieldMapper = Callable[[dict[str, Any]], dict[str, Any]]


def _leg_fields(output: dict[str, Any]) -> dict[str, Any]:
    leg = output.get("leg") or {}
    return {
        "leg_id": leg.get("id"),
        "leg_name": leg.get("name"),
        "journey_id": leg.get("journey_id"),
        "journey_name": leg.get("journey_name"),
        "start_location": leg.get("start_location"),
        "end_location": leg.get("end_location"),
        "start_date": leg.get("start_date"),
        "end_date": leg.get("end_date"),
        "risk_level": leg.get("risk_level") or None,
    }


def _profile_fields(output: dict[str, Any]) -> dict[str, Any]:
    profile = dict(output.get("profile") or {})
    profile.pop("user_id", None)
    return {k: v for k, v in profile.items() if v not in (None, "", [])}


@dataclass(frozen=True)
class ToolFieldMap:
    mapper: FieldMapper
    # Platform reference data wins over what the model read from the chat
    overrides: bool


TOOL_FIELD_MAPS: dict[str, dict[DataType, ToolFieldMap]] = {
    "get_leg_details": {
        DataType.journey_summary: ToolFieldMap(_leg_fields, overrides=True),
    },
    "get_user_profile": {
        DataType.profile_summary: ToolFieldMap(_profile_fields, overrides=False),
        DataType.skipper_profile: ToolFieldMap(_profile_fields, overrides=False),
    },
}


def tool_fields(data_type: DataType, tool_results: Sequence[ToolInvocation]) -> tuple[dict[str, Any], dict[str, Any]]:
    """(base, override) field bags mapped from successful tool outputs."""
    base: dict[str, Any] = {}
    override: dict[str, Any] = {}
    for inv in tool_results:
        if not inv.succeeded or inv.output is None:
            continue
        field_map = TOOL_FIELD_MAPS.get(inv.tool_name, {}).get(data_type)
        if field_map is None:
            continue
        mapped = {k: v for k, v in field_map.mapper(inv.output).items() if v is not None}
        (override if field_map.overrides else base).update(mapped)
    return base, override


class StructuredExtractor:
    """Produces and refines DraftRecords through the LLM client."""

    def __init__(self, llm: LLMClient, window_messages: int = 12) -> None:
        self._llm = llm
        self._window = window_messages

    async def extract(
        self,
        data_type: DataType,
        conversation: Sequence[Message],
        tool_results: Sequence[ToolInvocation] = (),
        previous_draft: DraftRecord | None = None,
        edit_feedback: str | None = None,
        section: SectionValue = None,
    ) -> DraftRecord:
        """Build a new draft, or refine ``previous_draft`` with ``edit_feedback``.

        Args:
            data_type: Draft type to produce
            conversation: Session conversation; only the last window is read
            tool_results: Invocations from the current turn
            previous_draft: Draft to refine (refinement mode)
            edit_feedback: Free-text change request (refinement mode)
            section: Value of the labelled section authoritative for data_type

        Returns:
            Proposed DraftRecord. Unresolvable fields are left unset and
            required ones are listed in ``missing_fields``.
        """
        if edit_feedback is not None:
            if previous_draft is None:
                raise ValueError("Refinement needs a previous draft")
            return await self._refine(previous_draft, edit_feedback, tool_results)
        return await self._initial(data_type, conversation, tool_results, section)

    async def _initial(
        self,
        data_type: DataType,
        conversation: Sequence[Message],
        tool_results: Sequence[ToolInvocation],
        section: SectionValue,
    ) -> DraftRecord:
        window = list(conversation)[-self._window :] if self._window > 0 else []
        sources = [m.content for m in window if m.role == MessageRole.user]

        seeded: dict[str, Any] = {}
        if isinstance(section, dict):
            seeded = normalize_fields(data_type, section)
        elif isinstance(section, str) and section.strip():
            sources.insert(0, section.strip())

        result = await self._llm.extract_fields(
            data_type=data_type,
            stored_context=render_block(authoritative_section(data_type), section),
            sources=sources,
        )
        base, override = tool_fields(data_type, tool_results)
        fields = normalize_fields(
            data_type,
            {**seeded, **base, **normalize_fields(data_type, result.fields), **override},
        )
        missing = missing_required(data_type, fields)
        logger.info(
            f"[extractor] initial {data_type.value}: {len(fields)} field(s), missing={missing}",
            extra={"structured": {"data_type": data_type.value, "fields": sorted(fields), "missing": missing}},
        )
        return DraftRecord(data_type=data_type, fields=fields, missing_fields=missing)

    async def _refine(
        self,
        previous: DraftRecord,
        feedback: str,
        tool_results: Sequence[ToolInvocation],
    ) -> DraftRecord:
        data_type = previous.data_type
        result = await self._llm.extract_fields(
            data_type=data_type,
            stored_context="",
            sources=[],
            previous=dict(previous.fields),
            feedback=feedback,
        )
        # None from the model means "not mentioned", never "reset"
        changes = normalize_fields(data_type, result.fields)
        _, override = tool_fields(data_type, tool_results)
        changes.update(override)

        fields = {**previous.fields, **changes}
        for name in result.cleared:
            if name not in changes:
                fields.pop(name, None)
        fields = normalize_fields(data_type, fields)

        missing = missing_required(data_type, fields)
        logger.info(
            f"[extractor] refine {data_type.value} r{previous.revision}: changed={sorted(changes)}",
            extra={
                "structured": {
                    "data_type": data_type.value,
                    "draft_id": str(previous.id),
                    "changed": sorted(changes),
                    "cleared": result.cleared,
                }
            },
        )
        return previous.model_copy(
            update={
                "fields": fields,
                "revision": previous.revision + 1,
                "missing_fields": missing,
                "edit_history": [*previous.edit_history, feedback],
                "updated_at": datetime.now(UTC),
            }
        )
