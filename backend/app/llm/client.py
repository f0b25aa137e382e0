"""LLM client for classification, tool selection, extraction and replies.

Security: Reads API key from settings/environment only, never hardcoded.
Provides a deterministic stub when no key is present, used by tests.
"""

import json
import logging
import re
from collections.abc import Sequence
from typing import Any, Protocol

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from backend.app.config import Settings
from backend.app.models.common import DataType, MessageRole, UseCase
from backend.app.models.drafts import DATA_TYPE_MODELS
from backend.app.models.intent import IntentResult
from backend.app.models.session import Message, ToolInvocation
from backend.app.models.tools import ToolRequest
from backend.app.models.turns import ConfirmationPrompt, ExtractionResult
from backend.app.tools.registry import ToolSpec

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    """Protocol for LLM client implementations."""

    async def classify_intent(self, *, latest_turn: str, window: Sequence[Message]) -> IntentResult:
        """Classify the latest turn, given a bounded window of recent messages."""
        ...

    async def select_tools(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        window: Sequence[Message],
        tools: Sequence[ToolSpec],
        owner_id: str | None,
        stored_context: str = "",
    ) -> list[ToolRequest]:
        """Pick tools (only from ``tools``) and their arguments.

        ``stored_context`` is the labelled STORED CONTEXT block for the session.
        """
        ...

    async def extract_fields(
        self,
        *,
        data_type: DataType,
        stored_context: str,
        sources: Sequence[str],
        previous: dict[str, Any] | None = None,
        feedback: str | None = None,
    ) -> ExtractionResult:
        """Resolve typed fields from text.

        With ``previous`` and ``feedback`` set, returns only the fields the
        feedback changes (and any it explicitly clears).
        """
        ...

    async def compose_reply(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        invocations: Sequence[ToolInvocation],
        confirmation: ConfirmationPrompt | None,
        missing_fields: Sequence[str],
        stored_context: str = "",
    ) -> str:
        """Assistant message for the turn."""
        ...


# Deterministic heuristics shared by the stub

_EXPERIENCE_KEYWORDS = [
    ("offshore skipper", 4),
    ("coastal skipper", 3),
    ("competent crew", 2),
    ("beginner", 1),
]

_KNOWN_SKILLS = (
    "safety_and_mob",
    "heavy_weather",
    "night_sailing",
    "watch_keeping",
    "navigation",
    "first_aid",
    "cooking",
    "technical_skills",
)

_RISK_LEVELS = ("Coastal sailing", "Offshore sailing", "Extreme sailing")

_NAME = r"([A-Z][a-zA-Z'-]+(?: [A-Z][a-zA-Z'-]+)*)"
_PLACE = r"([A-Z][a-zA-Z]+(?: [A-Z][a-zA-Z]+)*(?:, [A-Z][a-zA-Z]+(?: [A-Z][a-zA-Z]+)*)?)"

_FIELD_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "full_name": [re.compile(r"(?i:my name is|name to|call me|i am|i'm)\s+" + _NAME)],
    "home_port": [re.compile(r"(?i:home port (?:is|to)|based in|berthed in)\s+" + _PLACE)],
    "make_model": [re.compile(r"(?i:boat is an?|sail an?|own an?|boat to an?)\s+([A-Z][\w-]+(?: [A-Z0-9][\w-]*)+)")],
    "boat_name": [re.compile(r"(?i:boat is called|boat named|named)\s+" + _NAME)],
    "year_built": [re.compile(r"(?i:built in)\s+(\d{4})")],
    "certifications": [
        re.compile(r"(?i:certified|certification is|certifications are|i hold an?)\s+([A-Z][\w ]+?)(?:[.,;]|$)")
    ],
    "cost_model": [re.compile(r"(?i:cost model is|costs are)\s+([\w ]+?)(?:[.,;]|$)")],
    "leg_id": [re.compile(r"\b(leg-[a-z0-9-]+)\b")],
}

_ROUTE = re.compile(r"(?i:from)\s+" + _PLACE + r"\s+(?i:to)\s+" + _PLACE)
_VIA = re.compile(r"(?i:via|stopping in|stopping at)\s+" + _PLACE + r"(?:\s+(?i:and)\s+" + _PLACE + r")?")
_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_LEVEL_DIGIT = re.compile(r"(?i:experience level (?:to |is |of )?)([1-4])\b")
_MIN_LEVEL = re.compile(r"(?i:at least|minimum|min\.?)\s+(?i:an? )?([\w ]+?)(?: level)?(?:[.,;]|$| crew| sailors)")
_CREW_SIZE = re.compile(r"(\d+)\s+(?i:crew)\b")
_CLEAR = re.compile(r"(?i:remove|clear|delete)\s+(?i:my |the )?([a-z_ ]+?)(?:[.,;]|$)")
_LEG_NAME = re.compile(r"\b(?i:for|join|on)\s+(?i:the\s+)?([\w\s]+?)\s+(?i:leg)\b")
_LOCATION = re.compile(r"\b(?i:in|from|to|around|near)\s+(?i:the\s+)?" + _PLACE)
_REGIONS = ("baltic", "mediterranean", "atlantic", "caribbean", "pacific")


def _experience_level(text: str) -> int | None:
    lowered = text.lower()
    match = _LEVEL_DIGIT.search(text)
    if match:
        return int(match.group(1))
    for keyword, level in _EXPERIENCE_KEYWORDS:
        if keyword in lowered:
            return level
    return None


def heuristic_fields(data_type: DataType, text: str) -> dict[str, Any]:
    """Fields a deterministic pass can read from one piece of text."""
    found: dict[str, Any] = {}
    for name, patterns in _FIELD_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match:
                found[name] = match.group(1).strip()
                break

    level = _experience_level(text)
    if level is not None:
        found["experience_level"] = level

    route = _ROUTE.search(text)
    if route:
        found["start_location"] = route.group(1)
        found["end_location"] = route.group(2)
    via = _VIA.search(text)
    if via:
        found["waypoints"] = [g for g in via.groups() if g]
    dates = _ISO_DATE.findall(text)
    if dates:
        found["start_date"] = dates[0]
        if len(dates) > 1:
            found["end_date"] = dates[1]

    lowered = text.lower()
    skills = [s for s in _KNOWN_SKILLS if s in lowered or s.replace("_", " ") in lowered]
    if skills:
        found["skills"] = skills
    risk = [r for r in _RISK_LEVELS if r.lower() in lowered]
    if risk:
        found["risk_level"] = risk

    if data_type == DataType.crew_requirements:
        minimum = _MIN_LEVEL.search(text)
        if minimum:
            min_level = _experience_level(minimum.group(1))
            if min_level is not None:
                found["min_experience_level"] = min_level
        size = _CREW_SIZE.search(text)
        if size:
            found["crew_size"] = int(size.group(1))
    if data_type == DataType.skipper_profile and "make_model" in found:
        found["boat_make_model"] = found["make_model"]

    model = DATA_TYPE_MODELS[data_type]
    return {k: v for k, v in found.items() if k in model.model_fields}


class DeterministicStubClient:
    """Deterministic stub client for testing (no API key required)."""

    _INTENT_KEYWORDS: list[tuple[UseCase, tuple[str, ...]]] = [
        (UseCase.post_demand_or_alert, ("alert", "notify me", "let me know when", "post a demand")),
        (UseCase.register, ("register", "sign up", "apply", "join")),
        (UseCase.improve_profile, ("profile", "skills", "certification", "bio")),
        (UseCase.search_sailing_trips, ("find", "search", "look for", "trips", "legs", "sailing")),
    ]

    async def classify_intent(self, *, latest_turn: str, window: Sequence[Message]) -> IntentResult:
        lowered = latest_turn.lower()
        for use_case, keywords in self._INTENT_KEYWORDS:
            hits = [k for k in keywords if k in lowered]
            if hits:
                return IntentResult(
                    use_case=use_case,
                    confidence=0.7,
                    rationale=f"stub keywords: {', '.join(hits)}",
                    source="model",
                )
        return IntentResult(use_case=UseCase.unknown, confidence=0.0, rationale="stub: no keywords", source="model")

    async def select_tools(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        window: Sequence[Message],
        tools: Sequence[ToolSpec],
        owner_id: str | None,
        stored_context: str = "",
    ) -> list[ToolRequest]:
        allowed = {tool.name for tool in tools}
        requests: list[ToolRequest] = []
        lowered = latest_turn.lower()
        leg_id = _FIELD_PATTERNS["leg_id"][0].search(latest_turn)
        region = next((r for r in _REGIONS if r in lowered), None)

        if use_case == UseCase.register:
            if leg_id:
                requests.append(ToolRequest(tool_name="get_leg_details", arguments={"leg_id": leg_id.group(1)}))
                requests.append(
                    ToolRequest(tool_name="get_leg_registration_info", arguments={"leg_id": leg_id.group(1)})
                )
            elif leg_name := _LEG_NAME.search(latest_turn):
                requests.append(
                    ToolRequest(tool_name="get_leg_details", arguments={"leg_name": leg_name.group(1).strip()})
                )
            elif region:
                requests.append(ToolRequest(tool_name="search_legs", arguments={"region": region}))
        elif use_case == UseCase.search_sailing_trips:
            location = _LOCATION.search(latest_turn)
            if region:
                requests.append(ToolRequest(tool_name="search_legs", arguments={"region": region}))
            elif location:
                requests.append(
                    ToolRequest(tool_name="search_legs_by_location", arguments={"location": location.group(1)})
                )
            else:
                requests.append(ToolRequest(tool_name="search_legs", arguments={}))
        elif use_case == UseCase.improve_profile:
            requests.append(ToolRequest(tool_name="get_user_profile", arguments={"user_id": owner_id}))
            requests.append(ToolRequest(tool_name="get_experience_level_definitions", arguments={}))

        return [r for r in requests if r.tool_name in allowed]

    async def extract_fields(
        self,
        *,
        data_type: DataType,
        stored_context: str,
        sources: Sequence[str],
        previous: dict[str, Any] | None = None,
        feedback: str | None = None,
    ) -> ExtractionResult:
        if feedback is not None:
            changed = heuristic_fields(data_type, feedback)
            model = DATA_TYPE_MODELS[data_type]
            cleared = []
            for match in _CLEAR.finditer(feedback):
                name = match.group(1).strip().replace(" ", "_")
                if name in model.model_fields and name not in changed:
                    cleared.append(name)
            return ExtractionResult(fields=changed, cleared=cleared)

        fields: dict[str, Any] = {}
        for text in sources:
            fields.update(heuristic_fields(data_type, text))
        return ExtractionResult(fields=fields)

    async def compose_reply(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        invocations: Sequence[ToolInvocation],
        confirmation: ConfirmationPrompt | None,
        missing_fields: Sequence[str],
        stored_context: str = "",
    ) -> str:
        lines: list[str] = []
        for inv in invocations:
            if inv.failure is not None:
                lines.append(f"I couldn't complete {inv.tool_name}; some results may be missing.")
            elif inv.output and "count" in inv.output:
                lines.append(f"I found {inv.output['count']} matching leg(s).")
        if missing_fields:
            lines.append(f"Could you tell me your {', '.join(f.replace('_', ' ') for f in missing_fields)}?")
        elif confirmation is not None:
            lines.append(
                f"Here is the {confirmation.data_type.value.replace('-', ' ')} I put together. "
                "Please confirm it or tell me what to change."
            )
        if not lines:
            lines.append("How can I help with your sailing plans?")
        return " ".join(lines)


class _ClassificationPayload(BaseModel):
    use_case: UseCase
    confidence: float
    rationale: str = ""


class OpenAIClient:
    """OpenAI-backed LLM client."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini"):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from environment)
            model: Model name to use
        """
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self._fallback = DeterministicStubClient()

    async def _json_completion(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=0,
            max_tokens=800,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        return json.loads(content)

    async def classify_intent(self, *, latest_turn: str, window: Sequence[Message]) -> IntentResult:
        system_prompt = (
            "Classify the user's latest message on a crew/boat matching platform into one use case:\n"
            "- search_sailing_trips: find sailing trips, legs or journeys as crew\n"
            "- improve_profile: improve or complete their profile, skills, certifications\n"
            "- register: join or apply for a specific leg or journey\n"
            "- post_demand_or_alert: post a crew demand or set up an alert\n"
            "- unknown: unclear\n"
            'Respond with JSON: {"use_case": ..., "confidence": 0..1, "rationale": "..."}'
        )
        user_prompt = f"Recent conversation:\n{_format_window(window)}\n\nLatest message: {latest_turn}"
        try:
            payload = _ClassificationPayload.model_validate(await self._json_completion(system_prompt, user_prompt))
        except (ValidationError, json.JSONDecodeError) as e:
            logger.warning(f"Unparseable classification from OpenAI: {e}")
            return IntentResult(use_case=UseCase.unknown, confidence=0.0, rationale="unparseable", source="model")
        except OpenAIError as e:
            logger.error(f"OpenAI classification failed: {e}")
            return IntentResult(use_case=UseCase.unknown, confidence=0.0, rationale="unavailable", source="model")
        return IntentResult(
            use_case=payload.use_case,
            confidence=min(max(payload.confidence, 0.0), 1.0),
            rationale=payload.rationale,
            source="model",
        )

    async def select_tools(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        window: Sequence[Message],
        tools: Sequence[ToolSpec],
        owner_id: str | None,
        stored_context: str = "",
    ) -> list[ToolRequest]:
        if not tools:
            return []
        system_prompt = (
            f"You help a sailing platform user with the '{use_case.value}' use case. "
            "Call the tools needed to answer the latest message. Only call the tools provided."
            + (f" The user's id is {owner_id}." if owner_id else "")
        )
        user_prompt = f"{_format_window(window)}\n\nLatest message: {latest_turn}"
        if stored_context:
            user_prompt = f"{stored_context}\n{user_prompt}"
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                tools=[{"type": "function", "function": tool.schema()} for tool in tools],
                temperature=0,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI tool selection failed, using deterministic selection: {e}")
            return await self._fallback.select_tools(
                use_case=use_case,
                latest_turn=latest_turn,
                window=window,
                tools=tools,
                owner_id=owner_id,
                stored_context=stored_context,
            )
        requests: list[ToolRequest] = []
        for call in response.choices[0].message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Dropping tool call with malformed arguments: {call.function.name}")
                continue
            requests.append(ToolRequest(tool_name=call.function.name, arguments=arguments))
        return requests

    async def extract_fields(
        self,
        *,
        data_type: DataType,
        stored_context: str,
        sources: Sequence[str],
        previous: dict[str, Any] | None = None,
        feedback: str | None = None,
    ) -> ExtractionResult:
        schema = json.dumps(DATA_TYPE_MODELS[data_type].model_json_schema()["properties"])
        if feedback is not None:
            system_prompt = (
                f"You update a {data_type.value} record from the user's edit request.\n"
                f"Field schema: {schema}\n"
                "Return JSON {\"fields\": {...}, \"cleared\": [...]} where fields holds ONLY the fields "
                "the request changes, and cleared lists fields the user asked to remove. "
                "Never repeat or reset fields the request does not mention."
            )
            user_prompt = f"Current record: {json.dumps(previous or {})}\n\nEdit request: {feedback}"
        else:
            system_prompt = (
                f"Extract a {data_type.value} record.\n"
                f"Field schema: {schema}\n"
                "Return JSON {\"fields\": {...}}. Leave out any field the text does not state; never guess."
            )
            user_prompt = f"{stored_context}\n\nConversation:\n" + "\n".join(sources)
        try:
            return ExtractionResult.model_validate(await self._json_completion(system_prompt, user_prompt))
        except (ValidationError, json.JSONDecodeError) as e:
            logger.warning(f"Unparseable extraction from OpenAI for {data_type.value}: {e}")
            return ExtractionResult()
        except OpenAIError as e:
            logger.error(f"OpenAI extraction failed for {data_type.value}: {e}")
            return ExtractionResult()

    async def compose_reply(
        self,
        *,
        use_case: UseCase,
        latest_turn: str,
        invocations: Sequence[ToolInvocation],
        confirmation: ConfirmationPrompt | None,
        missing_fields: Sequence[str],
        stored_context: str = "",
    ) -> str:
        context = {
            "use_case": use_case.value,
            "tool_results": [
                {"tool": i.tool_name, "output": i.output, "failed": i.failure is not None} for i in invocations
            ],
            "draft": confirmation.fields if confirmation else None,
            "missing_fields": list(missing_fields),
        }
        user_prompt = f"User said: {latest_turn}\n\nData: {json.dumps(context, default=str)}"
        if stored_context:
            user_prompt = f"{stored_context}\n{user_prompt}"
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "system",
                        "content": (
                            "You are a concise sailing crew assistant. Reply in 2-4 sentences using only "
                            "the provided data. Ask for missing fields one or two at a time. If a draft is "
                            "present, ask the user to confirm or edit it."
                        ),
                    },
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.5,
                max_tokens=400,
            )
            reply = response.choices[0].message.content or ""
        except OpenAIError as e:
            logger.error(f"OpenAI reply composition failed: {e}")
            reply = ""

        if not reply.strip():
            logger.warning("Empty reply from OpenAI, using deterministic stub reply")
            return await self._fallback.compose_reply(
                use_case=use_case,
                latest_turn=latest_turn,
                invocations=invocations,
                confirmation=confirmation,
                missing_fields=missing_fields,
                stored_context=stored_context,
            )
        return reply


def _format_window(window: Sequence[Message]) -> str:
    labels = {MessageRole.user: "User", MessageRole.assistant: "Assistant", MessageRole.tool: "Tool"}
    return "\n".join(f"{labels[m.role]}: {m.content}" for m in window)


def build_llm_client(settings: Settings) -> LLMClient:
    """OpenAIClient if an API key is configured, DeterministicStubClient otherwise."""
    api_key = settings.openai_api_key
    if api_key and api_key.get_secret_value():
        logger.info("Using OpenAI client")
        return OpenAIClient(api_key=api_key.get_secret_value(), model=settings.openai_model)
    logger.warning("No OpenAI API key configured, using deterministic stub client")
    return DeterministicStubClient()
