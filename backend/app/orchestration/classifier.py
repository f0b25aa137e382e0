"""Intent classifier - weighted patterns first, bounded-window model fallback."""

import logging
import re
from dataclasses import dataclass

from backend.app.llm.client import LLMClient
from backend.app.models.common import UseCase
from backend.app.models.intent import IntentResult
from backend.app.models.session import Session

logger = logging.getLogger(__name__)

# Raw pattern score that maps to confidence 1.0
PATTERN_SATURATION = 8.0


@dataclass(frozen=True)
class IntentPattern:
    pattern: re.Pattern[str]
    weight: int


def _p(regex: str, weight: int) -> IntentPattern:
    return IntentPattern(re.compile(regex, re.IGNORECASE), weight)


PATTERNS: dict[UseCase, tuple[IntentPattern, ...]] = {
    UseCase.search_sailing_trips: (
        _p(r"\b(find|search)\b.*\bsail\w*.*\b(trip|leg|opportunit)", 5),
        _p(r"\blook\w*\b.*\bfor\b.*\bsail\w*.*\b(trip|leg)", 4),
        _p(r"\bhelp\b.*\b(search|find)\b.*\bsail\w*.*\b(trip|leg)", 4),
        _p(r"\bcrew\b.*\bposition", 4),
        _p(r"\bfrom\b.*\bto\b.*\bsail", 3),
        _p(r"\b(mediterranean|baltic|caribbean|atlantic)\b.*\btrips?\b", 3),
        _p(r"\bjourneys?\b.*\bsearch", 3),
        _p(r"\bwhere\b.*\bsail\w*.*\btrip", 3),
        _p(r"\bocean\b.*\btrip", 3),
        _p(r"\bcross\w*\b.*\bocean", 3),
    ),
    UseCase.improve_profile: (
        _p(r"\bimprove\b.*\bprofile", 5),
        _p(r"\bupdate\b.*\bskills", 5),
        _p(r"\benhance\b.*\bprofile", 4),
        _p(r"\bhelp\b.*\bbetter\b.*\bprofile", 4),
        _p(r"\bcertification\b.*\bimprove", 4),
        _p(r"\bcomplete\b.*\bprofile", 4),
        _p(r"\bfill\b.*\bprofile", 4),
        _p(r"\boptimi[sz]e\b.*\bprofile", 3),
        _p(r"\bfix\b.*\bprofile", 3),
        _p(r"\bmissing\b.*\bprofile", 3),
        _p(r"\badd\b.*\bprofile", 3),
    ),
    UseCase.register: (
        _p(r"\bregister\b.*\bleg", 5),
        _p(r"\bjoin\b.*\btrip", 5),
        _p(r"\bsign\w*\s*up\b.*\b(crew|position)", 5),
        _p(r"\bapply\b.*\b(opportunity|position)", 4),
        _p(r"\binterested\b.*\bjoin", 4),
        _p(r"\bcan\b.*\bi\b.*\bjoin", 4),
        _p(r"\bwant\b.*\bregister", 4),
        _p(r"\bjoin\b.*\bcrew\b.*\b(summer|sail)", 4),
        _p(r"\bhow\b.*\bregister", 3),
        _p(r"\b(position|slot)\b.*\bavailable", 3),
    ),
    UseCase.post_demand_or_alert: (
        _p(r"\b(set up|create)\b.*\balert", 5),
        _p(r"\bnotify\b.*\bwhen", 5),
        _p(r"\bpost\b.*\b(demand|request)", 5),
        _p(r"\blet me know\b.*\bwhen", 4),
    ),
}

# Contextual keywords, scored only once a pattern for the use case matched
_ACTION_VERBS = ("find", "search", "look", "want", "need", "interested")
CONTEXT_TERMS: dict[UseCase, tuple[tuple[str, ...], bool]] = {
    UseCase.search_sailing_trips: (
        ("baltic", "mediterranean", "caribbean", "pacific", "atlantic", "crew", "offshore", "coastal", "bluewater"),
        True,
    ),
    UseCase.improve_profile: (
        ("skills", "certification", "experience", "description", "bio", "qualifications", "update", "complete"),
        False,
    ),
    UseCase.register: (
        ("register", "join", "apply", "want to", "sign up", "crew", "position", "opportunity", "spot", "slot"),
        False,
    ),
    UseCase.post_demand_or_alert: (("alert", "notify", "demand"), False),
}


def _contextual_score(text: str, use_case: UseCase) -> int:
    terms, needs_action_verb = CONTEXT_TERMS[use_case]
    if needs_action_verb and not any(re.search(rf"\b{v}", text) for v in _ACTION_VERBS):
        return 0
    return sum(1 for term in terms if re.search(rf"\b{re.escape(term)}\b", text))


def classify_by_pattern(text: str) -> IntentResult:
    """Score every use case's patterns; the best non-zero score wins.

    Ties keep the use case declared first in PATTERNS.
    """
    normalized = text.lower()
    best_use_case = UseCase.unknown
    best_score = 0
    best_hits: list[str] = []

    for use_case, patterns in PATTERNS.items():
        hits = [p.pattern.pattern for p in patterns if p.pattern.search(normalized)]
        score = sum(p.weight for p in patterns if p.pattern.search(normalized))
        if score > 0:
            score += _contextual_score(normalized, use_case)
        if score > best_score:
            best_use_case, best_score, best_hits = use_case, score, hits

    if best_score == 0:
        return IntentResult(use_case=UseCase.unknown, confidence=0.0, rationale="no pattern matched", source="none")
    return IntentResult(
        use_case=best_use_case,
        confidence=min(best_score / PATTERN_SATURATION, 1.0),
        rationale=f"pattern score {best_score} ({len(best_hits)} pattern(s))",
        source="pattern",
    )


class IntentClassifier:
    """Maps the latest turn plus a bounded window to a use case."""

    def __init__(self, llm: LLMClient, threshold: float = 0.6, window_messages: int = 6) -> None:
        self._llm = llm
        self._threshold = threshold
        self._window = window_messages

    async def classify(self, session: Session, latest_user_turn: str) -> IntentResult:
        """Classify a turn. Below-threshold results come back as ``unknown``.

        Only the last ``window_messages`` messages of the session are ever
        shown to the model.
        """
        result = classify_by_pattern(latest_user_turn)
        if result.confidence >= self._threshold:
            logger.info(f"[classifier] pattern: {result.use_case.value} ({result.confidence:.2f})")
            return result

        window = session.recent_messages(self._window)
        try:
            model_result = await self._llm.classify_intent(latest_turn=latest_user_turn, window=window)
        except Exception as e:
            logger.warning(f"[classifier] model fallback failed, keeping pattern result: {e}")
            model_result = result

        best = model_result if model_result.confidence > result.confidence else result
        if best.confidence < self._threshold:
            logger.info(f"[classifier] low confidence ({best.confidence:.2f}), returning unknown")
            return IntentResult(
                use_case=UseCase.unknown,
                confidence=best.confidence,
                rationale=f"below threshold {self._threshold}: {best.rationale}",
                source=best.source,
            )
        logger.info(f"[classifier] {best.source}: {best.use_case.value} ({best.confidence:.2f})")
        return best
