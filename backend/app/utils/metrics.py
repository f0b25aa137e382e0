"""Prometheus metrics for tool calls, turns, drafts and session locks."""

from prometheus_client import Counter, Histogram

_LATENCY_BUCKETS_MS = [10, 50, 100, 200, 500, 1000, 2000, 4000, 8000]

tool_latency_ms = Histogram(
    "tool_latency_ms",
    "Tool attempt latency in milliseconds",
    ["tool", "outcome"],
    buckets=_LATENCY_BUCKETS_MS,
)

tool_errors_total = Counter(
    "tool_errors_total",
    "Failed tool attempts by reason",
    ["tool", "reason"],
)

assistant_turns_total = Counter(
    "assistant_turns_total",
    "Finished turns by use case and outcome",
    ["use_case", "outcome"],
)

assistant_turn_latency_ms = Histogram(
    "assistant_turn_latency_ms",
    "Turn latency from load to save, in milliseconds",
    ["use_case"],
    # Turns chain several LLM and tool calls
    buckets=[*_LATENCY_BUCKETS_MS, 16000, 32000],
)

draft_transitions_total = Counter(
    "draft_transitions_total",
    "Draft confirmation transitions by data type and target phase",
    ["data_type", "phase"],
)

session_busy_total = Counter(
    "session_busy_total",
    "Operations rejected because another turn held the session lock",
)


class PrometheusToolMetrics:
    """Tool attempt metrics for the executor."""

    def record_latency(self, tool: str, outcome: str, latency_ms: float) -> None:
        tool_latency_ms.labels(tool=tool, outcome=outcome).observe(latency_ms)

    def inc_error(self, tool: str, reason: str) -> None:
        tool_errors_total.labels(tool=tool, reason=reason).inc()


def record_turn(use_case: str, outcome: str, latency_ms: float | None = None) -> None:
    assistant_turns_total.labels(use_case=use_case, outcome=outcome).inc()
    if latency_ms is not None:
        assistant_turn_latency_ms.labels(use_case=use_case).observe(latency_ms)


def record_draft_transition(data_type: str, phase: str) -> None:
    draft_transitions_total.labels(data_type=data_type, phase=phase).inc()


def record_session_busy() -> None:
    session_busy_total.inc()
