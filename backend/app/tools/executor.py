"""Async tool executor with timeouts, retries, circuit breaker and cancellation.

Each tool handler runs under:
- Hard timeout per attempt
- Bounded retries with jitter
- Per-tool circuit breaker (shared state via registry)
- Cancel token checked before every attempt
- Metrics and structured logging hooks
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel

from backend.app.config import Settings

T = TypeVar("T")


class ToolTimeoutError(Exception):
    """Tool execution exceeded timeout."""

    pass


class ToolCircuitOpenError(Exception):
    """Circuit breaker is open for this tool."""

    pass


class ToolExecutionError(Exception):
    """Tool execution failed."""

    pass


class ToolCancelledError(Exception):
    """Tool execution was cancelled."""

    pass


@dataclass(frozen=True)
class ToolContext:
    """Context for tool execution with tracing."""

    session_id: str
    turn_id: str
    tool_name: str
    # Set for turns; module actions carry the module instead
    use_case: str | None = None
    module_id: str | None = None


@dataclass
class CancelToken:
    """Token for cancellation signaling, shared by all tools in a turn."""

    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    def throw_if_cancelled(self) -> None:
        """Raise ToolCancelledError if cancelled."""
        if self.cancelled:
            raise ToolCancelledError("turn cancelled")


@dataclass
class ToolConfig:
    """Configuration for tool execution."""

    hard_timeout_ms: int
    retry_count: int
    retry_jitter_min_ms: int
    retry_jitter_max_ms: int
    breaker_failure_threshold: int = 5
    breaker_window_seconds: int = 60
    breaker_half_open_seconds: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolConfig":
        return cls(
            hard_timeout_ms=settings.tool_hard_timeout_ms,
            retry_count=settings.tool_retry_count,
            retry_jitter_min_ms=settings.retry_jitter_min_ms,
            retry_jitter_max_ms=settings.retry_jitter_max_ms,
            breaker_failure_threshold=settings.circuit_breaker_failures,
            breaker_window_seconds=settings.circuit_breaker_window_sec,
            breaker_half_open_seconds=settings.circuit_breaker_half_open_sec,
        )


class BreakerState(str, Enum):
    """Circuit breaker state."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Per-tool circuit breaker.

    Tracks failures within a time window and opens after threshold.
    """

    tool_name: str
    failure_threshold: int
    window_seconds: int
    half_open_seconds: int
    state: BreakerState = BreakerState.CLOSED
    failure_times: list[datetime] = field(default_factory=list)
    opened_at: datetime | None = None

    def record_success(self) -> None:
        if self.state == BreakerState.HALF_OPEN:
            self.state = BreakerState.CLOSED
            self.failure_times.clear()
            self.opened_at = None

    def record_failure(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.window_seconds)
        self.failure_times = [t for t in self.failure_times if t > cutoff]
        self.failure_times.append(now)

        if self.state == BreakerState.HALF_OPEN or len(self.failure_times) >= self.failure_threshold:
            self.state = BreakerState.OPEN
            self.opened_at = now

    def is_open(self, now: datetime) -> bool:
        """Check if breaker is rejecting calls, moving OPEN -> HALF_OPEN when due."""
        if self.state == BreakerState.OPEN and self.opened_at is not None:
            if (now - self.opened_at).total_seconds() >= self.half_open_seconds:
                self.state = BreakerState.HALF_OPEN
        return self.state == BreakerState.OPEN


class BreakerRegistry:
    """Registry of per-tool circuit breakers with shared state."""

    def __init__(self) -> None:
        self._by_tool: dict[str, CircuitBreaker] = {}

    def get_or_create(self, tool_name: str, config: ToolConfig) -> CircuitBreaker:
        if tool_name not in self._by_tool:
            self._by_tool[tool_name] = CircuitBreaker(
                tool_name=tool_name,
                failure_threshold=config.breaker_failure_threshold,
                window_seconds=config.breaker_window_seconds,
                half_open_seconds=config.breaker_half_open_seconds,
            )
        return self._by_tool[tool_name]

    def clear(self) -> None:
        """Clear all breakers (useful for testing)."""
        self._by_tool.clear()


_global_breaker_registry = BreakerRegistry()


def get_breaker_registry() -> BreakerRegistry:
    """Get the global breaker registry instance."""
    return _global_breaker_registry


class ToolMetrics:
    """Interface for tool execution metrics."""

    def record_latency(self, tool: str, outcome: str, latency_ms: float) -> None:
        pass

    def inc_error(self, tool: str, reason: str) -> None:
        pass


class ToolLogger:
    """Interface for structured logging."""

    def log_attempt(
        self,
        ctx: ToolContext,
        attempt: int,
        outcome: str,
        latency_ms: float,
        error_reason: str | None = None,
    ) -> None:
        pass


class ToolExecutor:
    """Runs one tool handler with the full error handling pipeline."""

    def __init__(
        self,
        config: ToolConfig,
        metrics: ToolMetrics | None = None,
        logger: ToolLogger | None = None,
        breakers: BreakerRegistry | None = None,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            config: Timeout/retry/breaker configuration
            metrics: Metrics recorder (optional, defaults to no-op)
            logger: Structured logger (optional, defaults to no-op)
            breakers: Breaker registry (optional, defaults to the shared registry)
            sleep_fn: Injectable sleep function (default: asyncio.sleep)
        """
        self._config = config
        self._metrics = metrics or ToolMetrics()
        self._logger = logger or ToolLogger()
        self._breakers = breakers or get_breaker_registry()
        self._sleep = sleep_fn or asyncio.sleep

    async def execute(
        self,
        ctx: ToolContext,
        fn: Callable[[Any], Awaitable[T]],
        payload: BaseModel,
        cancel_token: CancelToken | None = None,
    ) -> T:
        """Execute a tool handler.

        Returns:
            Whatever the handler returns

        Raises:
            ToolTimeoutError: Every attempt exceeded the hard timeout
            ToolCircuitOpenError: Circuit breaker is open
            ToolCancelledError: Turn was cancelled
            ToolExecutionError: Handler raised on every attempt
        """
        config = self._config
        cancel_token = cancel_token or CancelToken()
        breaker = self._breakers.get_or_create(ctx.tool_name, config)

        cancel_token.throw_if_cancelled()

        if breaker.is_open(datetime.now()):
            self._metrics.inc_error(ctx.tool_name, "breaker_open")
            self._logger.log_attempt(ctx, 0, "breaker_open", 0.0, error_reason="breaker_open")
            raise ToolCircuitOpenError(f"Circuit breaker open for {ctx.tool_name}")

        last_error: Exception | None = None
        for attempt in range(config.retry_count + 1):
            cancel_token.throw_if_cancelled()
            attempt_start = time.monotonic()

            try:
                result = await asyncio.wait_for(fn(payload), timeout=config.hard_timeout_ms / 1000)
            except TimeoutError as e:
                last_error = e
                outcome, reason = "timeout", "timeout"
            except (ToolCancelledError, asyncio.CancelledError):
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                self._metrics.record_latency(ctx.tool_name, "cancelled", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "cancelled", elapsed_ms, "cancelled")
                raise
            except Exception as e:
                last_error = e
                outcome, reason = "error", type(e).__name__
            else:
                elapsed_ms = (time.monotonic() - attempt_start) * 1000
                breaker.record_success()
                self._metrics.record_latency(ctx.tool_name, "success", elapsed_ms)
                self._logger.log_attempt(ctx, attempt + 1, "success", elapsed_ms)
                return result

            elapsed_ms = (time.monotonic() - attempt_start) * 1000
            self._metrics.record_latency(ctx.tool_name, outcome, elapsed_ms)
            self._metrics.inc_error(ctx.tool_name, "timeout" if outcome == "timeout" else "execution_error")
            self._logger.log_attempt(ctx, attempt + 1, outcome, elapsed_ms, error_reason=reason)
            breaker.record_failure(datetime.now())

            if attempt < config.retry_count:
                cancel_token.throw_if_cancelled()
                jitter_ms = random.uniform(config.retry_jitter_min_ms, config.retry_jitter_max_ms)
                await self._sleep(jitter_ms / 1000)

        if isinstance(last_error, TimeoutError):
            raise ToolTimeoutError(f"Tool {ctx.tool_name} timed out after all retries")
        raise ToolExecutionError(f"Tool {ctx.tool_name} failed after all retries") from last_error
