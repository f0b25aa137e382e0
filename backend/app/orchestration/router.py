"""Tool router - allow-list narrowing, tool selection and execution."""

import asyncio
import logging
import time
from collections.abc import Sequence
from datetime import UTC, datetime

from pydantic import ValidationError

from backend.app.errors import ToolNotAllowedError
from backend.app.llm.client import LLMClient
from backend.app.models.common import UseCase
from backend.app.models.session import Session, ToolFailure, ToolInvocation
from backend.app.models.tools import RoutingOutcome, ToolRequest
from backend.app.orchestration.context import build_labelled_context
from backend.app.tools.executor import (
    CancelToken,
    ToolCancelledError,
    ToolCircuitOpenError,
    ToolContext,
    ToolExecutionError,
    ToolExecutor,
    ToolTimeoutError,
)
from backend.app.tools.registry import ToolRegistry, ToolSpec

logger = logging.getLogger(__name__)


class ToolRouter:
    """Narrows the registry per use case and runs the selected tools."""

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor,
        llm: LLMClient,
        window_messages: int = 6,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._llm = llm
        self._window = window_messages

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    async def route(self, use_case: UseCase, session: Session, latest_user_turn: str) -> list[ToolRequest]:
        """Ordered tool requests for a turn, restricted to the use case allow-list."""
        tools = self._registry.tools_for(use_case)
        if not tools:
            return []

        selected = await self._llm.select_tools(
            use_case=use_case,
            latest_turn=latest_user_turn,
            window=session.recent_messages(self._window),
            tools=tools,
            owner_id=str(session.owner_id) if session.owner_id else None,
            stored_context=build_labelled_context(session),
        )

        requests = []
        for request in selected:
            if self._registry.is_allowed(use_case, request.tool_name):
                requests.append(request)
            else:
                logger.warning(
                    f"[router] dropping {request.tool_name}: not in {use_case.value} allow-list",
                    extra={"structured": {"session_id": str(session.id), "tool": request.tool_name}},
                )
        return requests

    async def execute(
        self,
        requests: Sequence[ToolRequest],
        *,
        session_id: str,
        turn_id: str,
        use_case: UseCase | None = None,
        module_id: str | None = None,
        cancel_token: CancelToken | None = None,
    ) -> RoutingOutcome:
        """Run requests and join their results.

        Parallel-safe requests run concurrently first, then the rest strictly
        in order. Every request yields an invocation, in request order; a
        failure never aborts its siblings. Cancellation stops further
        invocations and propagates ToolCancelledError.

        With ``use_case`` set, a request outside its allow-list raises
        ToolNotAllowedError before anything runs. ``use_case`` and
        ``module_id`` also tag every attempt log line.
        """
        cancel_token = cancel_token or CancelToken()
        scope = {"use_case": use_case.value if use_case else None, "module_id": module_id}
        specs: list[ToolSpec | None] = []
        for request in requests:
            if use_case is not None and not self._registry.is_allowed(use_case, request.tool_name):
                raise ToolNotAllowedError(
                    f"Tool {request.tool_name} is not allowed for {use_case.value}",
                    tool_name=request.tool_name,
                    use_case=use_case.value,
                    session_id=session_id,
                )
            specs.append(self._registry.get(request.tool_name))

        results: list[ToolInvocation | None] = [None] * len(requests)

        parallel = [i for i, spec in enumerate(specs) if spec is not None and spec.parallel_safe]
        if parallel:
            gathered = await asyncio.gather(
                *(self._invoke(requests[i], specs[i], session_id, turn_id, scope, cancel_token) for i in parallel),
                return_exceptions=True,
            )
            for i, result in zip(parallel, gathered, strict=True):
                if isinstance(result, BaseException):
                    # Only cancellation escapes _invoke
                    raise result
                results[i] = result

        for i, request in enumerate(requests):
            if results[i] is None:
                results[i] = await self._invoke(request, specs[i], session_id, turn_id, scope, cancel_token)

        return RoutingOutcome(invocations=[r for r in results if r is not None])

    async def _invoke(
        self,
        request: ToolRequest,
        spec: ToolSpec | None,
        session_id: str,
        turn_id: str,
        scope: dict[str, str | None],
        cancel_token: CancelToken,
    ) -> ToolInvocation:
        started_at = datetime.now(UTC)
        start = time.monotonic()

        def failed(reason: str, error_type: str) -> ToolInvocation:
            fatal = spec.fatal_on_failure if spec is not None else False
            logger.warning(
                f"[router] {request.tool_name} failed ({error_type}): {reason}",
                extra={
                    "structured": {
                        "session_id": session_id,
                        "turn_id": turn_id,
                        "tool": request.tool_name,
                        **scope,
                        "error_type": error_type,
                        "fatal": fatal,
                    }
                },
            )
            return ToolInvocation(
                tool_name=request.tool_name,
                arguments=request.arguments,
                failure=ToolFailure(reason=reason, error_type=error_type, fatal=fatal),
                latency_ms=(time.monotonic() - start) * 1000,
                started_at=started_at,
            )

        if spec is None:
            return failed(f"Unknown tool {request.tool_name}", "unknown_tool")

        cancel_token.throw_if_cancelled()
        try:
            payload = spec.input_model.model_validate(request.arguments)
        except ValidationError as e:
            return failed(f"Invalid arguments: {e.error_count()} error(s)", "invalid_arguments")

        ctx = ToolContext(session_id=session_id, turn_id=turn_id, tool_name=spec.name, **scope)
        try:
            raw = await self._executor.execute(ctx, spec.handler, payload, cancel_token)
        except ToolCancelledError:
            raise
        except ToolTimeoutError as e:
            return failed(str(e), "timeout")
        except ToolCircuitOpenError as e:
            return failed(str(e), "breaker_open")
        except ToolExecutionError as e:
            cause = e.__cause__
            return failed(str(cause) if cause else str(e), type(cause).__name__ if cause else "execution_error")

        try:
            output = spec.output_model.model_validate(raw.model_dump() if hasattr(raw, "model_dump") else raw)
        except ValidationError as e:
            return failed(f"Invalid output: {e.error_count()} error(s)", "invalid_output")

        return ToolInvocation(
            tool_name=spec.name,
            arguments=payload.model_dump(mode="json", exclude_none=True),
            output=output.model_dump(mode="json"),
            latency_ms=(time.monotonic() - start) * 1000,
            started_at=started_at,
        )
