"""Unit tests for structured tool attempt logging."""

import logging
from unittest.mock import MagicMock, patch

import pytest

from backend.app.adapters.platform import FixturePlatformGateway
from backend.app.llm.client import DeterministicStubClient
from backend.app.models.common import UseCase
from backend.app.models.tools import ToolRequest
from backend.app.orchestration.router import ToolRouter
from backend.app.tools.catalog import build_default_registry
from backend.app.tools.executor import BreakerRegistry, ToolConfig, ToolContext, ToolExecutor
from backend.app.utils.logging import StructuredToolLogger


def logged(mock_logger: MagicMock) -> list[tuple[int, str, dict]]:
    return [(c.args[0], c.args[1], c.kwargs["extra"]["structured"]) for c in mock_logger.log.call_args_list]


class TestStructuredToolLogger:
    def test_turn_attempt_carries_the_use_case(self) -> None:
        ctx = ToolContext(session_id="s1", turn_id="t1", tool_name="search_legs", use_case="search_sailing_trips")

        with patch("backend.app.utils.logging.logger") as mock_logger:
            StructuredToolLogger().log_attempt(ctx, 1, "success", 12.345)

        ((level, message, record),) = logged(mock_logger)
        assert level == logging.INFO
        assert message == "[tool] search_legs #1 for search_sailing_trips: success"
        assert record == {
            "session_id": "s1",
            "turn_id": "t1",
            "tool": "search_legs",
            "attempt": 1,
            "outcome": "success",
            "latency_ms": 12.35,
            "use_case": "search_sailing_trips",
        }

    def test_module_attempt_carries_the_module(self) -> None:
        ctx = ToolContext(session_id="s1", turn_id="t1", tool_name="create_boat", module_id="boat")

        with patch("backend.app.utils.logging.logger") as mock_logger:
            StructuredToolLogger().log_attempt(ctx, 2, "timeout", 4000.0, error_reason="timeout")

        ((level, message, record),) = logged(mock_logger)
        assert level == logging.WARNING
        assert message == "[tool] create_boat #2 for module boat: timeout"
        assert record["module_id"] == "boat"
        assert record["error_reason"] == "timeout"
        assert "use_case" not in record

    def test_cancellation_is_not_a_warning(self) -> None:
        ctx = ToolContext(session_id="s1", turn_id="t1", tool_name="search_legs")

        with patch("backend.app.utils.logging.logger") as mock_logger:
            StructuredToolLogger().log_attempt(ctx, 1, "cancelled", 3.0, "cancelled")

        ((level, message, _),) = logged(mock_logger)
        assert level == logging.INFO
        assert message == "[tool] search_legs #1 for direct: cancelled"


@pytest.mark.asyncio
async def test_router_tags_attempts_with_the_turn_use_case() -> None:
    executor = ToolExecutor(
        ToolConfig(hard_timeout_ms=1000, retry_count=0, retry_jitter_min_ms=0, retry_jitter_max_ms=0),
        logger=StructuredToolLogger(),
        breakers=BreakerRegistry(),
    )
    router = ToolRouter(build_default_registry(FixturePlatformGateway()), executor, DeterministicStubClient())

    with patch("backend.app.utils.logging.logger") as mock_logger:
        await router.execute(
            [ToolRequest(tool_name="search_legs", arguments={"region": "baltic"})],
            session_id="s1",
            turn_id="t1",
            use_case=UseCase.search_sailing_trips,
        )

    ((_, _, record),) = logged(mock_logger)
    assert record["use_case"] == "search_sailing_trips"
    assert record["tool"] == "search_legs"
    assert record["outcome"] == "success"
