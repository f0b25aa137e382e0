"""Prometheus scrape endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Text exposition of the default registry.

    Assistant series: ``tool_latency_ms``, ``tool_errors_total``,
    ``assistant_turns_total``, ``assistant_turn_latency_ms``,
    ``draft_transitions_total`` and ``session_busy_total``.
    """
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
