"""FastAPI dependencies for the assistant engine."""

from functools import lru_cache

from backend.app.config import get_settings
from backend.app.orchestration.engine import AssistantEngine, build_engine


@lru_cache
def get_engine() -> AssistantEngine:
    """Process-wide engine built from settings. Override in tests."""
    return build_engine(get_settings())
