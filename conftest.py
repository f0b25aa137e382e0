"""Global pytest configuration."""

import os

# Deterministic stub LLM for tests, set before any imports read settings
os.environ["OPENAI_API_KEY"] = ""
