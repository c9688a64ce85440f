"""FastAPI dependencies for injection."""
from fastapi import Request

from core.config import get_settings
from services.categorizer import LLMCategorizer

__all__ = [
    "get_categorizer",
    "get_settings",
]


def get_categorizer(request: Request) -> LLMCategorizer | None:
    """Categorizer created at startup, or None when no LLM key is configured."""
    return getattr(request.app.state, "categorizer", None)
