"""Health check endpoints."""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_categorizer
from services.categorizer import LLMCategorizer

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    llm: str


@router.get("/health", response_model=HealthResponse)
async def health_check(
    categorizer: LLMCategorizer | None = Depends(get_categorizer),
) -> HealthResponse:
    """Report service health and whether LLM categorization is available."""
    return HealthResponse(
        status="healthy",
        llm="configured" if categorizer is not None else "disabled",
    )
