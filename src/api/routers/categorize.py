"""Categorization endpoint used by the web app, the extension, and the sync engine."""
import logging

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_categorizer, get_settings
from core.config import Settings
from schemas.classification import CategorizeRequest, ClassifierSuggestion
from schemas.validators import validate_url
from services.categorizer import LLMCategorizer, categorize_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["categorize"])


@router.post("/categorize", response_model=ClassifierSuggestion)
async def categorize(
    data: CategorizeRequest,
    settings: Settings = Depends(get_settings),
    categorizer: LLMCategorizer | None = Depends(get_categorizer),
) -> ClassifierSuggestion:
    """
    Suggest category, tags, summary and title for a URL.

    Falls back to a domain-based guess when the model fails; responds 503 when
    no model is configured so clients use their own fallback.
    """
    try:
        url = validate_url(data.url)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if categorizer is None:
        raise HTTPException(status_code=503, detail="LLM categorization is not configured")

    suggestion = await categorize_url(
        url, data.user_title, categorizer, metadata_timeout=settings.metadata_fetch_timeout,
    )
    logger.info("Categorized %s as %s", url, suggestion.category)
    return suggestion
