"""
LLM-backed URL categorization for the categorization service.

The model is reached through the OpenAI-compatible chat completions API (by
default Gemini's OpenAI endpoint). Any LLM or parsing failure degrades to the
deterministic domain fallback; callers always get a suggestion.
"""
import json
import logging
import re

import openai
from openai import AsyncOpenAI

from core.categories import CATEGORIES
from core.config import Settings, get_settings
from schemas.classification import ClassifierSuggestion, PageMetadata
from services.classification import domain_fallback
from services.exceptions import ClassificationError
from services.url_scraper import fetch_page_metadata
from services.utils import extract_domain

logger = logging.getLogger(__name__)

_CODE_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_END = re.compile(r"```\s*$")

PROMPT_TEMPLATE = """You are a smart bookmark organizer. Analyze this webpage and return a JSON object.

URL: {url}
Domain: {domain}
Page Title: {title}
Description: {description}
Site Name: {site_name}
Keywords: {keywords}

Return ONLY a valid JSON object (no markdown, no backticks) with these fields:
{{
  "category": "one of: {categories}",
  "tags": ["tag1", "tag2", "tag3"],
  "summary": "A concise one-line summary of what this page is about (max 15 words)",
  "suggestedTitle": "A clean, readable title for bookmarking (max 8 words)"
}}

Rules:
- Use the URL and domain to determine the category even if metadata is missing or sparse.
- Well-known sites must be categorized by what they are, for example:
  youtube.com -> Video, github.com -> Development, x.com -> Social Media,
  spotify.com -> Music, amazon.com -> Shopping, netflix.com -> Entertainment,
  figma.com -> Design, notion.so -> Productivity, wikipedia.org -> Reference
- Never use "Other" if the site clearly fits one of the categories above
- Pick the single best category from the list
- Generate 2-4 short, relevant lowercase tags (no hashtags)
- suggestedTitle should be concise and clear"""


def build_prompt(url: str, domain: str, meta: PageMetadata, user_title: str | None) -> str:
    """Render the categorization prompt for one URL."""
    return PROMPT_TEMPLATE.format(
        url=url,
        domain=domain,
        title=meta.title or user_title or "Unknown",
        description=meta.description or "None",
        site_name=meta.site_name or "Unknown",
        keywords=meta.keywords or "None",
        categories=", ".join(CATEGORIES),
    )


def parse_llm_response(
    text: str,
    meta: PageMetadata,
    user_title: str | None = None,
) -> ClassifierSuggestion:
    """
    Parse the model's JSON answer, tolerating a surrounding code fence.

    Raises:
        ClassificationError: If the text is not a JSON object.
    """
    cleaned = _CODE_FENCE_END.sub("", _CODE_FENCE_START.sub("", text.strip())).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassificationError(f"Model returned invalid JSON: {cleaned[:100]!r}") from e
    if not isinstance(data, dict):
        raise ClassificationError("Model response is not a JSON object")

    tags = data.get("tags")
    return ClassifierSuggestion(
        category=data.get("category"),
        tags=[t for t in tags if isinstance(t, str)] if isinstance(tags, list) else [],
        summary=data.get("summary") if isinstance(data.get("summary"), str) else None,
        suggested_title=data.get("suggestedTitle") or meta.title or user_title,
        page_title=meta.title or None,
    )


class LLMCategorizer:
    """Asks a chat model to categorize a URL."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "LLMCategorizer":
        """Create a categorizer against the configured OpenAI-compatible endpoint."""
        settings = settings or get_settings()
        client = AsyncOpenAI(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            timeout=settings.classifier_timeout,
        )
        return cls(client, settings.llm_model)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.close()

    async def categorize(
        self,
        url: str,
        meta: PageMetadata,
        user_title: str | None = None,
    ) -> ClassifierSuggestion:
        """
        Categorize a URL with the model.

        Raises:
            ClassificationError: If the API call fails or the answer is unusable.
        """
        prompt = build_prompt(url, extract_domain(url), meta, user_title)
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0,
            )
        except openai.OpenAIError as e:
            raise ClassificationError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ClassificationError("LLM returned an empty response")
        return parse_llm_response(content, meta, user_title)


async def categorize_url(
    url: str,
    user_title: str | None,
    categorizer: LLMCategorizer,
    metadata_timeout: float = 6.0,
) -> ClassifierSuggestion:
    """
    Fetch page metadata and categorize a URL, falling back to the domain guess.

    Never raises.
    """
    user_title = user_title.strip() if user_title and user_title.strip() else None
    meta = await fetch_page_metadata(url, metadata_timeout)
    try:
        return await categorizer.categorize(url, meta, user_title)
    except ClassificationError as e:
        logger.warning("LLM categorization failed for %s, using domain fallback: %s", url, e)
        return domain_fallback(url, page_title=meta.title or None, user_title=user_title)
