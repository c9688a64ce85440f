"""Classifier Gateway: asks the categorization service for a suggestion."""
import json
import logging
from typing import Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from core.config import Settings, get_settings
from gateways.api_client import get_headers
from schemas.classification import ClassifierSuggestion
from services.exceptions import ClassificationError

logger = logging.getLogger(__name__)


class ClassifierGateway(Protocol):
    """Best-effort URL categorization."""

    async def classify(self, url: str, user_title: str | None) -> ClassifierSuggestion | None:
        """
        Suggest category, tags, summary and title for a URL.

        Returns None when the service declines (non-2xx). Raises
        ClassificationError on timeouts, transport failures or bad payloads.
        """
        ...


class HttpClassifierGateway:
    """ClassifierGateway over POST /categorize."""

    def __init__(self, client: httpx.AsyncClient, token: str = "") -> None:
        self._client = client
        self._token = token

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "HttpClassifierGateway":
        """Create a gateway whose requests are bounded by classifier_timeout."""
        settings = settings or get_settings()
        client = httpx.AsyncClient(
            base_url=settings.classifier_url,
            timeout=settings.classifier_timeout,
        )
        return cls(client, token=settings.api_token)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def classify(self, url: str, user_title: str | None) -> ClassifierSuggestion | None:
        """POST /categorize and parse the suggestion."""
        try:
            response = await self._client.post(
                "/categorize",
                json={"url": url, "userTitle": user_title or ""},
                headers=get_headers(self._token),
            )
        except httpx.TimeoutException as e:
            raise ClassificationError(f"Categorization timed out for {url}") from e
        except httpx.RequestError as e:
            raise ClassificationError(f"Categorization request failed: {e}") from e

        if not response.is_success:
            logger.info("Categorization declined for %s: HTTP %s", url, response.status_code)
            return None

        try:
            return ClassifierSuggestion.model_validate(response.json())
        except (json.JSONDecodeError, PydanticValidationError) as e:
            raise ClassificationError(f"Invalid categorization response for {url}") from e
