"""Tests for the categorization service endpoints."""
import json
from collections.abc import AsyncGenerator, Iterator
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from api.dependencies import get_categorizer
from api.main import app, lifespan
from core.config import get_settings
from schemas.classification import PageMetadata
from services.categorizer import LLMCategorizer

META = PageMetadata(title="Figma: The Collaborative Interface Design Tool", site_name="Figma")


def llm_answering(content: str) -> LLMCategorizer:
    """Categorizer whose model always returns ``content``."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))]),
    )
    return LLMCategorizer(client, "test-model")


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def no_page_fetch() -> Iterator[AsyncMock]:
    with patch("services.categorizer.fetch_page_metadata", AsyncMock(return_value=META)) as fetch:
        yield fetch


def use_categorizer(categorizer: LLMCategorizer | None) -> None:
    app.dependency_overrides[get_categorizer] = lambda: categorizer


async def test__health__reports_llm_status(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "llm": "disabled"}

    use_categorizer(llm_answering("{}"))
    response = await client.get("/health")
    assert response.json()["llm"] == "configured"


async def test__health__sets_security_headers(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"


async def test__categorize__returns_camel_case_suggestion(client: AsyncClient) -> None:
    use_categorizer(llm_answering(json.dumps({
        "category": "Design",
        "tags": ["ui", "design", "collaboration"],
        "summary": "Collaborative interface design tool",
        "suggestedTitle": "Figma",
    })))

    response = await client.post(
        "/categorize", json={"url": "https://www.figma.com/", "userTitle": ""},
    )

    assert response.status_code == 200
    assert response.json() == {
        "category": "Design",
        "tags": ["ui", "design", "collaboration"],
        "summary": "Collaborative interface design tool",
        "suggestedTitle": "Figma",
        "pageTitle": "Figma: The Collaborative Interface Design Tool",
    }


async def test__categorize__llm_failure_falls_back_to_domain(client: AsyncClient) -> None:
    use_categorizer(llm_answering("not json at all"))

    response = await client.post("/categorize", json={"url": "https://www.figma.com/file/1"})

    assert response.status_code == 200
    data = response.json()
    assert data["category"] == "Design"
    assert data["tags"] == ["figma"]
    assert data["summary"] == "Bookmarked from figma.com"
    assert data["suggestedTitle"] == META.title


async def test__categorize__missing_url_is_rejected(client: AsyncClient) -> None:
    use_categorizer(llm_answering("{}"))

    response = await client.post("/categorize", json={"userTitle": "x"})

    assert response.status_code == 422


async def test__categorize__invalid_url_is_rejected(client: AsyncClient) -> None:
    use_categorizer(llm_answering("{}"))

    response = await client.post("/categorize", json={"url": "not a url"})

    assert response.status_code == 422


async def test__categorize__without_llm_returns_503(client: AsyncClient, no_page_fetch: AsyncMock) -> None:
    response = await client.post("/categorize", json={"url": "https://www.figma.com/"})

    assert response.status_code == 503
    no_page_fetch.assert_not_awaited()


async def test__lifespan__creates_categorizer_only_with_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LLM_API_KEY", "test-key")
    async with lifespan(app):
        assert isinstance(app.state.categorizer, LLMCategorizer)
    assert app.state.categorizer is None

    monkeypatch.delenv("LLM_API_KEY")
    get_settings.cache_clear()
    async with lifespan(app):
        assert app.state.categorizer is None
