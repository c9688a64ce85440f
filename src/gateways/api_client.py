"""HTTP client helpers shared by the remote gateways."""
from typing import Any

import httpx

REQUEST_SOURCE = "linknest-sync"


def get_headers(token: str) -> dict[str, str]:
    """Get common headers for API requests."""
    headers = {"X-Request-Source": REQUEST_SOURCE}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _json_or_none(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


async def api_get(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    params: dict[str, Any] | None = None,
) -> Any:
    """Make an authenticated GET request to the API."""
    response = await client.get(path, params=params, headers=get_headers(token))
    response.raise_for_status()
    return _json_or_none(response)


async def api_post(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    json: Any = None,
) -> Any:
    """Make an authenticated POST request to the API."""
    response = await client.post(path, json=json, headers=get_headers(token))
    response.raise_for_status()
    return _json_or_none(response)


async def api_patch(
    client: httpx.AsyncClient,
    path: str,
    token: str,
    json: Any,
) -> Any:
    """Make an authenticated PATCH request to the API."""
    response = await client.patch(path, json=json, headers=get_headers(token))
    response.raise_for_status()
    return _json_or_none(response)


async def api_delete(
    client: httpx.AsyncClient,
    path: str,
    token: str,
) -> Any:
    """Make an authenticated DELETE request to the API."""
    response = await client.delete(path, headers=get_headers(token))
    response.raise_for_status()
    return _json_or_none(response)
