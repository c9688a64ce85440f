"""Page metadata fetching used to ground URL categorization."""
import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from schemas.classification import PageMetadata

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (compatible; LinkNest/1.0)'
DEFAULT_TIMEOUT = 6.0


class SSRFBlockedError(Exception):
    """Raised when a URL targets a private/internal network address."""

    pass


def is_private_ip(ip_str: str) -> bool:
    """
    Check if an IP address is private, loopback, or otherwise internal.

    Unparseable addresses count as private.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return True
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_url_not_private(url: str) -> None:
    """
    Validate that a URL does not target a private/internal network.

    The hostname is resolved so that names pointing at internal addresses are
    rejected too.

    Raises:
        SSRFBlockedError: If the URL targets a private network.
        ValueError: If the URL is malformed or the hostname does not resolve.
    """
    hostname = urlparse(url).hostname
    if not hostname:
        raise ValueError(f"Invalid URL (no hostname): {url}")

    if hostname.lower() in ('localhost', 'localhost.localdomain'):
        raise SSRFBlockedError(f"Blocked request to localhost: {url}")

    try:
        addrinfo = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise ValueError(f"Could not resolve hostname: {hostname}") from e
    for _, _, _, _, sockaddr in addrinfo:
        ip_str = sockaddr[0]
        if is_private_ip(ip_str):
            raise SSRFBlockedError(
                f"Blocked request to private/internal address: {url} resolves to {ip_str}",
            )


@dataclass
class FetchResult:
    """Result of fetching a page (raw HTML before extraction)."""

    html: str | None
    final_url: str
    status_code: int | None
    error: str | None


async def fetch_html(url: str, timeout: float = DEFAULT_TIMEOUT) -> FetchResult:  # noqa: ASYNC109
    """
    Fetch a page's HTML.

    Best-effort: returns error info instead of raising. Redirects are followed
    and the final URL is checked against private networks again.
    """
    try:
        # getaddrinfo blocks; keep it off the event loop
        await asyncio.to_thread(validate_url_not_private, url)
    except (SSRFBlockedError, ValueError) as e:
        return FetchResult(html=None, final_url=url, status_code=None, error=str(e))

    try:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout,
            headers={'User-Agent': USER_AGENT},
        ) as client:
            response = await client.get(url)
    except httpx.TimeoutException:
        return FetchResult(html=None, final_url=url, status_code=None, error="Request timed out")
    except httpx.RequestError as e:
        return FetchResult(html=None, final_url=url, status_code=None, error=f"Request failed: {e}")

    final_url = str(response.url)
    if final_url != url:
        try:
            await asyncio.to_thread(validate_url_not_private, final_url)
        except (SSRFBlockedError, ValueError) as e:
            return FetchResult(
                html=None,
                final_url=final_url,
                status_code=response.status_code,
                error=f"Redirect blocked: {e}",
            )

    if not response.is_success:
        return FetchResult(
            html=None,
            final_url=final_url,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )

    content_type = response.headers.get('content-type', '')
    if 'html' not in content_type.lower():
        return FetchResult(
            html=None,
            final_url=final_url,
            status_code=response.status_code,
            error=f"Unsupported content type: {content_type}",
        )
    return FetchResult(html=response.text, final_url=final_url, status_code=response.status_code, error=None)


def _meta_content(soup: BeautifulSoup, *names: str) -> str:
    """Content of the first <meta> whose property or name matches, in order."""
    for name in names:
        tag = soup.find('meta', attrs={'property': name}) or soup.find('meta', attrs={'name': name})
        if tag and tag.get('content') and tag['content'].strip():
            return tag['content'].strip()
    return ''


def extract_page_metadata(html: str) -> PageMetadata:
    """
    Extract categorization hints from HTML.

    Pure function with no I/O.

    Title priority: og:title, then <title>, then twitter:title.
    Description priority: og:description, then description, then twitter:description.
    """
    soup = BeautifulSoup(html, 'lxml')

    title = _meta_content(soup, 'og:title')
    if not title:
        title_tag = soup.find('title')
        if title_tag and title_tag.string:
            title = title_tag.string.strip()
    if not title:
        title = _meta_content(soup, 'twitter:title')

    return PageMetadata(
        title=title,
        description=_meta_content(soup, 'og:description', 'description', 'twitter:description'),
        site_name=_meta_content(soup, 'og:site_name'),
        keywords=_meta_content(soup, 'keywords'),
    )


async def fetch_page_metadata(url: str, timeout: float = DEFAULT_TIMEOUT) -> PageMetadata:  # noqa: ASYNC109
    """
    Fetch a URL and extract its metadata.

    Never raises: any fetch failure yields empty metadata so categorization
    can still run on the URL alone.
    """
    result = await fetch_html(url, timeout)
    if result.error or result.html is None:
        logger.info("Metadata fetch failed for %s: %s", url, result.error)
        return PageMetadata()
    return extract_page_metadata(result.html)
