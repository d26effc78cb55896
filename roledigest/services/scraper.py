"""Page fetching and HTML extraction.

Fetches arbitrary pages with httpx and pulls out visible text (for item
summaries) and Open Graph / Twitter card images (for profile pictures).
Callers are responsible for checking the outbound-fetch capability first.
"""

from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from roledigest.services.normalizer import sanitize_snippet

logger = logging.getLogger(__name__)

_FETCH_TIMEOUT = 10.0
_MAX_HTML_CHARS = 200_000
_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
}

# (attribute, value) pairs checked in order on <meta> tags.
_IMAGE_META_KEYS = [
    ("property", "og:image"),
    ("property", "og:image:url"),
    ("property", "og:image:secure_url"),
    ("name", "twitter:image"),
    ("name", "twitter:image:src"),
    ("name", "image"),
    ("name", "thumbnail"),
    ("property", "twitter:image"),
]


async def fetch_page_html(url: str) -> str:
    """GET a page and return its HTML, or "" on any failure.

    Args:
        url: Page URL.

    Returns:
        Up to 200k characters of HTML. Empty string on network error or
        non-2xx status.
    """
    if not url:
        return ""
    try:
        async with httpx.AsyncClient(
            timeout=_FETCH_TIMEOUT, follow_redirects=True
        ) as client:
            response = await client.get(url, headers=_BROWSER_HEADERS)
            response.raise_for_status()
            return response.text[:_MAX_HTML_CHARS]
    except httpx.HTTPStatusError as exc:
        logger.warning(
            "HTTP %d fetching page %s", exc.response.status_code, url
        )
    except httpx.HTTPError as exc:
        logger.warning("Network error fetching page %s: %s", url, exc)
    return ""


def extract_visible_text(html: str) -> str:
    """Strip tags, scripts and styles, returning whitespace-collapsed text."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return sanitize_snippet(soup.get_text(" "))


def extract_open_graph_image(html: str, page_url: str) -> str:
    """Return the page's share image as an absolute URL, or "".

    Data URLs are ignored.
    """
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    image = ""
    for attr, value in _IMAGE_META_KEYS:
        tag = soup.find("meta", attrs={attr: value})
        content = tag.get("content") if tag else None
        if isinstance(content, str) and content.strip():
            image = content.strip()
            break
    if not image:
        link = soup.find("link", rel="image_src")
        href = link.get("href") if link else None
        if isinstance(href, str):
            image = href.strip()
    if not image or image.startswith("data:"):
        return ""
    return urljoin(page_url, image)
