"""Gateway to the external search and knowledge-base providers.

Wraps the Serper search API (web, news and image search) and the Wikidata
entity/claims API behind one object configured with explicit capabilities.
Non-2xx responses and transport failures surface as ``ProviderError``;
``safe_search`` turns them into an explicit ``SearchOutcome`` value for
callers that want to degrade instead of catching.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx

from roledigest.capabilities import Capabilities
from roledigest.config import Settings, get_settings
from roledigest.services import scraper

logger = logging.getLogger(__name__)

_SERPER_BASE_URL = "https://google.serper.dev/"
_WIKIDATA_SEARCH_URL = "https://www.wikidata.org/w/api.php"
_WIKIDATA_ENTITY_URL = "https://www.wikidata.org/wiki/Special:EntityData/{entity_id}.json"
_WIKIDATA_HEADERS = {"User-Agent": "roledigest/0.1 (weekly role model digest)"}
_MAX_ERROR_BODY = 300


class SearchKind(StrEnum):
    """Serper endpoint to query."""

    WEB = "search"
    NEWS = "news"
    IMAGES = "images"


class TimeWindow(StrEnum):
    """Recency filter applied to a search."""

    PAST_WEEK = "qdr:w"
    PAST_YEAR = "qdr:y"
    ANY = ""


class ProviderError(Exception):
    """A search or knowledge-base call failed (non-2xx or transport error)."""

    def __init__(self, status: int | None, body: str = "") -> None:
        self.status = status
        self.body = body
        label = f" ({status})" if status else ""
        super().__init__(f"Search provider error{label}")


@dataclass
class SearchOutcome:
    """Result of a search that never raises."""

    ok: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: ProviderError | None = None

    def results(self, key: str) -> list[dict[str, Any]]:
        """Return the list under ``key`` (e.g. ``organic``), or [] on failure."""
        value = self.data.get(key) if self.ok else None
        return [entry for entry in value if isinstance(entry, dict)] if isinstance(value, list) else []


class ProviderGateway:
    """Search, knowledge-base and page-fetch access for one pipeline run."""

    def __init__(
        self,
        settings: Settings | None = None,
        capabilities: Capabilities | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.capabilities = capabilities or self.settings.capabilities

    # --- Search ---

    async def search(
        self,
        query: str,
        kind: SearchKind = SearchKind.WEB,
        time_window: TimeWindow = TimeWindow.PAST_WEEK,
        result_count: int | None = None,
        faces_only: bool = False,
    ) -> dict[str, Any]:
        """Run one search query and return the provider's JSON body.

        Args:
            query: Search query text.
            kind: Web, news or image search.
            time_window: Recency filter, past week unless widened.
            result_count: Number of results; defaults to the configured count.
            faces_only: Restrict image search to photos of faces.

        Returns:
            Decoded JSON response.

        Raises:
            ProviderError: Search is not configured, the provider returned a
                non-2xx status, or the request failed in transit.
        """
        if not self.capabilities.search_enabled:
            raise ProviderError(None, "search provider not configured")

        body: dict[str, Any] = {
            "q": query,
            "num": result_count or self.settings.search.result_count,
        }
        filters = [f for f in (time_window.value, "itp:face" if faces_only else "") if f]
        if filters:
            body["tbs"] = ",".join(filters)

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.search.timeout_seconds
            ) as client:
                response = await client.post(
                    f"{_SERPER_BASE_URL}{kind.value}",
                    json=body,
                    headers={"X-API-KEY": self.settings.serper_api_key},
                )
        except httpx.HTTPError as exc:
            raise ProviderError(None, str(exc)) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderError(response.status_code, response.text[:_MAX_ERROR_BODY])
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, "invalid JSON body") from exc
        return data if isinstance(data, dict) else {}

    async def safe_search(
        self,
        query: str,
        kind: SearchKind = SearchKind.WEB,
        time_window: TimeWindow = TimeWindow.PAST_WEEK,
        result_count: int | None = None,
        faces_only: bool = False,
    ) -> SearchOutcome:
        """Like ``search`` but returns a failed ``SearchOutcome`` instead of raising."""
        try:
            data = await self.search(
                query,
                kind,
                time_window=time_window,
                result_count=result_count,
                faces_only=faces_only,
            )
        except ProviderError as exc:
            logger.warning("Search failed for %r (%s): %s", query, kind.value, exc)
            return SearchOutcome(ok=False, error=exc)
        return SearchOutcome(ok=True, data=data)

    # --- Knowledge base ---

    async def lookup_knowledge_entity(self, name: str) -> str | None:
        """Return the entity id whose label matches ``name`` exactly (case-insensitive).

        Never falls back to the closest fuzzy match.

        Raises:
            ProviderError: The knowledge base returned a non-2xx status.
        """
        if not self.capabilities.knowledge_base_enabled or not name:
            return None
        params = {
            "action": "wbsearchentities",
            "format": "json",
            "language": "en",
            "limit": "5",
            "search": name,
        }
        data = await self._get_json(_WIKIDATA_SEARCH_URL, params=params)
        results = data.get("search")
        if not isinstance(results, list):
            return None
        target = name.lower()
        for entry in results:
            if not isinstance(entry, dict):
                continue
            label = entry.get("label")
            if isinstance(label, str) and label.lower() == target:
                entity_id = entry.get("id")
                return entity_id if isinstance(entity_id, str) else None
        return None

    async def fetch_knowledge_claims(self, entity_id: str) -> dict[str, Any]:
        """Return the raw claims map of an entity ({} if it has none)."""
        if not self.capabilities.knowledge_base_enabled or not entity_id:
            return {}
        data = await self._get_json(_WIKIDATA_ENTITY_URL.format(entity_id=entity_id))
        entities = data.get("entities")
        if not isinstance(entities, dict):
            return {}
        entity = entities.get(entity_id)
        claims = entity.get("claims") if isinstance(entity, dict) else None
        return claims if isinstance(claims, dict) else {}

    async def lookup_knowledge_claim(self, entity_id: str, property_id: str) -> str:
        """Return one property value of an entity, or "" when it is missing."""
        claims = await self.fetch_knowledge_claims(entity_id)
        return extract_claim_value(claims, property_id)

    async def _get_json(
        self, url: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.search.timeout_seconds
            ) as client:
                response = await client.get(
                    url, params=params, headers=_WIKIDATA_HEADERS
                )
        except httpx.HTTPError as exc:
            raise ProviderError(None, str(exc)) from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise ProviderError(response.status_code, response.text[:_MAX_ERROR_BODY])
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(response.status_code, "invalid JSON body") from exc
        return data if isinstance(data, dict) else {}

    # --- Page fetch ---

    async def fetch_page(self, url: str) -> str:
        """Return raw page HTML, or "" when outbound fetch is disabled or fails."""
        if not self.capabilities.outbound_fetch_enabled:
            return ""
        return await scraper.fetch_page_html(url)

    async def fetch_page_text(self, url: str, max_chars: int) -> str:
        """Return visible page text truncated to ``max_chars`` ("" when unavailable)."""
        html = await self.fetch_page(url)
        return scraper.extract_visible_text(html)[:max_chars]


def extract_claim_value(claims: dict[str, Any], property_id: str) -> str:
    """Read the first value of a claim as a string.

    Handles plain strings (handles, file names), entity references
    (``{"id": ...}``), monolingual text and time values.
    """
    entries = claims.get(property_id) if isinstance(claims, dict) else None
    if not isinstance(entries, list) or not entries:
        return ""
    value: Any = entries[0]
    for key in ("mainsnak", "datavalue", "value"):
        value = value.get(key) if isinstance(value, dict) else None
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("id", "text", "time"):
            candidate = value.get(key)
            if isinstance(candidate, str) and candidate:
                return candidate
    return ""
