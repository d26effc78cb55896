"""Feature switches passed explicitly into every pipeline component.

A missing credential is not an error: each component checks the matching
switch and takes its documented deterministic path instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from roledigest.config import Settings


@dataclass(frozen=True)
class Capabilities:
    """Which external dependencies this run is allowed to use."""

    language_model_enabled: bool = False
    search_enabled: bool = False
    knowledge_base_enabled: bool = True
    outbound_fetch_enabled: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> Capabilities:
        """Derive capabilities from configured keys and feature flags."""
        return cls(
            language_model_enabled=bool(settings.gemini_api_key),
            search_enabled=bool(settings.serper_api_key),
            knowledge_base_enabled=settings.allow_wikidata_lookup,
            outbound_fetch_enabled=settings.allow_source_fetch,
        )

    @classmethod
    def offline(cls) -> Capabilities:
        """Capabilities with every external dependency switched off."""
        return cls(
            language_model_enabled=False,
            search_enabled=False,
            knowledge_base_enabled=False,
            outbound_fetch_enabled=False,
        )
