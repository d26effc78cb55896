"""Sourced biography writer.

Writes a short biography strictly from collected public evidence. The model
is only called when at least one strong (name-verified) source exists.
"""

from __future__ import annotations

import logging

from roledigest.capabilities import Capabilities
from roledigest.config import Settings, get_settings
from roledigest.services.bio_sources import BioSource, collect_bio_sources
from roledigest.services.gemini import (
    build_config,
    call_gemini_with_retry,
    create_gemini_client,
)
from roledigest.services.search import ProviderGateway

logger = logging.getLogger(__name__)

MIN_BIO_SOURCES = 2
MIN_STRONG_SOURCES = 1
MAX_PROMPT_SOURCES = 8
_SHORT_SNIPPET_CHARS = 80

NO_SOURCES_TEMPLATE = (
    "We couldn't find enough public sources to write a verified bio for {name}."
)
NO_STRONG_SOURCES_TEMPLATE = (
    "We couldn't find enough verified public sources to write a reliable bio for {name}."
)
BIO_NOT_CONFIGURED = (
    "Bio unavailable right now. Configure a Gemini API key to generate it."
)
BIO_UNAVAILABLE = "Bio unavailable right now. Please try again later."

_SYSTEM_PROMPT = (
    "You write concise, elegant, accurate bios in an editorial voice. Use only "
    "facts present in the provided sources. Avoid speculation or fictionalization."
)
_FULL_INSTRUCTION = (
    "Write a 2-paragraph bio that only uses the sources. Make it stylish but "
    "factual and grounded. End with a single-line takeaway about what makes "
    "their work distinctive."
)
_LIMITED_INSTRUCTION = (
    "Write a brief 4-5 sentence profile using only the sources. Say explicitly "
    "when public details are limited and do not guess."
)
_GUARDRAIL = (
    "Never infer dates, follower counts, locations, or roles unless they appear "
    "in the sources. If the sources are insufficient, say so plainly."
)


def format_sources(sources: list[BioSource]) -> str:
    """Render sources as a numbered list for the prompt."""
    return "\n".join(
        f"[{index}] [{source['source_type'] or 'web'}] {source['title'] or 'Source'}"
        f" - {source['snippet'] or 'No snippet'} ({source['url'] or 'no url'})"
        for index, source in enumerate(sources, start=1)
    )


def select_prompt_sources(sources: list[BioSource]) -> tuple[list[BioSource], bool]:
    """Pick the sources to write from.

    Strong sources first, topped up with weak ones to reach the minimum.

    Returns:
        ``(selected, limited)`` where ``limited`` asks for the short variant.
    """
    selected = [s for s in sources if s["is_strong"]]
    if len(selected) < MIN_BIO_SOURCES:
        weak = [s for s in sources if not s["is_strong"]]
        selected += weak[: MIN_BIO_SOURCES - len(selected)]
    limited = len(selected) < MIN_BIO_SOURCES or all(
        len(s["snippet"] or "") < _SHORT_SNIPPET_CHARS for s in selected
    )
    return selected[:MAX_PROMPT_SOURCES], limited


async def generate_bio(
    gateway: ProviderGateway,
    name: str,
    capabilities: Capabilities,
    settings: Settings | None = None,
) -> str:
    """Write a biography for ``name`` from public sources.

    Args:
        gateway: Provider gateway for source collection.
        name: The subject's display name.
        capabilities: Feature switches for this run.
        settings: Application settings (model name).

    Returns:
        Bio text, or one of the fixed "insufficient evidence" / "unavailable"
        sentences. Never raises on provider or model failure.
    """
    sources = await collect_bio_sources(gateway, name)
    if not sources:
        return NO_SOURCES_TEMPLATE.format(name=name)

    strong_count = sum(1 for s in sources if s["is_strong"])
    if strong_count < MIN_STRONG_SOURCES:
        logger.info("No strong bio sources for %s, skipping generation", name)
        return NO_STRONG_SOURCES_TEMPLATE.format(name=name)

    if not capabilities.language_model_enabled:
        return BIO_NOT_CONFIGURED

    settings = settings or get_settings()
    selected, limited = select_prompt_sources(sources)
    prompt = (
        f"Role model: {name}\nSources:\n{format_sources(selected)}\n\n"
        f"{_LIMITED_INSTRUCTION if limited else _FULL_INSTRUCTION} {_GUARDRAIL}"
    )
    config = build_config(_SYSTEM_PROMPT, temperature=0.2, max_output_tokens=600)

    try:
        client = create_gemini_client(settings)
        text = await call_gemini_with_retry(client, settings.gemini.model, prompt, config)
    except Exception:
        logger.warning("Bio generation failed for %s", name, exc_info=True)
        return BIO_UNAVAILABLE

    bio_text = text.strip()
    if not bio_text:
        return BIO_UNAVAILABLE
    logger.info("Generated bio for %s from %d source(s)", name, len(selected))
    return bio_text
