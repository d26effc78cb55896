"""Shared record types passed between pipeline stages."""

from __future__ import annotations

from typing import Literal, NotRequired, TypedDict

SourceType = Literal["web", "news", "video", "social", "custom"]

SOURCE_TYPES: tuple[SourceType, ...] = ("web", "news", "video", "social", "custom")

PLACEHOLDER_SUMMARY = "Update captured from the weekly scan."


class Candidate(TypedDict):
    """A discovered item before it is promoted into a digest."""

    title: str
    url: str
    snippet: str
    source_type: SourceType
    date: str


class CustomSource(TypedDict):
    """A user-provided source URL attached to a role model."""

    url: str
    label: NotRequired[str | None]


class DigestItem(TypedDict):
    """A candidate promoted into a digest."""

    source_title: str
    source_url: str
    source_type: SourceType
    source_date: str
    summary: str
    content_hash: str
    is_official: bool


class DigestContent(TypedDict):
    """One synthesized role-model week."""

    summary_text: str
    topics: list[str]
    items: list[DigestItem]
