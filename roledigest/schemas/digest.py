"""Digest response schemas."""

from datetime import date, datetime

from pydantic import BaseModel


class DigestItemResponse(BaseModel):
    """Single source item within a weekly digest."""

    source_title: str
    source_url: str
    source_type: str
    source_date: str
    summary: str
    is_official: bool


class DigestResponse(BaseModel):
    """Full weekly digest API response."""

    id: str
    role_model_id: str
    week_start: date
    summary_text: str
    topics: list[str]
    items: list[DigestItemResponse]
    generated_at: datetime
    email_sent_at: datetime | None = None


class SharedDigestResponse(DigestResponse):
    """Publicly shared digest with its subject's name and image."""

    role_model_name: str
    role_model_image: str = ""


class DigestRunResponse(BaseModel):
    """Result of running this week's digest on demand."""

    digest: DigestResponse
    created: bool
    emailed: bool


class WeeklyRunResponse(BaseModel):
    """Result stats of a weekly run over every subscription."""

    subscriptions: int
    generated: int
    existing: int
    failed: int
