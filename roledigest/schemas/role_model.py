"""Role model schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class CustomSourceCreate(BaseModel):
    """A user-provided source URL to check every week."""

    url: str = Field(min_length=1)
    label: str | None = None


class RoleModelCreate(BaseModel):
    """Request body for choosing a role model."""

    name: str = Field(min_length=1, max_length=120)
    custom_sources: list[CustomSourceCreate] = Field(default_factory=list, max_length=10)


class RoleModelResponse(BaseModel):
    """A tracked public figure."""

    id: str
    name: str
    bio_text: str | None = None
    bio_updated_at: datetime | None = None
    image_url: str | None = None
    image_source_url: str | None = None
    is_active: bool
    created_at: datetime


class BioResponse(BaseModel):
    """Freshly generated biography."""

    bio_text: str
    role_model: RoleModelResponse


class ImageResponse(BaseModel):
    """Resolved profile image; empty when nothing was found."""

    image_url: str = ""
    image_source_url: str = ""
