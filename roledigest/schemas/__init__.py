"""Pydantic request/response schemas for all entities."""

from roledigest.schemas.digest import (
    DigestItemResponse,
    DigestResponse,
    DigestRunResponse,
    SharedDigestResponse,
    WeeklyRunResponse,
)
from roledigest.schemas.role_model import (
    BioResponse,
    CustomSourceCreate,
    ImageResponse,
    RoleModelCreate,
    RoleModelResponse,
)
from roledigest.schemas.users import (
    MeResponse,
    PreferencesUpdate,
    UserResponse,
)

__all__ = [
    "BioResponse",
    "CustomSourceCreate",
    "DigestItemResponse",
    "DigestResponse",
    "DigestRunResponse",
    "ImageResponse",
    "MeResponse",
    "PreferencesUpdate",
    "RoleModelCreate",
    "RoleModelResponse",
    "SharedDigestResponse",
    "UserResponse",
    "WeeklyRunResponse",
]
