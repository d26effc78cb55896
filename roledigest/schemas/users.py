"""User schemas."""

from pydantic import BaseModel

from roledigest.schemas.role_model import RoleModelResponse


class UserResponse(BaseModel):
    """User profile returned by the API."""

    id: str
    email: str
    display_name: str
    weekly_email_opt_in: bool
    timezone: str
    current_role_model_id: str | None = None


class MeResponse(BaseModel):
    """Current user with their active role model."""

    user: UserResponse
    role_model: RoleModelResponse | None = None


class PreferencesUpdate(BaseModel):
    """Editable user preferences."""

    weekly_email_opt_in: bool
