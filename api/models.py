"""
API request and response models for the Weight Tracker REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format: JSON keys are camelCase (accessToken, avatarUrl, currentWeight)
because the browser client speaks camelCase. Python attributes stay
snake_case; the alias generator bridges the two, and populate_by_name lets
tests and internal callers use either spelling.

Envelopes: every success body is {success: true, data: ...}; every error body
is {success: false, error: {code, message, details?}}.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Profile, User

# bcrypt only hashes the first 72 bytes of input (and current bcrypt releases
# refuse anything longer), so the limit is enforced here in bytes.
_BCRYPT_MAX_BYTES = 72


def _lower_email(value: str) -> str:
    return value.strip().lower()


# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ActivityLevelEnum(str, Enum):
    sedentary = "sedentary"
    light = "light"
    moderate = "moderate"
    active = "active"
    very_active = "very_active"


class UnitsEnum(str, Enum):
    metric = "metric"
    imperial = "imperial"


# ---------------------------------------------------------------------------
# Auth request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /auth/register."""

    email: EmailStr
    password: str = Field(min_length=8)
    username: str = Field(min_length=3, max_length=30)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _lower_email(value) if isinstance(value, str) else value

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > _BCRYPT_MAX_BYTES:
            raise ValueError(f"password must be at most {_BCRYPT_MAX_BYTES} bytes")
        return value


class LoginRequest(_CamelModel):
    """Request body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return _lower_email(value) if isinstance(value, str) else value


class RefreshRequest(_CamelModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Profile edit request models
# ---------------------------------------------------------------------------


class UserUpdate(_CamelModel):
    """Request body for PATCH /users/me. Omitted fields are left unchanged."""

    username: Optional[str] = Field(default=None, min_length=3, max_length=30)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("username", mode="before")
    @classmethod
    def strip_username(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class ProfileUpdate(_CamelModel):
    """Request body for PATCH /users/me/profile. Omitted fields are left unchanged."""

    current_weight: Optional[float] = Field(default=None, gt=0, le=2000)
    goal_weight: Optional[float] = Field(default=None, gt=0, le=2000)
    height: Optional[float] = Field(default=None, gt=0, le=300)
    activity_level: Optional[ActivityLevelEnum] = None
    gender: Optional[str] = Field(default=None, max_length=20)
    preferred_units: Optional[UnitsEnum] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProfileResponse(_CamelResponse):
    current_weight: Optional[float] = None
    goal_weight: Optional[float] = None
    height: Optional[float] = None
    activity_level: Optional[str] = None
    gender: Optional[str] = None
    preferred_units: str = UnitsEnum.metric.value

    @classmethod
    def from_domain(cls, profile: Profile) -> "ProfileResponse":
        return cls(
            current_weight=profile.current_weight,
            goal_weight=profile.goal_weight,
            height=profile.height,
            activity_level=profile.activity_level,
            gender=profile.gender,
            preferred_units=profile.preferred_units,
        )


class UserResponse(_CamelResponse):
    """Public view of a user. There is deliberately no password field."""

    id: str
    email: str
    username: str
    email_verified: bool = False
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: str = ""
    profile: Optional[ProfileResponse] = None

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        """Build the public view from an auth.models.User (Factory Method)."""
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            email_verified=user.email_verified,
            bio=user.bio,
            avatar_url=user.avatar_url,
            created_at=user.created_at or "",
            profile=ProfileResponse.from_domain(user.profile) if user.profile else None,
        )


class AuthData(_CamelResponse):
    user: UserResponse
    access_token: str
    refresh_token: str


class UserData(_CamelResponse):
    user: UserResponse


class AuthResponse(_CamelResponse):
    """Success envelope for register, login and refresh."""

    success: bool = True
    data: AuthData


class UserEnvelope(_CamelResponse):
    """Success envelope for /auth/me and the profile edit routes."""

    success: bool = True
    data: UserData


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Optional[list[dict[str, Any]]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Response for GET /health (liveness)."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    timestamp: str


class ReadinessResponse(BaseModel):
    """Response for GET /health/ready."""

    model_config = ConfigDict(frozen=True)

    status: str
    checks: dict[str, bool]
    timestamp: str
