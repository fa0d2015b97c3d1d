"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and routes do the work. api/models.py maps these to
the HTTP contract.

Layer rule: no imports from api/, web/, core/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Profile:
    """Physical and fitness attributes for one user (1:1 with User).

    Created empty alongside the user at registration and filled in later via
    PATCH /users/me/profile. Weights and height are stored in whatever unit
    system preferred_units names; the store does not convert.
    """

    user_id: str
    id: str | None = None
    current_weight: float | None = None
    goal_weight: float | None = None
    height: float | None = None
    activity_level: str | None = None  # "sedentary", "light", "moderate", "active", "very_active"
    gender: str | None = None
    preferred_units: str = "metric"  # "metric" or "imperial"
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """A registered account.

    password_hash is the bcrypt hash; the plaintext is never stored. The
    response mappers in api/models.py never copy this field.
    """

    email: str
    username: str
    id: str | None = None
    password_hash: str | None = None
    email_verified: bool = False
    bio: str | None = None
    avatar_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    profile: Profile | None = None


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh JWTs issued together. Never persisted."""

    access_token: str
    refresh_token: str
