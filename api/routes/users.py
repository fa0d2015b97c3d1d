"""
api/routes/users.py -- Profile edit endpoints for the current user.

Routes:
  PATCH /users/me          -- username, bio, avatarUrl
  PATCH /users/me/profile  -- weights, height, activity level, gender, units

Every write deletes the user:<id> cache entry so the next GET /auth/me reads
the fresh record.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import ProfileUpdate, UserData, UserEnvelope, UserResponse, UserUpdate
from api.routes.auth import user_cache_key
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from cache.store import RedisCache

# Auth policy:
# - PATCH /users/me:         requires Bearer access token
# - PATCH /users/me/profile: requires Bearer access token
router = APIRouter()

# NOT NULL columns: an explicit null for these is dropped, other fields may be cleared.
_NON_NULLABLE = {"username", "preferred_units"}


def _changes(body) -> dict:
    fields = body.model_dump(mode="json", exclude_unset=True)
    changes = {k: v for k, v in fields.items() if v is not None or k not in _NON_NULLABLE}
    if not changes:
        raise HTTPException(
            status_code=400,
            detail={"code": "NO_CHANGES", "message": "No fields to update"},
        )
    return changes


def _updated(request: Request, user_id: str) -> UserEnvelope:
    user_store: UserStore = request.app.state.user_store
    cache: RedisCache = request.app.state.cache
    cache.delete(user_cache_key(user_id))
    updated = user_store.get_by_id(user_id)
    if updated is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "USER_NOT_FOUND", "message": "User not found"},
        )
    return UserEnvelope(data=UserData(user=UserResponse.from_domain(updated)))


@router.patch("/users/me", response_model=UserEnvelope)
def update_me(
    request: Request,
    body: UserUpdate,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update account fields. A username already held by someone else is a 409."""
    user_store: UserStore = request.app.state.user_store
    changes = _changes(body)

    new_username = changes.get("username")
    if new_username and new_username != current_user.username:
        if user_store.get_by_username(new_username) is not None:
            raise HTTPException(
                status_code=409,
                detail={"code": "USER_EXISTS", "message": "That username is already taken"},
            )
    try:
        user_store.update_user(current_user.id, **changes)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "USER_EXISTS", "message": "That username is already taken"},
        ) from exc
    return _updated(request, current_user.id)


@router.patch("/users/me/profile", response_model=UserEnvelope)
def update_my_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserEnvelope:
    """Update physical/fitness attributes. Omitted fields are left unchanged."""
    user_store: UserStore = request.app.state.user_store
    user_store.update_profile(current_user.id, **_changes(body))
    return _updated(request, current_user.id)
