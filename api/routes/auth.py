"""
api/routes/auth.py -- Registration, login, token refresh and identity endpoints.

Routes:
  POST /auth/register  -- create user + empty profile; returns user and token pair
  POST /auth/login     -- email/password login; returns user and token pair
  POST /auth/refresh   -- exchange a refresh token for a new pair
  GET  /auth/me        -- current user (requires Bearer access token)

Security:
  POST /login and POST /register are rate-limited per IP (LOGIN_RATE_LIMIT,
  REGISTER_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Wrong email and wrong password return the same INVALID_CREDENTIALS error.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthData,
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    UserData,
    UserEnvelope,
    UserResponse,
)
from auth.dependencies import get_token_user_id
from auth.models import User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_token_pair, decode_refresh_token, hash_password
from cache.store import RedisCache
from core.config import get_settings

logger = logging.getLogger("weighttracker.api.auth")

_settings = get_settings()

# Auth policy:
# - POST /auth/register: public -- rate limited
# - POST /auth/login:    public -- rate limited
# - POST /auth/refresh:  public -- the refresh token is the credential
# - GET  /auth/me:       requires Bearer access token (get_token_user_id)
router = APIRouter()


def user_cache_key(user_id: str) -> str:
    return f"user:{user_id}"


def _user_exists() -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"code": "USER_EXISTS", "message": "A user with this email or username already exists"},
    )


def _auth_response(response: Response, user: User) -> AuthResponse:
    pair = create_token_pair(user.id)
    response.headers["Cache-Control"] = "no-store"
    return AuthResponse(
        data=AuthData(
            user=UserResponse.from_domain(user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
        )
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
@limiter.limit(_settings.register_rate_limit)  # innermost, so the router registers the limited wrapper
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a user and its empty profile, then issue a token pair.

    The email/username pre-check gives a clean 409 in the common case. A
    concurrent duplicate that passes the pre-check hits the UNIQUE constraint
    instead; that IntegrityError is also a 409 and the transaction leaves no
    partial user or profile behind.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.find_conflict(body.email, body.username) is not None:
        raise _user_exists()

    new_user = User(
        email=body.email,
        username=body.username,
        password_hash=hash_password(body.password),
    )
    try:
        created = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise _user_exists() from exc

    logger.info("User registered: %s", created.email)
    return _auth_response(response, created)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(_settings.login_rate_limit)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password; return the user and a token pair."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
            headers={"Cache-Control": "no-store"},
        )

    logger.info("User logged in: %s", user.email)
    return _auth_response(response, user)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, response: Response, body: RefreshRequest) -> AuthResponse:
    """Verify a refresh token and re-issue both tokens.

    The refresh token is checked against the refresh secret only, so an
    access token presented here is rejected. The user must still exist.
    """
    payload = decode_refresh_token(body.refresh_token)
    if payload is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_TOKEN", "message": "Invalid refresh token"},
        )

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(payload["sub"])
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_TOKEN", "message": "User not found"},
        )
    return _auth_response(response, user)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserEnvelope)
def me(request: Request, user_id: str = Depends(get_token_user_id)) -> UserEnvelope:
    """Return the current user, reading through the cache.

    Cache-aside on user:<id>. A miss or a Redis outage falls through to the
    store; the profile edit routes delete the key after every write.
    """
    cache: RedisCache = request.app.state.cache
    key = user_cache_key(user_id)

    cached = cache.get(key)
    if cached is not None:
        return UserEnvelope(data=UserData(user=UserResponse.model_validate(cached)))

    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "USER_NOT_FOUND", "message": "User not found"},
        )

    public = UserResponse.from_domain(user)
    cache.set(key, public.model_dump(mode="json", by_alias=True))
    return UserEnvelope(data=UserData(user=public))
