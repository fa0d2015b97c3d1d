"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Clients authenticate with an "Authorization: Bearer <access token>" header.
The token is stateless; the only server-side check beyond the signature and
expiry is that the user it names still exists (get_current_user).

get_token_user_id() verifies the header and returns the user id without a
store lookup -- /auth/me uses it so it can read through the cache first.
get_current_user() wraps it and loads the User, raising 404 if it is gone.

Layer rule: no imports from web/ or cache/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token

_BEARER = "Bearer "


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_token_user_id(request: Request) -> str:
    """Return the user id carried by the request's Bearer access token.

    Raises HTTP 401 UNAUTHORIZED when the header is missing, and HTTP 401
    INVALID_TOKEN when the token fails verification for any reason.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith(_BEARER):
        raise _unauthorized("UNAUTHORIZED", "No authorization token provided")

    payload = decode_access_token(auth_header[len(_BEARER) :].strip())
    if payload is None:
        raise _unauthorized("INVALID_TOKEN", "Invalid authorization token")
    return payload["sub"]


def get_current_user(request: Request) -> User:
    """Require authentication and return the stored User.

    Use as a FastAPI dependency:
        @router.patch("/users/me")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user_id = get_token_user_id(request)
    user = request.app.state.user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "USER_NOT_FOUND", "message": "User not found"},
        )
    return user
