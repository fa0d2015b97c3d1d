"""
auth/tokens.py -- JWT issue/verify and password hashing utilities.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds, each signed with its own
       secret: access tokens (JWT_SECRET, minutes) and refresh tokens
       (JWT_REFRESH_SECRET, days). Both carry only the user id ("sub") and
       the expiry ("exp"). Because the secrets differ, a refresh token never
       verifies as an access token and vice versa. Verification returns None
       on any failure -- the route layer turns that into a 401.

  Passwords: bcrypt used directly with a configurable work factor
       (BCRYPT_ROUNDS). bcrypt is the right choice for low-entropy secrets
       because its cost factor makes brute force expensive. The _DUMMY_HASH
       constant enables timing equalization in authenticate_user() so
       response time does not reveal whether an email is registered.

Layer rule: no imports from api/, web/, or cache/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.models import TokenPair
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("weighttracker.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only accepts up to 72 bytes of input. The API layer rejects longer
    passwords at registration (Pydantic validator), so this is never reached
    with an oversized value from a request.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A password over bcrypt's 72-byte limit or a malformed hash is a mismatch,
    not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("weighttracker_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(user_id: str, secret: str, duration: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    return jwt.encode({"sub": user_id, "exp": expire}, secret, algorithm=_ALGORITHM)


def _decode(token: str, secret: str, kind: str) -> dict | None:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except ExpiredSignatureError:
        logger.debug("Rejected expired %s token", kind)
        return None
    except JWTError as exc:
        logger.debug("Rejected %s token: %s", kind, exc)
        return None
    if not isinstance(payload.get("sub"), str):
        return None
    return payload


def create_access_token(user_id: str, expire_seconds: int = 0) -> str:
    """Encode a short-lived access JWT for user_id.

    Args:
        user_id:        User primary key, stored as the "sub" claim.
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    return _encode(user_id, _settings.jwt_secret, duration)


def create_refresh_token(user_id: str, expire_seconds: int = 0) -> str:
    """Encode a long-lived refresh JWT for user_id, signed with the refresh secret."""
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    return _encode(user_id, _settings.jwt_refresh_secret, duration)


def create_token_pair(user_id: str) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


def decode_access_token(token: str) -> dict | None:
    """Verify an access JWT. Returns the payload dict or None on any failure.

    Returning None (rather than raising) keeps the caller simple: expired,
    forged and malformed tokens are all treated as unauthenticated.
    """
    return _decode(token, _settings.jwt_secret, "access")


def decode_refresh_token(token: str) -> dict | None:
    """Verify a refresh JWT. Returns the payload dict or None on any failure."""
    return _decode(token, _settings.jwt_refresh_secret, "refresh")


# ---------------------------------------------------------------------------
# Credential check (timing-equalized)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure.
    """
    user = store.get_by_email(email)
    if user is None or not user.password_hash:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
