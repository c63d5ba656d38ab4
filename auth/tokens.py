"""
auth/tokens.py -- JWT, password/code hashing, and cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Session tokens carry sub, id, email, role,
       name, iat, exp and typ="access". Password-reset tokens carry
       typ="pw_reset" and are never accepted as sessions. Verification
       returns None on any failure -- the auth gate turns that into a 401.

  Passwords and one-time codes: bcrypt, used directly. The _DUMMY_HASH
       constant enables timing equalization in authenticate_user() so
       response time does not reveal whether an email exists.

  Codes: approval codes are 4 digits, password-reset codes 6 digits, both
       drawn from `secrets` and stored only as bcrypt hashes.

  SECRET_KEY: sourced from core.config.get_settings().

Layer rule: no imports from api/, farm/, approvals/ or notify/. Import from
core/ is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("piscicola.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

AUTH_COOKIE = "auth_token"
RESET_COOKIE = "pw_reset"

_ACCESS = "access"
_PW_RESET = "pw_reset"

# ---------------------------------------------------------------------------
# Hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password or code.

    bcrypt truncates input past 72 bytes; the API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    A malformed hash is treated as a mismatch.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("piscicola_timing_dummy")


def generate_code(digits: int) -> str:
    """Return a random numeric code with exactly `digits` digits (no leading zero)."""
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, email: str, role: str, name: str = "", expire_seconds: int = 0) -> str:
    """Encode a signed session JWT.

    Args:
        user_id:        Numeric user ID.
        email:          Login email, copied into the token for display.
        role:           Role value ("SUPERADMIN" or "OPERADOR").
        name:           Display name.
        expire_seconds: Lifetime in seconds. 0 (default) uses
                        Settings.token_expire_seconds (2 hours).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "id": user_id,
        "email": email,
        "role": role,
        "name": name,
        "typ": _ACCESS,
        "iat": issued,
        "exp": issued + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a session JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _ACCESS or "id" not in payload or "role" not in payload:
        return None
    return payload


def create_reset_token(reset_id: int, user_id: int, email: str) -> str:
    """Encode the short-lived token that authorizes one password change."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=_settings.password_reset_token_seconds)
    payload = {"typ": _PW_RESET, "rid": reset_id, "uid": user_id, "email": email, "exp": expire}
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_reset_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _PW_RESET or not payload.get("rid") or not payload.get("uid"):
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success, None on any failure (including inactive users).
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="lax": not sent on cross-site POST.
    secure: always outside debug mode, or when SECURE_COOKIES=true.
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        AUTH_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.cookie_secure,
        max_age=duration,
        path="/",
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(AUTH_COOKIE, path="/", httponly=True, samesite="lax", secure=_settings.cookie_secure)


def set_reset_cookie(response, token: str) -> None:
    response.set_cookie(
        RESET_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.cookie_secure,
        max_age=_settings.password_reset_token_seconds,
        path="/",
    )


def clear_reset_cookie(response) -> None:
    response.delete_cookie(RESET_COOKIE, path="/", httponly=True, samesite="lax", secure=_settings.cookie_secure)
