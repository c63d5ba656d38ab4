"""
auth/dependencies.py -- The auth gate, as FastAPI Depends() helpers.

Two token locations are checked in priority order:
  1. Cookie "auth_token" -- set by POST /auth/login.
  2. Authorization: Bearer <token> header -- API clients.

resolve_principal() is the gate itself: a pure function of (token,
allowed roles) that returns a Principal or raises Unauthorized/Forbidden.
It performs no I/O beyond signature verification -- sessions are stateless,
so a deactivated user keeps access until the token expires.

require_roles(*roles) builds a dependency for a typed allow-list:
    @router.get("/users", dependencies=[Depends(require_superadmin)])
    def route(principal: Principal = Depends(require_staff)): ...

Layer rule: may import from fastapi/starlette and core/. No imports from
api/, farm/, approvals/ or notify/.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable

from fastapi import Request

from auth.models import Principal, Role
from auth.tokens import AUTH_COOKIE, decode_access_token
from core.errors import Forbidden, Unauthorized


def extract_token(request: Request) -> str | None:
    """Return the session token from the cookie, falling back to the Bearer header."""
    token = request.cookies.get(AUTH_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def resolve_principal(token: str | None, allowed: Iterable[Role] | None = None) -> Principal:
    """Verify a token and check its role against an allow-list.

    Raises Unauthorized for a missing, malformed, tampered or expired token
    (or one carrying an unknown role). Raises Forbidden when the role is
    valid but not in `allowed`. `allowed=None` accepts any role.
    """
    if not token:
        raise Unauthorized("No autenticado")
    payload = decode_access_token(token)
    if payload is None:
        raise Unauthorized("Token inválido o expirado")
    try:
        role = Role(str(payload["role"]).upper())
        user_id = int(payload["id"])
    except (KeyError, ValueError, TypeError):
        raise Unauthorized("Token inválido o expirado") from None
    if allowed is not None and role not in set(allowed):
        raise Forbidden("Acceso denegado")
    return Principal(id=user_id, role=role, email=payload.get("email", ""), name=payload.get("name", ""))


def get_principal(request: Request) -> Principal:
    """Require a valid session with any role."""
    return resolve_principal(extract_token(request))


def require_roles(*roles: Role) -> Callable[[Request], Principal]:
    """Build a dependency that admits only the given roles."""
    allowed = frozenset(roles)

    def dependency(request: Request) -> Principal:
        return resolve_principal(extract_token(request), allowed)

    return dependency


require_superadmin = require_roles(Role.SUPERADMIN)
require_staff = require_roles(Role.SUPERADMIN, Role.OPERADOR)
