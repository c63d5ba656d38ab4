"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/login    -- email/password login; sets the auth_token cookie
  POST /api/v1/auth/logout   -- clears the cookie; 200
  GET  /api/v1/auth/me       -- current user (requires auth)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Wrong email, wrong password and inactive user share one message.
  Cache-Control: no-store on login responses.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import LoginRequest, UserResponse
from api.responses import error, ok
from auth.dependencies import get_principal
from auth.models import Principal
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, create_access_token, set_auth_cookie
from core.errors import Unauthorized

MSG_BAD_CREDENTIALS = "Usuario o Contraseña incorrecta"

router = APIRouter()


@router.post("/auth/login")
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    The token is also returned in the body for API clients that prefer the
    Authorization: Bearer header.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email.lower(), body.password)
    if user is None:
        resp = error(401, MSG_BAD_CREDENTIALS)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user.id, user.email, user.role.value, name=user.name)
    resp = ok({"user": UserResponse.from_user(user), "token": token})
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
def logout() -> JSONResponse:
    """Clear the session cookie. Needs no prior auth."""
    resp = ok(msg="Sesión cerrada")
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me")
def me(request: Request, principal: Principal = Depends(get_principal)) -> JSONResponse:
    """Return the current user, re-read from the store so renames show up."""
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(principal.id)
    if user is None or not user.is_active:
        raise Unauthorized("No autenticado")
    return ok(UserResponse.from_user(user))
