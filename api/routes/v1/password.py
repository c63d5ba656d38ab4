"""
api/routes/v1/password.py -- Self-service password reset.

Routes:
  POST /api/v1/password/forgot   -- email a 6-digit code (always 200)
  POST /api/v1/password/verify   -- check the code; sets the pw_reset cookie
  POST /api/v1/password/reset    -- set a new password (requires pw_reset cookie)

Security:
  /forgot answers the same way whether or not the email exists, so it cannot
  be used to enumerate accounts. /verify uses one message for every failure.
  Both are rate-limited per IP (PASSWORD_RATE_LIMIT).
  The pw_reset cookie holds a short-lived JWT with typ="pw_reset"; it is
  never accepted as a session and the session cookie is never accepted here.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, password_limit
from api.models import ForgotPasswordRequest, ResetPasswordRequest, VerifyResetRequest
from api.responses import ok
from auth.store import UserStore
from auth.tokens import (
    RESET_COOKIE,
    clear_reset_cookie,
    create_reset_token,
    decode_reset_token,
    generate_code,
    hash_password,
    set_reset_cookie,
    verify_password,
)
from core.config import get_settings
from core.database import now_utc, parse_iso
from core.errors import Unauthorized, ValidationError
from notify.mailer import Mailer

logger = logging.getLogger("piscicola.password")

RESET_CODE_DIGITS = 6
MIN_PASSWORD_LENGTH = 6

MSG_BAD_CODE = "Código inválido o expirado"

router = APIRouter()


@router.post("/password/forgot")
@limiter.limit(password_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Issue a reset code for an active user and email it.

    Earlier open resets for the user are superseded. Delivery failures are
    logged by the mailer and otherwise ignored.
    """
    settings = get_settings()
    user_store: UserStore = request.app.state.user_store
    email = body.email.strip().lower()
    user = user_store.get_by_email(email) if email else None
    if user is not None and user.is_active:
        code = generate_code(RESET_CODE_DIGITS)
        user_store.create_password_reset(user, hash_password(code), settings.password_reset_ttl_minutes)
        mailer: Mailer = request.app.state.mailer
        mailer.send(
            user.email,
            "Código para restablecer su contraseña",
            "password_reset.txt",
            name=user.name,
            code=code,
            ttl_minutes=settings.password_reset_ttl_minutes,
        )
        logger.info("Password reset issued for user %d", user.id)
    return ok(msg="Si el correo está registrado, se envió un código.")


@router.post("/password/verify")
@limiter.limit(password_limit)
def verify_reset_code(request: Request, body: VerifyResetRequest) -> JSONResponse:
    """Check an emailed code against the latest open reset for the email."""
    user_store: UserStore = request.app.state.user_store
    email = body.email.strip().lower()
    code = body.code.strip()
    reset = user_store.latest_active_reset(email) if email and code else None
    if reset is None:
        raise ValidationError(MSG_BAD_CODE)
    expires = parse_iso(reset.expires_at)
    if expires is not None and now_utc() > expires:
        user_store.close_reset(reset.id, "expired")
        raise ValidationError(MSG_BAD_CODE)
    if not verify_password(code, reset.code_hash):
        raise ValidationError(MSG_BAD_CODE)

    user_store.close_reset(reset.id, "verified")
    resp = ok(msg="Código verificado")
    set_reset_cookie(resp, create_reset_token(reset.id, reset.user_id, reset.email))
    return resp


@router.post("/password/reset")
def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    token = request.cookies.get(RESET_COOKIE)
    if not token:
        raise Unauthorized("Sesión de reset no válida")
    payload = decode_reset_token(token)
    if payload is None:
        raise Unauthorized("Sesión de reset inválida o expirada")
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError("Contraseña mínima de 6 caracteres")

    user_store: UserStore = request.app.state.user_store
    user_store.complete_password_reset(int(payload["rid"]), int(payload["uid"]), hash_password(body.password))
    resp = ok(msg="Contraseña actualizada")
    clear_reset_cookie(resp)
    return resp
