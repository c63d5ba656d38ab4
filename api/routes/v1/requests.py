"""
api/routes/v1/requests.py -- The approval-code workflow over HTTP.

Generated once per RequestKind, under /api/v1/edit-requests and
/api/v1/inactivation-requests:

  POST  /{kind}-requests                -- file a request (staff); 201, or 200 + pending=true
  GET   /{kind}-requests                -- list (SUPERADMIN); estado, operador_id, q, page, pageSize
  GET   /{kind}-requests/pending        -- latest request for ?tabla=&registro_id= (staff)
  PATCH /{kind}-requests/{id}           -- approve/reject (SUPERADMIN)
  POST  /{kind}-requests/{id}/verify    -- consume the one-time code (requester or SUPERADMIN)

Email is best effort. A failed notification never fails the request; the
response carries "emailWarning" instead. When SMTP is not configured and
DEBUG is on, the generated code is written to the log so local setups can
complete the flow.

No `from __future__ import annotations` here, for the same reason as farm.py.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import (
    ChangeRequestCreate,
    ChangeRequestResponse,
    RequestDecision,
    RequestStatusFilter,
    VerifyCodeRequest,
)
from api.responses import ok, paged, parse_id
from approvals.models import ChangeRequest, RequestKind, RequestStatus
from approvals.store import ApprovalStore
from auth.dependencies import require_staff, require_superadmin
from auth.models import Principal
from auth.store import UserStore
from core.config import get_settings
from core.errors import InternalError, ValidationError
from farm.models import ENTITIES
from notify.mailer import Mailer

logger = logging.getLogger("piscicola.approvals")

MSG_BAD_PARAMS = "Parámetros inválidos"
MSG_BAD_TABLE = "Tabla inválida"
MSG_BAD_ACTION = 'Action inválida. Debe ser "approve" o "reject".'
MSG_CODE_REQUIRED = "Código requerido"
MSG_VERIFY_FAILED = "Error interno al verificar código"
MSG_EMAIL_WARNING = "No se pudo enviar la notificación por correo."

router = APIRouter()


def _notify_decision(request: Request, kind: RequestKind, req: ChangeRequest, code: Optional[str]) -> bool:
    """Email the requester the decision (and the code on approval)."""
    mailer: Mailer = request.app.state.mailer
    user_store: UserStore = request.app.state.user_store
    requester = user_store.get_by_id(req.requester_id)
    recipients = [requester.email] if requester is not None else []
    name = requester.name if requester is not None else ""
    if code is not None:
        sent = mailer.send(
            recipients,
            f"Solicitud de {kind.label} #{req.id} aprobada",
            "request_approved.txt",
            requester_name=name,
            request=req,
            kind_label=kind.label,
            code=code,
        )
        if not sent and not mailer.enabled and get_settings().debug:
            logger.info("DEBUG code generated for %s request %d: %s", kind.value, req.id, code)
        return sent
    return mailer.send(
        recipients,
        f"Solicitud de {kind.label} #{req.id} rechazada",
        "request_rejected.txt",
        requester_name=name,
        request=req,
        kind_label=kind.label,
    )


def build_router(kind: RequestKind) -> APIRouter:
    sub = APIRouter(prefix=f"/{kind.value}-requests")

    def approvals_of(request: Request) -> ApprovalStore:
        return request.app.state.approvals

    @sub.post("", status_code=201, name=f"create_{kind.value}_request")
    def create_request(
        request: Request, body: ChangeRequestCreate, principal: Principal = Depends(require_staff)
    ) -> JSONResponse:
        """File a request, or return the caller's existing PENDING one for the same record."""
        if body.table_name not in ENTITIES:
            raise ValidationError(MSG_BAD_TABLE)
        req, created = approvals_of(request).create(
            kind, body.table_name, body.record_id, requester_id=principal.id, reason=body.reason
        )
        data = ChangeRequestResponse.from_request(req)
        if not created:
            return ok(data, msg="Ya existe una solicitud pendiente para este registro.", pending=True)

        mailer: Mailer = request.app.state.mailer
        sent = mailer.send(
            get_settings().admin_email_list,
            f"Nueva solicitud de {kind.label} #{req.id}",
            "request_created.txt",
            kind_label=kind.label,
            request=req,
            requester_name=principal.name or principal.email,
            requester_email=principal.email,
        )
        extra = {} if sent else {"emailWarning": MSG_EMAIL_WARNING}
        return ok(data, msg="Solicitud registrada", status_code=201, **extra)

    @sub.get("", name=f"list_{kind.value}_requests")
    def list_requests(
        request: Request,
        estado: Optional[RequestStatusFilter] = None,
        operador_id: Optional[int] = None,
        q: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = Query(default=None, alias="pageSize"),
        principal: Principal = Depends(require_superadmin),
    ) -> JSONResponse:
        result = approvals_of(request).list_requests(
            kind,
            status=RequestStatus(estado.value) if estado is not None else None,
            requester_id=operador_id,
            q=q,
            page=page,
            page_size=page_size,
        )
        return paged(result, [ChangeRequestResponse.from_request(r) for r in result.items])

    # Declared before /{request_id} routes so "pending" is never parsed as an id.
    @sub.get("/pending", name=f"pending_{kind.value}_request")
    def pending(
        request: Request,
        tabla: Optional[str] = None,
        registro_id: Optional[str] = None,
        principal: Principal = Depends(require_staff),
    ) -> JSONResponse:
        table_name = (tabla or "").strip()
        raw_id = (registro_id or "").strip()
        if not table_name or not (raw_id.isascii() and raw_id.isdigit()) or int(raw_id) < 1:
            raise ValidationError(MSG_BAD_PARAMS)
        status = approvals_of(request).pending_status(kind, table_name, int(raw_id), principal)
        return ok(**status)

    @sub.patch("/{request_id}", name=f"decide_{kind.value}_request")
    def decide(
        request: Request, request_id: str, body: RequestDecision, principal: Principal = Depends(require_superadmin)
    ) -> JSONResponse:
        rid = parse_id(request_id)
        action = body.action.strip().lower()
        if action not in ("approve", "reject"):
            raise ValidationError(MSG_BAD_ACTION)
        req, code = approvals_of(request).decide(
            kind, rid, approve=action == "approve", decided_by=principal.id, comment=body.comment or None
        )
        sent = _notify_decision(request, kind, req, code)
        msg = "Solicitud aprobada y código enviado" if code is not None else "Solicitud rechazada y notificada"
        extra = {} if sent else {"emailWarning": MSG_EMAIL_WARNING}
        return ok(ChangeRequestResponse.from_request(req), msg=msg, **extra)

    @sub.post("/{request_id}/verify", name=f"verify_{kind.value}_code")
    def verify(
        request: Request,
        request_id: str,
        body: Optional[VerifyCodeRequest] = None,
        principal: Principal = Depends(require_staff),
    ) -> JSONResponse:
        """Consume the approval code. Every failure leaves the request untouched."""
        rid = parse_id(request_id)
        code = (body.codigo or "").strip() if body is not None else ""
        if not code:
            raise ValidationError(MSG_CODE_REQUIRED)
        try:
            approvals_of(request).verify_code(kind, rid, code, principal)
        except SQLAlchemyError as exc:
            logger.exception("Code verification failed on %s request %d", kind.value, rid)
            raise InternalError(MSG_VERIFY_FAILED) from exc
        return ok(msg=kind.verified_message)

    return sub


for _kind in RequestKind:
    router.include_router(build_router(_kind))
