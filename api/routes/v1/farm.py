"""
api/routes/v1/farm.py -- CRUD endpoints for catalogs and transactional records.

One router is generated per EntityDef in farm/models.py:

  GET    /api/v1/{path}          -- list (q, page, pageSize, includeInactive; records: desde, hasta)
  POST   /api/v1/{path}          -- create; 201
  GET    /api/v1/{path}/{id}     -- one row
  PUT    /api/v1/{path}/{id}     -- replace the editable fields
  PATCH  /api/v1/{path}/{id}     -- {"active": bool} restore or inactivate
  DELETE /api/v1/{path}/{id}     -- soft delete

Paths: providers, pools, lots, food-types, packages, details, feedings,
losses, harvests.

Auth policy: every route requires SUPERADMIN or OPERADOR. On transactional
records (feedings, losses, harvests) an OPERADOR additionally needs a recent
pass: a verified approval code for that very record, edit kind for PUT and
inactivation kind for PATCH/DELETE. The 404 check runs first so a missing
record is reported as missing rather than forbidden.

No `from __future__ import annotations` here: the body model of each
generated handler is a closure variable and FastAPI must see the real class.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.models import ActivePatch, CatalogIn, FeedingIn, HarvestIn, LossIn, ProviderIn
from api.responses import ok, paged, parse_id
from approvals.models import RequestKind
from approvals.store import ApprovalStore
from auth.dependencies import require_staff
from auth.models import Principal
from core.config import get_settings
from core.errors import Forbidden, NotFound
from farm import models
from farm.models import EntityDef
from farm.store import MSG_NOT_FOUND, FarmStore

_BODIES: dict[str, type[BaseModel]] = {
    models.PROVIDERS.key: ProviderIn,
    models.FEEDINGS.key: FeedingIn,
    models.LOSSES.key: LossIn,
    models.HARVESTS.key: HarvestIn,
}

router = APIRouter()


def _require_existing(store: FarmStore, entity: EntityDef, record_id: int) -> dict:
    row = store.get(entity, record_id)
    if row is None:
        raise NotFound(MSG_NOT_FOUND)
    return row


def _require_pass(request: Request, entity: EntityDef, record_id: int, principal: Principal, kind: RequestKind) -> None:
    """Refuse an operator change on a record without a recently verified code."""
    if not entity.requires_pass or principal.is_superadmin:
        return
    approvals: ApprovalStore = request.app.state.approvals
    window = get_settings().code_pass_window_minutes
    if not approvals.has_recent_pass(kind, principal.id, entity.key, record_id, within_minutes=window):
        raise Forbidden(kind.missing_pass_message)


def build_router(entity: EntityDef) -> APIRouter:
    """Return the six CRUD routes for one entity."""
    body_model = _BODIES.get(entity.key, CatalogIn)
    sub = APIRouter(prefix=f"/{entity.path}")

    def store_of(request: Request) -> FarmStore:
        return request.app.state.farm_store

    @sub.get("", name=f"list_{entity.key}")
    def list_rows(
        request: Request,
        q: Optional[str] = None,
        page: int = 1,
        page_size: Optional[int] = Query(default=None, alias="pageSize"),
        include_inactive: bool = Query(default=False, alias="includeInactive"),
        desde: Optional[date] = None,
        hasta: Optional[date] = None,
        principal: Principal = Depends(require_staff),
    ) -> JSONResponse:
        result = store_of(request).list_rows(
            entity,
            q=q,
            page=page,
            page_size=page_size,
            include_inactive=include_inactive,
            date_from=desde,
            date_to=hasta,
        )
        return paged(result)

    @sub.post("", status_code=201, name=f"create_{entity.key}")
    def create_row(request: Request, body: body_model, principal: Principal = Depends(require_staff)) -> JSONResponse:
        row = store_of(request).create(entity, body.model_dump(), actor_id=principal.id)
        return ok(row, status_code=201)

    @sub.get("/{record_id}", name=f"get_{entity.key}")
    def get_row(request: Request, record_id: str, principal: Principal = Depends(require_staff)) -> JSONResponse:
        return ok(_require_existing(store_of(request), entity, parse_id(record_id)))

    @sub.put("/{record_id}", name=f"update_{entity.key}")
    def update_row(
        request: Request, record_id: str, body: body_model, principal: Principal = Depends(require_staff)
    ) -> JSONResponse:
        rid = parse_id(record_id)
        store = store_of(request)
        _require_existing(store, entity, rid)
        _require_pass(request, entity, rid, principal, RequestKind.EDIT)
        return ok(store.update(entity, rid, body.model_dump(), actor_id=principal.id))

    @sub.patch("/{record_id}", name=f"set_active_{entity.key}")
    def set_active(
        request: Request, record_id: str, body: ActivePatch, principal: Principal = Depends(require_staff)
    ) -> JSONResponse:
        rid = parse_id(record_id)
        store = store_of(request)
        _require_existing(store, entity, rid)
        _require_pass(request, entity, rid, principal, RequestKind.INACTIVATION)
        row = store.set_active(entity, rid, body.active, actor_id=principal.id)
        return ok(row, msg="Registro restaurado" if body.active else "Registro inactivado")

    @sub.delete("/{record_id}", name=f"delete_{entity.key}")
    def delete_row(request: Request, record_id: str, principal: Principal = Depends(require_staff)) -> JSONResponse:
        rid = parse_id(record_id)
        store = store_of(request)
        _require_existing(store, entity, rid)
        _require_pass(request, entity, rid, principal, RequestKind.INACTIVATION)
        store.soft_delete(entity, rid, actor_id=principal.id)
        return ok(msg="Registro inactivado")

    return sub


for _entity in models.CATALOGS + models.RECORDS:
    router.include_router(build_router(_entity))
