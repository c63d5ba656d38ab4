"""
api/routes/v1/users.py -- User management (SUPERADMIN only).

Routes:
  GET    /api/v1/users          -- paginated list (q, page, pageSize, includeInactive)
  POST   /api/v1/users          -- create; 201
  GET    /api/v1/users/{id}     -- one user
  PUT    /api/v1/users/{id}     -- replace name/email/role, optional new password
  PATCH  /api/v1/users/{id}     -- {"active": bool} restore or inactivate
  DELETE /api/v1/users/{id}     -- soft delete

The last-SUPERADMIN rule and email uniqueness live in UserStore; this module
only maps HTTP to store calls. Password hashes never appear in responses.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from api.models import ActivePatch, UserCreate, UserResponse, UserUpdate
from api.responses import ok, paged, parse_id
from auth.dependencies import require_superadmin
from auth.models import Principal, User
from auth.store import MSG_USER_NOT_FOUND, UserStore
from auth.tokens import hash_password
from core.errors import NotFound

router = APIRouter(prefix="/users")


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


@router.get("")
def list_users(
    request: Request,
    q: Optional[str] = None,
    page: int = 1,
    page_size: Optional[int] = Query(default=None, alias="pageSize"),
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    principal: Principal = Depends(require_superadmin),
) -> JSONResponse:
    result = _store(request).list_users(q=q, page=page, page_size=page_size, include_inactive=include_inactive)
    return paged(result, [UserResponse.from_user(u) for u in result.items])


@router.post("", status_code=201)
def create_user(request: Request, body: UserCreate, principal: Principal = Depends(require_superadmin)) -> JSONResponse:
    store = _store(request)
    user = User(name=body.name, email=body.email, role=body.role, hashed_password=hash_password(body.password))
    new_id = store.create_user(user, actor_id=principal.id)
    return ok(UserResponse.from_user(store.get_by_id(new_id)), status_code=201)


@router.get("/{user_id}")
def get_user(request: Request, user_id: str, principal: Principal = Depends(require_superadmin)) -> JSONResponse:
    user = _store(request).get_by_id(parse_id(user_id))
    if user is None:
        raise NotFound(MSG_USER_NOT_FOUND)
    return ok(UserResponse.from_user(user))


@router.put("/{user_id}")
def update_user(
    request: Request, user_id: str, body: UserUpdate, principal: Principal = Depends(require_superadmin)
) -> JSONResponse:
    user = _store(request).update_user(
        parse_id(user_id),
        name=body.name,
        email=body.email,
        role=body.role,
        actor_id=principal.id,
        hashed_password=hash_password(body.password) if body.password else None,
    )
    return ok(UserResponse.from_user(user))


@router.patch("/{user_id}")
def set_user_active(
    request: Request, user_id: str, body: ActivePatch, principal: Principal = Depends(require_superadmin)
) -> JSONResponse:
    user = _store(request).set_active(parse_id(user_id), body.active, actor_id=principal.id)
    return ok(UserResponse.from_user(user), msg="Usuario restaurado" if body.active else "Usuario inactivado")


@router.delete("/{user_id}")
def delete_user(request: Request, user_id: str, principal: Principal = Depends(require_superadmin)) -> JSONResponse:
    _store(request).set_active(parse_id(user_id), False, actor_id=principal.id)
    return ok(msg="Usuario inactivado")
