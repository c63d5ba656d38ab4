"""
api/responses.py -- Envelope helpers shared by every route module.

All handlers return JSONResponse objects built here so the body shape stays
uniform: {"success", "data"?, "msg"?} plus the pagination keys on lists.
jsonable_encoder takes care of dates and enums inside row dicts.
"""

from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from api.models import Envelope
from core.crud import Page
from core.errors import ValidationError

MSG_BAD_ID = "ID inválido"


def ok(data: Any = None, msg: Optional[str] = None, status_code: int = 200, **extra: Any) -> JSONResponse:
    """Success envelope. Keyword extras are merged in verbatim (None included)."""
    body = Envelope(data=data, msg=msg).model_dump(by_alias=True, exclude_none=True)
    body.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def paged(page: Page, items: Optional[list] = None) -> JSONResponse:
    """List envelope carrying page, pageSize, total and pages."""
    body = Envelope(
        data=page.items if items is None else items,
        page=page.page,
        page_size=page.page_size,
        total=page.total,
        pages=page.pages,
    ).model_dump(by_alias=True, exclude_none=True)
    return JSONResponse(content=jsonable_encoder(body))


def error(status_code: int, msg: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "msg": msg}, headers=headers)


def parse_id(raw: str) -> int:
    """Parse a path id. Anything but a positive integer is a 400."""
    raw = (raw or "").strip()
    # isdigit() alone admits Unicode digits such as "²", which int() rejects.
    if not (raw.isascii() and raw.isdigit()) or int(raw) < 1:
        raise ValidationError(MSG_BAD_ID)
    return int(raw)
