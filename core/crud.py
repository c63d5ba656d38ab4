"""
core/crud.py -- Query helpers shared by every list/create endpoint.

Page / clamp_page / paginate:
  page is 1-based and never below 1. page_size falls back to the entity's
  default when missing or non-positive, and is clamped to its maximum.
  pages = ceil(total / page_size), so an empty result reports pages=0.

find_conflicts:
  Case-insensitive uniqueness is checked in code rather than with a UNIQUE
  index because soft-deleted rows keep their names: a clash with an active
  row and a clash with an inactive row produce different messages.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Table, func, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select


@dataclass
class Page:
    """One page of results plus the numbers the list envelope reports."""

    items: list[Any] = field(default_factory=list)
    page: int = 1
    page_size: int = 10
    total: int = 0

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.page_size) if self.page_size else 0


def clamp_page(page: int | None, page_size: int | None, default: int, maximum: int) -> tuple[int, int]:
    page = max(1, page or 1)
    if not page_size or page_size < 1:
        page_size = default
    return page, min(page_size, maximum)


def paginate(conn: Connection, stmt: Select, order_by: list, page: int, page_size: int) -> tuple[list, int]:
    """Run `stmt` once for the total count and once for the requested slice."""
    total = conn.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
    rows = conn.execute(stmt.order_by(*order_by).limit(page_size).offset((page - 1) * page_size)).fetchall()
    return rows, total


def search_clause(table: Table, columns: tuple[str, ...], q: str | None):
    """OR of case-insensitive substring matches, or None when there is nothing to filter."""
    q = (q or "").strip()
    if not q or not columns:
        return None
    return or_(*[table.c[col].icontains(q, autoescape=True) for col in columns])


def find_conflicts(
    conn: Connection,
    table: Table,
    values: dict[str, Any],
    exclude_id: int | None = None,
    active_column: str = "active",
) -> tuple[bool, bool]:
    """Return (clashes_with_active, clashes_with_inactive) for case-insensitive matches.

    Blank values are ignored, so an optional column (e.g. a provider's RUC)
    never conflicts when it is not supplied.
    """
    conditions = [
        func.lower(table.c[col]) == str(value).strip().lower() for col, value in values.items() if value not in (None, "")
    ]
    if not conditions:
        return False, False
    stmt = select(table.c[active_column]).where(or_(*conditions))
    if exclude_id is not None:
        stmt = stmt.where(table.c.id != exclude_id)
    flags = [bool(row[0]) for row in conn.execute(stmt).fetchall()]
    return any(flags), any(not f for f in flags)
