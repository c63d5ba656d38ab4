"""
farm/store.py -- SQLAlchemy Core persistence for catalogs and records.

Pattern: Repository over EntityDef descriptors. One FarmStore serves every
entity in farm/models.py; the descriptor supplies the table, search and
uniqueness columns, messages and pagination bounds.

Every write runs inside core.database.transaction() and appends its audit
row on the same connection, so the change and its audit entry commit or
roll back together:
  create       -> INSERT {new}
  update       -> UPDATE {old, new}
  set_active   -> UPDATE {old, new}
  soft_delete  -> DELETE {old, soft_delete: true}

Rows are returned as plain dicts (column -> value) including the joined
"<ref>_name" lookup labels for transactional records.

Security:
  All queries use bound parameters. Column names only ever come from the
  static table definitions, never from request input.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from core.audit import AuditAction, record_audit
from core.crud import Page, clamp_page, find_conflicts, paginate, search_clause
from core.database import metadata, now_iso, transaction
from core.errors import Conflict, NotFound
from farm.models import EntityDef, derive_values

logger = logging.getLogger("piscicola.farm")

MSG_NOT_FOUND = "Registro no encontrado"


class FarmStore:
    """Repository for every catalog and transactional record table.

    Usage:
        store = FarmStore(engine)
        row = store.create(PROVIDERS, {"name": "Acme", "ruc": "2060"}, actor_id=1)
        page = store.list_rows(PROVIDERS, q="acme", page=1, page_size=10)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_rows(
        self,
        entity: EntityDef,
        q: str | None = None,
        page: int | None = 1,
        page_size: int | None = None,
        include_inactive: bool = False,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> Page:
        """Return one page of rows, newest first.

        Inactive rows are excluded unless include_inactive is set. Records
        are ordered by (date DESC, id DESC); catalogs by id DESC.
        """
        page, page_size = clamp_page(page, page_size, entity.default_page_size, entity.max_page_size)
        t = entity.table
        stmt = _select(entity)
        if not include_inactive:
            stmt = stmt.where(t.c.active.is_(True))
        match = search_clause(t, entity.search_columns, q)
        if match is not None:
            stmt = stmt.where(match)
        if entity.is_record:
            if date_from is not None:
                stmt = stmt.where(t.c.date >= date_from)
            if date_to is not None:
                stmt = stmt.where(t.c.date <= date_to)
            order = [t.c.date.desc(), t.c.id.desc()]
        else:
            order = [t.c.id.desc()]
        with self.engine.connect() as conn:
            rows, total = paginate(conn, stmt, order, page, page_size)
        return Page(items=[_row_to_dict(r) for r in rows], page=page, page_size=page_size, total=total)

    def get(self, entity: EntityDef, record_id: int) -> dict | None:
        with self.engine.connect() as conn:
            return _fetch(conn, entity, record_id)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, entity: EntityDef, values: dict[str, Any], actor_id: int) -> dict:
        """Insert a row after the active/inactive uniqueness checks.

        Raises Conflict with the entity's active message when a live row
        clashes, or its "consider restoring" message when only a
        soft-deleted row does.
        """
        t = entity.table
        values = derive_values(entity, values)
        with transaction(self.engine) as conn:
            clash_active, clash_inactive = find_conflicts(conn, t, _unique_values(entity, values))
            if clash_active:
                raise Conflict(entity.conflict_active)
            if clash_inactive:
                raise Conflict(entity.conflict_inactive)
            extra: dict[str, Any] = {"active": True, "created_at": now_iso()}
            if entity.is_record:
                extra["created_by"] = actor_id
            result = conn.execute(t.insert().values(**values, **extra))
            new_id = result.inserted_primary_key[0]
            row = _fetch(conn, entity, new_id, joined=False)
            record_audit(conn, actor_id, entity.key, new_id, AuditAction.INSERT, {"new": row})
        logger.info("%s %d created by user %d", entity.key, new_id, actor_id)
        return self.get(entity, new_id) or row

    def update(self, entity: EntityDef, record_id: int, values: dict[str, Any], actor_id: int) -> dict:
        """Replace the editable fields of a row and audit the before/after images."""
        t = entity.table
        values = derive_values(entity, values)
        with transaction(self.engine) as conn:
            before = _fetch(conn, entity, record_id, joined=False, lock=True)
            if before is None:
                raise NotFound(MSG_NOT_FOUND)
            clash_active, _ = find_conflicts(conn, t, _unique_values(entity, values), exclude_id=record_id)
            if clash_active:
                raise Conflict(entity.conflict_restore)
            if entity.is_record:
                values = {**values, "updated_by": actor_id, "updated_at": now_iso()}
            conn.execute(t.update().where(t.c.id == record_id).values(**values))
            after = _fetch(conn, entity, record_id, joined=False)
            record_audit(conn, actor_id, entity.key, record_id, AuditAction.UPDATE, {"old": before, "new": after})
        return self.get(entity, record_id) or after

    def set_active(self, entity: EntityDef, record_id: int, active: bool, actor_id: int) -> dict:
        """Restore (active=True) or inactivate a row.

        Restoring re-checks uniqueness against the other active rows, since a
        new row may have taken the name while this one was inactive.
        """
        t = entity.table
        with transaction(self.engine) as conn:
            before = _fetch(conn, entity, record_id, joined=False, lock=True)
            if before is None:
                raise NotFound(MSG_NOT_FOUND)
            if active:
                clash_active, _ = find_conflicts(conn, t, _unique_values(entity, before), exclude_id=record_id)
                if clash_active:
                    raise Conflict(entity.conflict_restore)
            changes: dict[str, Any] = {"active": active}
            if entity.is_record:
                changes.update(updated_by=actor_id, updated_at=now_iso())
            conn.execute(t.update().where(t.c.id == record_id).values(**changes))
            after = _fetch(conn, entity, record_id, joined=False)
            record_audit(conn, actor_id, entity.key, record_id, AuditAction.UPDATE, {"old": before, "new": after})
        return self.get(entity, record_id) or after

    def soft_delete(self, entity: EntityDef, record_id: int, actor_id: int) -> None:
        t = entity.table
        with transaction(self.engine) as conn:
            before = _fetch(conn, entity, record_id, joined=False, lock=True)
            if before is None:
                raise NotFound(MSG_NOT_FOUND)
            changes: dict[str, Any] = {"active": False}
            if entity.is_record:
                changes.update(updated_by=actor_id, updated_at=now_iso())
            conn.execute(t.update().where(t.c.id == record_id).values(**changes))
            record_audit(
                conn, actor_id, entity.key, record_id, AuditAction.DELETE, {"old": before, "soft_delete": True}
            )
        logger.info("%s %d soft-deleted by user %d", entity.key, record_id, actor_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _select(entity: EntityDef):
    """SELECT the entity's columns plus one "<ref>_name" label per lookup."""
    t = entity.table
    columns: list = [t]
    source = t
    for column, target in entity.lookups.items():
        ref = column.removesuffix("_id")
        alias = target.alias(f"{ref}_ref")
        source = source.outerjoin(alias, t.c[column] == alias.c.id)
        columns.append(alias.c.name.label(f"{ref}_name"))
    return select(*columns).select_from(source)


def _fetch(conn: Connection, entity: EntityDef, record_id: int, joined: bool = True, lock: bool = False) -> dict | None:
    t = entity.table
    stmt = _select(entity) if joined else select(t)
    stmt = stmt.where(t.c.id == record_id)
    if lock:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).fetchone()
    return _row_to_dict(row) if row is not None else None


def _unique_values(entity: EntityDef, values: dict[str, Any]) -> dict[str, Any]:
    return {col: values.get(col) for col in entity.unique_columns if col in values}


def _row_to_dict(row) -> dict:
    return dict(row._mapping)
