"""
core/audit.py -- Append-only audit log.

Every mutating operation in the project writes one row here through
record_audit(), on the same connection (and so the same transaction) as the
change it describes. Rows are never updated or deleted.

The detail column holds a JSON document. Its shape depends on the action:
  INSERT      {"new": row}
  UPDATE      {"old": row, "new": row}
  DELETE      {"old": row, "soft_delete": true}
  APPROVE     {"request_id", "expires_at"}
  REJECT      {"request_id", "comment"}
  CODE_USED   {"request_id", "used_by", "used_at"}

Layer rule: core/ is the kernel. No imports from the rest of the project.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import Column, Index, Integer, String, Table, Text
from sqlalchemy.engine import Connection, Engine

from core.database import metadata, now_iso


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    CODE_USED = "CODE_USED"
    PASSWORD_RESET = "PASSWORD_RESET"


audit_log = Table(
    "audit_log",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL for unauthenticated flows
    Column("table_name", String(50), nullable=False),
    Column("record_id", Integer, nullable=False),
    Column("action", String(20), nullable=False),
    Column("detail", Text),  # JSON
    Column("created_at", String(32), nullable=False),
    Index("ix_audit_target", "table_name", "record_id", "action"),
)


@dataclass
class AuditEntry:
    """One immutable audit row, with its detail already decoded."""

    user_id: int | None
    table_name: str
    record_id: int
    action: str
    detail: dict
    id: int | None = None
    created_at: str | None = None


def record_audit(
    conn: Connection,
    user_id: int | None,
    table_name: str,
    record_id: int,
    action: AuditAction,
    detail: dict[str, Any] | None = None,
    at: str | None = None,
) -> int:
    """Append one audit row on the caller's connection and return its id."""
    result = conn.execute(
        audit_log.insert().values(
            user_id=user_id,
            table_name=table_name,
            record_id=record_id,
            action=action.value,
            detail=json.dumps(detail or {}, default=str),
            created_at=at or now_iso(),
        )
    )
    return result.inserted_primary_key[0]


def list_audit(engine: Engine, table_name: str, record_id: int) -> list[AuditEntry]:
    """Return the audit trail of one record, oldest first."""
    with engine.connect() as conn:
        rows = conn.execute(
            audit_log.select()
            .where((audit_log.c.table_name == table_name) & (audit_log.c.record_id == record_id))
            .order_by(audit_log.c.id)
        ).fetchall()
    return [_row_to_entry(r) for r in rows]


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        table_name=row.table_name,
        record_id=row.record_id,
        action=row.action,
        detail=json.loads(row.detail) if row.detail else {},
        created_at=row.created_at,
    )
