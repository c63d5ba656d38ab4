"""
approvals/store.py -- Persistence and state transitions for change requests.

Pattern: Repository + Data Mapper (same shape as auth/store.py). ApprovalStore
is the repository; _row_to_request is the mapper. Both request kinds share
one implementation; the kind selects the table.

State transitions, each in a single transaction with its audit row:
  create        -> PENDING                         audit INSERT
  decide        -> PENDING => APPROVED | REJECTED  audit APPROVE / REJECT
  verify_code   -> APPROVED => code_consumed       audit CODE_USED

Concurrency:
  decide and verify_code read the request with SELECT ... FOR UPDATE, which
  serializes competing transactions on PostgreSQL. The consume step is also
  a conditional UPDATE (WHERE code_consumed = false) whose rowcount decides
  the winner, so a one-time code cannot be spent twice on backends that
  ignore FOR UPDATE (SQLite).

Visibility:
  A SUPERADMIN sees every request; an operator sees only the ones they
  filed. _visible_to() is the single place that rule is expressed.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import Boolean, Column, Index, Integer, String, Table, Text, or_, select
from sqlalchemy.engine import Connection, Engine

from approvals.models import ChangeRequest, RequestKind, RequestStatus
from auth.models import Principal
from auth.tokens import generate_code, hash_password, verify_password
from core.audit import AuditAction, audit_log, record_audit
from core.crud import Page, clamp_page, paginate
from core.database import metadata, now_utc, to_iso, transaction
from core.errors import Conflict, Forbidden, NotFound, ValidationError

logger = logging.getLogger("piscicola.approvals")

CODE_DIGITS = 4

MSG_NOT_FOUND = "Solicitud no encontrada"
MSG_NOT_OWNER = "No autorizado para verificar este código"
MSG_NOT_APPROVED = "La solicitud no ha sido aprobada o no tiene código"
MSG_USED = "El código ya fue usado"
MSG_EXPIRED = "El código ha expirado"
MSG_BAD_CODE = "Código inválido"
MSG_NOT_PENDING = "Solo se puede procesar solicitudes en estado PENDIENTE"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _request_table(name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("table_name", String(50), nullable=False),
        Column("record_id", Integer, nullable=False),
        Column("requester_id", Integer, nullable=False),
        Column("reason", Text, nullable=False),
        Column("status", String(20), nullable=False, default=RequestStatus.PENDING.value),
        Column("code_hash", Text),
        Column("code_expires_at", String(32)),
        Column("code_consumed", Boolean, nullable=False, default=False),
        Column("created_at", String(32), nullable=False),
        Column("decided_by", Integer),
        Column("decided_at", String(32)),
        Column("decision_comment", Text),
        Index(f"ix_{name}_target", "table_name", "record_id", "created_at"),
    )


_tables: dict[RequestKind, Table] = {
    RequestKind.EDIT: _request_table(RequestKind.EDIT.table_name),
    RequestKind.INACTIVATION: _request_table(RequestKind.INACTIVATION.table_name),
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ApprovalStore:
    """Repository for edit and inactivation requests.

    Usage:
        store = ApprovalStore(engine)
        req, created = store.create(RequestKind.EDIT, "harvests", 7, requester_id=3, reason="Peso mal digitado")
        req, code = store.decide(RequestKind.EDIT, req.id, approve=True, decided_by=1)
        store.verify_code(RequestKind.EDIT, req.id, code, principal)
    """

    def __init__(self, engine: Engine, code_ttl_hours: int = 24) -> None:
        self.engine = engine
        self.code_ttl_hours = code_ttl_hours
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, kind: RequestKind, request_id: int) -> ChangeRequest | None:
        t = _tables[kind]
        with self.engine.connect() as conn:
            row = conn.execute(select(t).where(t.c.id == request_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(
        self,
        kind: RequestKind,
        status: RequestStatus | None = None,
        requester_id: int | None = None,
        q: str | None = None,
        page: int | None = 1,
        page_size: int | None = None,
    ) -> Page:
        """Return requests newest first, filtered by status, requester and free text."""
        t = _tables[kind]
        page, page_size = clamp_page(page, page_size, default=50, maximum=200)
        stmt = select(t)
        if status is not None:
            stmt = stmt.where(t.c.status == status.value)
        if requester_id is not None:
            stmt = stmt.where(t.c.requester_id == requester_id)
        q = (q or "").strip()
        if q:
            stmt = stmt.where(or_(t.c.table_name.icontains(q, autoescape=True), t.c.reason.icontains(q, autoescape=True)))
        with self.engine.connect() as conn:
            rows, total = paginate(conn, stmt, [t.c.created_at.desc(), t.c.id.desc()], page, page_size)
        return Page(items=[_row_to_request(r) for r in rows], page=page, page_size=page_size, total=total)

    def latest_for_record(
        self, kind: RequestKind, table_name: str, record_id: int, principal: Principal
    ) -> ChangeRequest | None:
        """Return the most recent request for a record, as seen by `principal`.

        The "current" request is always recomputed from the newest row
        (ORDER BY created_at DESC LIMIT 1); nothing caches it.
        """
        t = _tables[kind]
        stmt = (
            _visible_to(select(t), t, principal)
            .where((t.c.table_name == table_name) & (t.c.record_id == record_id))
            .order_by(t.c.created_at.desc(), t.c.id.desc())
            .limit(1)
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return _row_to_request(row) if row is not None else None

    def pending_status(self, kind: RequestKind, table_name: str, record_id: int, principal: Principal) -> dict:
        """Summarize the latest visible request for the "is something pending?" UI check."""
        req = self.latest_for_record(kind, table_name, record_id, principal)
        if req is None:
            return {"pending": False, "request": None}
        now = now_utc()
        return {
            "pending": req.is_pending(now),
            "request": {
                "id": req.id,
                "status": req.status.value,
                "hasValidCode": req.has_valid_code(now),
                "expiresAt": req.code_expires_at,
                "requesterId": req.requester_id,
            },
        }

    def has_recent_pass(
        self, kind: RequestKind, user_id: int, table_name: str, record_id: int, within_minutes: int
    ) -> bool:
        """True if `user_id` verified an approved code for this record recently.

        The evidence is the CODE_USED audit row written by verify_code(),
        joined back to an APPROVED request targeting (table_name, record_id).
        """
        t = _tables[kind]
        cutoff = to_iso(now_utc() - timedelta(minutes=within_minutes))
        stmt = (
            select(t.c.id)
            .select_from(
                t.join(
                    audit_log,
                    (audit_log.c.table_name == kind.table_name)
                    & (audit_log.c.record_id == t.c.id)
                    & (audit_log.c.action == AuditAction.CODE_USED.value),
                )
            )
            .where(
                (t.c.table_name == table_name)
                & (t.c.record_id == record_id)
                & (t.c.status == RequestStatus.APPROVED.value)
                & (audit_log.c.user_id == user_id)
                & (audit_log.c.created_at >= cutoff)
            )
            .limit(1)
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).fetchone() is not None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def create(
        self, kind: RequestKind, table_name: str, record_id: int, requester_id: int, reason: str
    ) -> tuple[ChangeRequest, bool]:
        """File a PENDING request. Returns (request, created).

        If the requester already has a PENDING request for the same record,
        that one is returned with created=False instead of filing a duplicate.
        """
        t = _tables[kind]
        with transaction(self.engine) as conn:
            existing = conn.execute(
                select(t)
                .where(
                    (t.c.table_name == table_name)
                    & (t.c.record_id == record_id)
                    & (t.c.requester_id == requester_id)
                    & (t.c.status == RequestStatus.PENDING.value)
                )
                .order_by(t.c.created_at.desc(), t.c.id.desc())
                .limit(1)
            ).fetchone()
            if existing is not None:
                return _row_to_request(existing), False
            now = to_iso(now_utc())
            result = conn.execute(
                t.insert().values(
                    table_name=table_name,
                    record_id=record_id,
                    requester_id=requester_id,
                    reason=reason,
                    status=RequestStatus.PENDING.value,
                    code_consumed=False,
                    created_at=now,
                )
            )
            new_id = result.inserted_primary_key[0]
            row = conn.execute(select(t).where(t.c.id == new_id)).fetchone()
            record_audit(
                conn,
                requester_id,
                kind.table_name,
                new_id,
                AuditAction.INSERT,
                {"new": {"table_name": table_name, "record_id": record_id, "reason": reason}},
                at=now,
            )
        logger.info("%s request %d filed by user %d for %s/%d", kind.value, new_id, requester_id, table_name, record_id)
        return _row_to_request(row), True

    def decide(
        self,
        kind: RequestKind,
        request_id: int,
        approve: bool,
        decided_by: int,
        comment: str | None = None,
    ) -> tuple[ChangeRequest, str | None]:
        """Approve or reject a PENDING request. Returns (request, plaintext code or None).

        Approval mints a 4-digit code, stores only its bcrypt hash, and sets
        code_hash and code_expires_at together. The plaintext code is
        returned once so the caller can deliver it; it is never persisted.

        Raises NotFound, or Conflict if the request is no longer PENDING.
        """
        t = _tables[kind]
        with transaction(self.engine) as conn:
            row = _locked(conn, t, request_id)
            if row is None:
                raise NotFound(MSG_NOT_FOUND)
            if row.status != RequestStatus.PENDING.value:
                raise Conflict(MSG_NOT_PENDING)
            now = now_utc()
            code: str | None = None
            values: dict = {
                "decided_by": decided_by,
                "decided_at": to_iso(now),
                "decision_comment": comment,
            }
            if approve:
                code = generate_code(CODE_DIGITS)
                expires_at = to_iso(now + timedelta(hours=self.code_ttl_hours))
                values.update(
                    status=RequestStatus.APPROVED.value,
                    code_hash=hash_password(code),
                    code_expires_at=expires_at,
                    code_consumed=False,
                )
                action, detail = AuditAction.APPROVE, {"request_id": request_id, "expires_at": expires_at}
            else:
                values["status"] = RequestStatus.REJECTED.value
                action, detail = AuditAction.REJECT, {"request_id": request_id, "comment": comment}
            conn.execute(t.update().where(t.c.id == request_id).values(**values))
            record_audit(conn, decided_by, kind.table_name, request_id, action, detail, at=to_iso(now))
            updated = conn.execute(select(t).where(t.c.id == request_id)).fetchone()
        logger.info("%s request %d %s by user %d", kind.value, request_id, values["status"], decided_by)
        return _row_to_request(updated), code

    def verify_code(self, kind: RequestKind, request_id: int, code: str, principal: Principal) -> ChangeRequest:
        """Consume the one-time code of an APPROVED request.

        Checks, in order, under a row lock:
          not found            -> NotFound
          not owner/superadmin -> Forbidden
          not approved/no code -> ValidationError
          already consumed     -> ValidationError
          expired              -> ValidationError
          code mismatch        -> ValidationError
        On success marks the code consumed and writes a CODE_USED audit row
        carrying {request_id, used_by, used_at}. Any failure leaves the row
        untouched.
        """
        t = _tables[kind]
        with transaction(self.engine) as conn:
            row = _locked(conn, t, request_id)
            if row is None:
                raise NotFound(MSG_NOT_FOUND)
            req = _row_to_request(row)
            if not principal.is_superadmin and req.requester_id != principal.id:
                raise Forbidden(MSG_NOT_OWNER)
            if req.status is not RequestStatus.APPROVED or not req.code_hash:
                raise ValidationError(MSG_NOT_APPROVED)
            if req.code_consumed:
                raise ValidationError(MSG_USED)
            now = now_utc()
            if req.is_expired(now):
                raise ValidationError(MSG_EXPIRED)
            if not verify_password(code, req.code_hash):
                raise ValidationError(MSG_BAD_CODE)
            consumed = conn.execute(
                t.update().where((t.c.id == request_id) & (t.c.code_consumed.is_(False))).values(code_consumed=True)
            )
            if consumed.rowcount != 1:
                # A concurrent verification won the race.
                raise ValidationError(MSG_USED)
            used_at = to_iso(now)
            record_audit(
                conn,
                principal.id,
                kind.table_name,
                request_id,
                AuditAction.CODE_USED,
                {"request_id": request_id, "used_by": principal.id, "used_at": used_at},
                at=used_at,
            )
        req.code_consumed = True
        logger.info("%s request %d code used by user %d", kind.value, request_id, principal.id)
        return req

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _visible_to(stmt, t: Table, principal: Principal):
    """Restrict a query to the requests `principal` may see."""
    if principal.is_superadmin:
        return stmt
    return stmt.where(t.c.requester_id == principal.id)


def _locked(conn: Connection, t: Table, request_id: int):
    return conn.execute(select(t).where(t.c.id == request_id).with_for_update()).fetchone()


def _row_to_request(row) -> ChangeRequest:
    return ChangeRequest(
        id=row.id,
        table_name=row.table_name,
        record_id=row.record_id,
        requester_id=row.requester_id,
        reason=row.reason,
        status=RequestStatus(row.status),
        code_hash=row.code_hash,
        code_expires_at=row.code_expires_at,
        code_consumed=bool(row.code_consumed),
        created_at=row.created_at,
        decided_by=row.decided_by,
        decided_at=row.decided_at,
        decision_comment=row.decision_comment,
    )
