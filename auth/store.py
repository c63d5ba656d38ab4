"""
auth/store.py -- SQLAlchemy Core persistence layer for users and password resets.

Pattern: Repository + Data Mapper (same as farm/store.py and
approvals/store.py). UserStore is the repository; _row_to_user /
_row_to_reset are the mappers. Route and dependency code never touches SQL
directly.

Invariants enforced here:
  - Emails are stored lowercased; uniqueness is case-insensitive and checked
    separately against active and inactive users.
  - At least one active SUPERADMIN always remains. Demoting or inactivating
    the last one is refused.
  - A user has at most one active password reset: issuing a new one closes
    the previous ones ("superseded").

Security:
  All queries use bound parameters. password_hash never leaves this module
  except inside the User dataclass, and the API layer never serializes it.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import Boolean, Column, Index, Integer, String, Table, Text, func, select
from sqlalchemy.engine import Connection, Engine

from auth.models import PasswordReset, Role, User
from core.audit import AuditAction, record_audit
from core.crud import Page, clamp_page, find_conflicts, paginate, search_clause
from core.database import metadata, now_iso, now_utc, parse_iso, to_iso, transaction
from core.errors import Conflict, NotFound, ValidationError

logger = logging.getLogger("piscicola.auth")

MSG_EMAIL_ACTIVE = "Email ya registrado (activo)."
MSG_EMAIL_INACTIVE = "Email existe inactivo. Considere restaurarlo."
MSG_EMAIL_IN_USE = "Email en uso por otro activo."
MSG_LAST_SUPERADMIN_ROLE = "No puedes dejar el sistema sin SUPERADMIN."
MSG_LAST_SUPERADMIN_ACTIVE = "No puedes inactivar al último SUPERADMIN."
MSG_USER_NOT_FOUND = "Usuario no encontrado"
MSG_RESET_INVALID = "Enlace inválido o ya utilizado"
MSG_RESET_EXPIRED = "Código expirado"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, default=Role.OPERADOR.value),
    Column("active", Boolean, nullable=False, default=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

password_resets = Table(
    "password_resets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("email", String(255), nullable=False),
    Column("code_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("active", Boolean, nullable=False, default=True),
    Column("used", Boolean, nullable=False, default=False),
    Column("used_at", String(32)),
    Column("closed_at", String(32)),
    Column("close_reason", String(20)),  # superseded | expired | verified | used
    Column("created_at", String(32), nullable=False),
    Index("ix_password_resets_email", "email", "active"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and PasswordReset entities.

    Usage:
        store = UserStore(engine)
        uid = store.create_user(User(name="Ana", email="ana@farm.pe", role=Role.SUPERADMIN,
                                     hashed_password=hash_password("secret")))
        user = store.get_by_email("ANA@farm.pe")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            return (conn.execute(select(func.count()).select_from(users)).scalar() or 0) > 0

    def list_users(
        self,
        q: str | None = None,
        page: int | None = 1,
        page_size: int | None = None,
        include_inactive: bool = False,
    ) -> Page:
        """Return users newest first, searching name and email."""
        page, page_size = clamp_page(page, page_size, default=10, maximum=100)
        stmt = select(users)
        if not include_inactive:
            stmt = stmt.where(users.c.active.is_(True))
        match = search_clause(users, ("name", "email"), q)
        if match is not None:
            stmt = stmt.where(match)
        with self.engine.connect() as conn:
            rows, total = paginate(conn, stmt, [users.c.id.desc()], page, page_size)
        return Page(items=[_row_to_user(r) for r in rows], page=page, page_size=page_size, total=total)

    # ------------------------------------------------------------------
    # User writes
    # ------------------------------------------------------------------

    def create_user(self, user: User, actor_id: int | None = None) -> int:
        """Insert a new user and return its id.

        Raises Conflict when the email belongs to an active user, or the
        "consider restoring" Conflict when it belongs to an inactive one.
        """
        email = user.email.strip().lower()
        with transaction(self.engine) as conn:
            clash_active, clash_inactive = find_conflicts(conn, users, {"email": email})
            if clash_active:
                raise Conflict(MSG_EMAIL_ACTIVE)
            if clash_inactive:
                raise Conflict(MSG_EMAIL_INACTIVE)
            result = conn.execute(
                users.insert().values(
                    name=user.name.strip(),
                    email=email,
                    password_hash=user.hashed_password,
                    role=Role(user.role).value,
                    active=user.is_active,
                    created_at=now_iso(),
                )
            )
            new_id = result.inserted_primary_key[0]
            record_audit(conn, actor_id, "users", new_id, AuditAction.INSERT, {"new": _public(conn, new_id)})
        logger.info("User %d created (%s)", new_id, Role(user.role).value)
        return new_id

    def update_user(
        self,
        user_id: int,
        name: str,
        email: str,
        role: Role,
        actor_id: int,
        hashed_password: str | None = None,
    ) -> User:
        """Replace name, email and role (and optionally the password hash)."""
        email = email.strip().lower()
        with transaction(self.engine) as conn:
            before = _locked(conn, user_id)
            if before is None:
                raise NotFound(MSG_USER_NOT_FOUND)
            clash_active, _ = find_conflicts(conn, users, {"email": email}, exclude_id=user_id)
            if clash_active:
                raise Conflict(MSG_EMAIL_IN_USE)
            if before.role == Role.SUPERADMIN.value and role is not Role.SUPERADMIN and before.active:
                if _count_active_superadmins(conn) <= 1:
                    raise ValidationError(MSG_LAST_SUPERADMIN_ROLE)
            values = {"name": name.strip(), "email": email, "role": role.value, "updated_at": now_iso()}
            if hashed_password:
                values["password_hash"] = hashed_password
            old = _public(conn, user_id)
            conn.execute(users.update().where(users.c.id == user_id).values(**values))
            new = _public(conn, user_id)
            record_audit(conn, actor_id, "users", user_id, AuditAction.UPDATE, {"old": old, "new": new})
            row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def set_active(self, user_id: int, active: bool, actor_id: int) -> User:
        """Restore or inactivate a user, keeping at least one active SUPERADMIN."""
        with transaction(self.engine) as conn:
            before = _locked(conn, user_id)
            if before is None:
                raise NotFound(MSG_USER_NOT_FOUND)
            if active:
                clash_active, _ = find_conflicts(conn, users, {"email": before.email}, exclude_id=user_id)
                if clash_active:
                    raise Conflict(MSG_EMAIL_IN_USE)
            elif before.role == Role.SUPERADMIN.value and before.active and _count_active_superadmins(conn) <= 1:
                raise ValidationError(MSG_LAST_SUPERADMIN_ACTIVE)
            old = _public(conn, user_id)
            conn.execute(users.update().where(users.c.id == user_id).values(active=active, updated_at=now_iso()))
            new = _public(conn, user_id)
            action = AuditAction.UPDATE if active else AuditAction.DELETE
            detail = {"old": old, "new": new} if active else {"old": old, "soft_delete": True}
            record_audit(conn, actor_id, "users", user_id, action, detail)
            row = conn.execute(select(users).where(users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Password resets
    # ------------------------------------------------------------------

    def create_password_reset(self, user: User, code_hash: str, ttl_minutes: int) -> PasswordReset:
        """Close any active reset for the user and open a new one."""
        now = now_utc()
        with transaction(self.engine) as conn:
            conn.execute(
                password_resets.update()
                .where((password_resets.c.user_id == user.id) & (password_resets.c.active.is_(True)))
                .values(active=False, closed_at=to_iso(now), close_reason="superseded")
            )
            result = conn.execute(
                password_resets.insert().values(
                    user_id=user.id,
                    email=user.email,
                    code_hash=code_hash,
                    expires_at=to_iso(now + timedelta(minutes=ttl_minutes)),
                    active=True,
                    used=False,
                    created_at=to_iso(now),
                )
            )
            row = conn.execute(
                select(password_resets).where(password_resets.c.id == result.inserted_primary_key[0])
            ).fetchone()
        return _row_to_reset(row)

    def latest_active_reset(self, email: str) -> PasswordReset | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(password_resets)
                .where(
                    (password_resets.c.email == email.strip().lower())
                    & (password_resets.c.active.is_(True))
                    & (password_resets.c.used.is_(False))
                )
                .order_by(password_resets.c.created_at.desc(), password_resets.c.id.desc())
                .limit(1)
            ).fetchone()
        return _row_to_reset(row) if row is not None else None

    def close_reset(self, reset_id: int, reason: str) -> None:
        with transaction(self.engine) as conn:
            conn.execute(
                password_resets.update()
                .where((password_resets.c.id == reset_id) & (password_resets.c.active.is_(True)))
                .values(active=False, closed_at=now_iso(), close_reason=reason)
            )

    def complete_password_reset(self, reset_id: int, user_id: int, hashed_password: str) -> None:
        """Set the new password hash and mark the reset used.

        Raises ValidationError if the reset does not exist, belongs to
        another user, was already used, or has expired.
        """
        now = now_utc()
        with transaction(self.engine) as conn:
            row = conn.execute(
                select(password_resets)
                .where(
                    (password_resets.c.id == reset_id)
                    & (password_resets.c.user_id == user_id)
                    & (password_resets.c.used.is_(False))
                )
                .with_for_update()
            ).fetchone()
            if row is None:
                raise ValidationError(MSG_RESET_INVALID)
            expires = parse_iso(row.expires_at)
            if expires is not None and now > expires:
                raise ValidationError(MSG_RESET_EXPIRED)
            conn.execute(
                users.update().where(users.c.id == user_id).values(password_hash=hashed_password, updated_at=to_iso(now))
            )
            conn.execute(
                password_resets.update()
                .where(password_resets.c.id == reset_id)
                .values(
                    used=True,
                    used_at=to_iso(now),
                    active=False,
                    closed_at=row.closed_at or to_iso(now),
                    close_reason=row.close_reason or "used",
                )
            )
            record_audit(conn, user_id, "users", user_id, AuditAction.PASSWORD_RESET, {"reset_id": reset_id})
        logger.info("Password reset completed for user %d", user_id)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _locked(conn: Connection, user_id: int):
    return conn.execute(select(users).where(users.c.id == user_id).with_for_update()).fetchone()


def _count_active_superadmins(conn: Connection) -> int:
    return (
        conn.execute(
            select(func.count())
            .select_from(users)
            .where((users.c.role == Role.SUPERADMIN.value) & (users.c.active.is_(True)))
        ).scalar()
        or 0
    )


def _public(conn: Connection, user_id: int) -> dict:
    """Audit-safe image of a user row (no password hash)."""
    row = conn.execute(
        select(users.c.id, users.c.name, users.c.email, users.c.role, users.c.active).where(users.c.id == user_id)
    ).fetchone()
    return dict(row._mapping) if row is not None else {}


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=Role(row.role),
        hashed_password=row.password_hash,
        created_at=row.created_at,
        is_active=bool(row.active),
    )


def _row_to_reset(row) -> PasswordReset:
    return PasswordReset(
        id=row.id,
        user_id=row.user_id,
        email=row.email,
        code_hash=row.code_hash,
        expires_at=row.expires_at,
        active=bool(row.active),
        used=bool(row.used),
        used_at=row.used_at,
        closed_at=row.closed_at,
        close_reason=row.close_reason,
        created_at=row.created_at,
    )
