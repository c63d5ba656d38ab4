"""
auth/models.py -- Domain types for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
properties). Stores and routes do the work.

Layer rule: no imports from api/, farm/, approvals/ or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Compared as members, never as raw strings."""

    SUPERADMIN = "SUPERADMIN"
    OPERADOR = "OPERADOR"


@dataclass
class User:
    """A person who can log in to the admin backend.

    email is stored lowercased and is the login identifier. hashed_password
    is a bcrypt hash and never leaves the store layer in API responses.
    """

    name: str
    email: str
    role: Role
    id: int | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class Principal:
    """The authenticated caller, as decoded from a session token."""

    id: int
    role: Role
    email: str = ""
    name: str = ""

    @property
    def is_superadmin(self) -> bool:
        return self.role is Role.SUPERADMIN


@dataclass
class PasswordReset:
    """A pending password-reset code.

    active drops to False when the row is superseded, expires, is verified
    or used; close_reason records which.
    """

    user_id: int
    email: str
    code_hash: str
    expires_at: str
    id: int | None = None
    active: bool = True
    used: bool = False
    used_at: str | None = None
    closed_at: str | None = None
    close_reason: str | None = None
    created_at: str | None = None
