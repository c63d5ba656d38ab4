"""
approvals/models.py -- Domain types for the approval-code workflow.

A ChangeRequest asks a SUPERADMIN for permission to edit (RequestKind.EDIT)
or to inactivate/restore (RequestKind.INACTIVATION) one record of a
business table. Both kinds share one shape and one lifecycle; each kind is
stored in its own table.

Lifecycle:
    PENDING --approve--> APPROVED (code minted) --verify--> consumed
            \\--reject--> REJECTED
An APPROVED request whose code_expires_at has passed is dead: it is never
re-armed. Expiry is computed from the timestamp, not stored as a status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from core.database import parse_iso


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class RequestKind(str, Enum):
    EDIT = "edit"
    INACTIVATION = "inactivation"

    @property
    def table_name(self) -> str:
        return "edit_requests" if self is RequestKind.EDIT else "inactivation_requests"

    @property
    def label(self) -> str:
        return "edición" if self is RequestKind.EDIT else "inactivación/restauración"

    @property
    def verified_message(self) -> str:
        if self is RequestKind.EDIT:
            return "Código verificado. Ahora puede editar el registro."
        return "Código verificado para inactivación/restauración."

    @property
    def missing_pass_message(self) -> str:
        return f"No autorizado: requiere código válido reciente de {self.label}."


@dataclass
class ChangeRequest:
    """One edit or inactivation request.

    code_hash and code_expires_at are set together on approval and never
    before. code_consumed flips from False to True exactly once.
    """

    table_name: str
    record_id: int
    requester_id: int
    reason: str
    status: RequestStatus = RequestStatus.PENDING
    id: int | None = None
    code_hash: str | None = None
    code_expires_at: str | None = None
    code_consumed: bool = False
    created_at: str | None = None
    decided_by: int | None = None
    decided_at: str | None = None
    decision_comment: str | None = None

    def is_expired(self, now: datetime) -> bool:
        expires = parse_iso(self.code_expires_at)
        return expires is not None and now > expires

    def has_valid_code(self, now: datetime) -> bool:
        """APPROVED with a code that is neither consumed nor expired."""
        return (
            self.status is RequestStatus.APPROVED
            and bool(self.code_hash)
            and not self.code_consumed
            and not self.is_expired(now)
        )

    def is_pending(self, now: datetime) -> bool:
        """Pending in the UI sense: awaiting a decision, or holding a usable code."""
        return self.status is RequestStatus.PENDING or self.has_valid_code(now)
