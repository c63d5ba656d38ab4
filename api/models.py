"""
API request and response models for the farm admin REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py and
approvals/models.py, which own the internal domain representation. Route
handlers map between the two.

Every response body uses the same envelope:
    {"success": bool, "data"?, "msg"?, "page"?, "pageSize"?, "total"?, "pages"?}
Keys with no value are omitted.

Wire names: the change-request endpoints keep the field names the admin UI
already sends (tabla, registro_id, motivo, codigo); pydantic aliases map
them onto English attribute names.
"""

from datetime import date
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from approvals.models import ChangeRequest
from auth.models import Role, User

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """Uniform response body."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    data: Any = None
    msg: Optional[str] = None
    page: Optional[int] = None
    page_size: Optional[int] = Field(default=None, alias="pageSize")
    total: Optional[int] = None
    pages: Optional[int] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth and users
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class UserResponse(BaseModel):
    """A user as returned by the API. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    role: Role
    active: bool
    created_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            active=user.is_active,
            created_at=user.created_at,
        )


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)
    role: Role = Role.OPERADOR

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}. An empty password keeps the current one."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    role: Role
    password: Optional[str] = Field(default=None, max_length=128)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_length(cls, value: Optional[str]) -> Optional[str]:
        if value and len(value) < 6:
            raise ValueError("Contraseña mínima de 6 caracteres")
        return value or None


class ForgotPasswordRequest(BaseModel):
    email: str = ""


class VerifyResetRequest(BaseModel):
    email: str = ""
    code: str = ""


class ResetPasswordRequest(BaseModel):
    password: str = ""


# ---------------------------------------------------------------------------
# Catalogs
# ---------------------------------------------------------------------------


class ActivePatch(BaseModel):
    """Body for PATCH /{entity}/{id}: restore (true) or inactivate (false)."""

    active: bool


class CatalogIn(BaseModel):
    """Create/update body for the name-only catalogs."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)


class ProviderIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=150)
    ruc: Optional[str] = Field(default=None, max_length=20, pattern=r"^\d*$")

    @field_validator("ruc")
    @classmethod
    def blank_ruc_is_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None


# ---------------------------------------------------------------------------
# Transactional records
# ---------------------------------------------------------------------------


class FeedingIn(BaseModel):
    """Feeding record. total is derived (quantity x unit_price, 2 decimals)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    lot_id: Optional[int] = None
    pool_id: Optional[int] = None
    food_type_id: Optional[int] = None
    quantity: float = Field(ge=0)
    provider_id: Optional[int] = None
    invoice_number: Optional[str] = Field(default=None, max_length=50)
    unit_price: float = Field(default=0, ge=0)


class LossIn(BaseModel):
    date: date
    lot_id: Optional[int] = None
    pool_id: Optional[int] = None
    dead: int = Field(default=0, ge=0)
    missing: int = Field(default=0, ge=0)
    surplus: int = Field(default=0, ge=0)
    deformed: int = Field(default=0, ge=0)


class HarvestIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    date: date
    lot_id: Optional[int] = None
    pool_id: Optional[int] = None
    fish_count: int = Field(default=0, ge=0)
    harvest_sheet_number: Optional[str] = Field(default=None, max_length=50)
    kilos: float = Field(default=0, ge=0)
    packages: Optional[int] = Field(default=None, ge=0)
    package_type_id: Optional[int] = None
    detail_id: Optional[int] = None

    @field_validator("kilos", mode="before")
    @classmethod
    def decimal_comma(cls, value: Any) -> Any:
        """Accept "12,5" as typed on Spanish-locale keyboards."""
        if isinstance(value, str):
            return value.replace(",", ".")
        return value


# ---------------------------------------------------------------------------
# Change requests
# ---------------------------------------------------------------------------


class RequestStatusFilter(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ChangeRequestCreate(BaseModel):
    """Body for POST /api/v1/{edit,inactivation}-requests."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    table_name: str = Field(alias="tabla", min_length=1, max_length=50)
    record_id: int = Field(alias="registro_id", ge=1)
    reason: str = Field(alias="motivo", min_length=5, max_length=2000)


class RequestDecision(BaseModel):
    """Body for PATCH /api/v1/{edit,inactivation}-requests/{id}."""

    model_config = ConfigDict(str_strip_whitespace=True)

    action: str
    comment: Optional[str] = Field(default=None, max_length=1000)


class VerifyCodeRequest(BaseModel):
    """Body for POST .../{id}/verify. Missing or blank codes are rejected by the route."""

    model_config = ConfigDict(str_strip_whitespace=True)

    codigo: Optional[str] = Field(default=None, max_length=20)

    @field_validator("codigo", mode="before")
    @classmethod
    def number_as_text(cls, value: Any) -> Any:
        """Accept {"codigo": 1234} as well as {"codigo": "1234"}."""
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ChangeRequestResponse(BaseModel):
    """A change request as returned by the API. Never carries the code hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    table_name: str
    record_id: int
    requester_id: int
    reason: str
    status: str
    code_expires_at: Optional[str] = None
    code_consumed: bool = False
    created_at: Optional[str] = None
    decided_by: Optional[int] = None
    decided_at: Optional[str] = None
    decision_comment: Optional[str] = None

    @classmethod
    def from_request(cls, req: ChangeRequest) -> "ChangeRequestResponse":
        return cls(
            id=req.id,
            table_name=req.table_name,
            record_id=req.record_id,
            requester_id=req.requester_id,
            reason=req.reason,
            status=req.status.value,
            code_expires_at=req.code_expires_at,
            code_consumed=req.code_consumed,
            created_at=req.created_at,
            decided_by=req.decided_by,
            decided_at=req.decided_at,
            decision_comment=req.decision_comment,
        )
