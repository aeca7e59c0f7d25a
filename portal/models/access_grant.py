"""AccessGrant model — (user, customer company, company role)."""

import uuid
from enum import StrEnum

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from portal.models.base import TimestampMixin


class CompanyRole(StrEnum):
    ADMIN = "admin"
    USER = "user"

    def satisfies(self, required: "CompanyRole") -> bool:
        """``admin`` implies every ``user`` permission."""
        return _RANK[self] >= _RANK[required]


_RANK = {CompanyRole.USER: 1, CompanyRole.ADMIN: 2}

# Norwegian labels used by the admin screens and older SQL scripts
_COMPANY_ROLE_ALIASES = {
    "admin": CompanyRole.ADMIN,
    "selskapsadmin": CompanyRole.ADMIN,
    "user": CompanyRole.USER,
    "selskapsbruker": CompanyRole.USER,
}


def normalize_company_role(value: object) -> CompanyRole:
    """Map an incoming role label to a CompanyRole. Raises ValueError."""
    if isinstance(value, CompanyRole):
        return value
    if isinstance(value, str) and value.strip().lower() in _COMPANY_ROLE_ALIASES:
        return _COMPANY_ROLE_ALIASES[value.strip().lower()]
    raise ValueError(f"Ugyldig selskapsrolle: {value!r}")


class AccessGrant(TimestampMixin, SQLModel, table=True):
    __tablename__ = "user_customer_accesses"

    user_id: uuid.UUID = Field(
        foreign_key="users.id", primary_key=True, ondelete="CASCADE"
    )
    customer_id: int = Field(
        foreign_key="customers.customer_id", primary_key=True, index=True
    )
    role: CompanyRole = Field(default=CompanyRole.USER)


# ── Pydantic schemas ─────────────────────────────────────────

class _GrantInput(SQLModel):
    role: CompanyRole

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: object) -> CompanyRole:
        return normalize_company_role(value)


class UserGrantInput(_GrantInput):
    """One grant in a per-user replacement set."""
    customer_id: int = Field(gt=0)


class CustomerGrantInput(_GrantInput):
    """One grant in a per-customer replacement set."""
    user_id: uuid.UUID


class CustomerAccessRead(SQLModel):
    user_id: uuid.UUID
    role: CompanyRole
    name: str | None
    phone: str | None
    email: str | None
