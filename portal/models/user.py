"""User model — one human, keyed by phone number."""

import re
import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from portal.models.access_grant import CompanyRole, UserGrantInput
from portal.models.base import TimestampMixin, new_uuid

_PHONE_RE = re.compile(r"^\+?\d+$")


def normalize_phone(raw: str | None) -> str | None:
    """Canonicalize a phone number to ``+<digits>``.

    Whitespace is dropped and a missing ``+`` is added. Anything that does not
    reduce to ``+<digits>`` yields None.
    """
    if not raw or not isinstance(raw, str):
        return None
    compact = re.sub(r"\s+", "", raw)
    if not _PHONE_RE.match(compact):
        return None
    return compact if compact.startswith("+") else f"+{compact}"


class GlobalRole(StrEnum):
    CUSTOMER = "customer"
    SUPER_ADMIN = "super_admin"


class User(TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    phone: str = Field(max_length=32, nullable=False, unique=True, index=True)
    email: str | None = Field(default=None, max_length=320, unique=True, index=True)
    name: str | None = Field(default=None, max_length=255)
    role: GlobalRole = Field(default=GlobalRole.CUSTOMER)

    address_street: str | None = Field(default=None, max_length=255)
    address_postal_code: str | None = Field(default=None, max_length=16)
    address_region: str | None = Field(default=None, max_length=255)

    accepted_terms: bool = Field(default=False)
    accepted_terms_version: str | None = Field(default=None, max_length=32)
    accepted_terms_at: datetime | None = Field(default=None)

    # Null until the first completed onboarding
    last_login_at: datetime | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class UserAccessRead(SQLModel):
    customer_id: int
    role: CompanyRole
    customer_name: str | None = None
    customer_number: int | None = None


class UserRead(SQLModel):
    id: uuid.UUID
    name: str | None
    role: GlobalRole
    phone: str
    email: str | None
    address_street: str | None
    address_postal_code: str | None
    address_region: str | None
    created_at: datetime
    updated_at: datetime
    accepted_terms: bool
    accepted_terms_version: str | None
    accepted_terms_at: datetime | None
    last_login_at: datetime | None
    accesses: list[UserAccessRead] = []


class UserCreate(SQLModel):
    phone: str
    role: GlobalRole
    relationships: list[UserGrantInput] = []

    @field_validator("phone")
    @classmethod
    def _canonical_phone(cls, value: str) -> str:
        phone = normalize_phone(value)
        if phone is None:
            raise ValueError("Telefonnummer mangler eller har feil format")
        return phone


class UserUpdate(SQLModel):
    """Replaces the user's grants; ``role`` optionally moves the global role."""
    role: GlobalRole | None = None
    accesses: list[UserGrantInput] | None = None
