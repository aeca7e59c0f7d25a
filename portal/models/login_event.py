"""LoginEvent model — append-only audit row per issued session."""

import uuid
from datetime import datetime

from sqlmodel import Field, SQLModel

from portal.models.base import new_uuid, utcnow
from portal.models.user import GlobalRole


class LoginEvent(SQLModel, table=True):
    __tablename__ = "user_login_events"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    user_id: uuid.UUID = Field(
        foreign_key="users.id", nullable=False, index=True, ondelete="CASCADE"
    )
    provider: str | None = Field(default=None, max_length=64)
    logged_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class LoginEventUser(SQLModel):
    id: uuid.UUID
    name: str | None
    phone: str
    email: str | None
    role: GlobalRole


class LoginEventRead(SQLModel):
    id: uuid.UUID
    provider: str | None
    logged_at: datetime
    user: LoginEventUser
