"""ProviderAccount model — link from an identity-provider account to a user."""

import uuid

from sqlalchemy import Text, UniqueConstraint
from sqlmodel import Column, Field, SQLModel

from portal.models.base import TimestampMixin, new_uuid


class ProviderAccount(TimestampMixin, SQLModel, table=True):
    __tablename__ = "provider_accounts"
    __table_args__ = (
        UniqueConstraint("provider", "provider_account_id", name="uq_provider_account"),
    )

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    user_id: uuid.UUID = Field(
        foreign_key="users.id", nullable=False, index=True, ondelete="CASCADE"
    )
    type: str = Field(default="oauth", max_length=32)
    provider: str = Field(max_length=64, nullable=False)
    provider_account_id: str = Field(max_length=255, nullable=False)

    # OAuth token material, Fernet-encrypted when ENCRYPTION_KEY is set
    access_token: str | None = Field(default=None, sa_column=Column(Text))
    refresh_token: str | None = Field(default=None, sa_column=Column(Text))
    id_token: str | None = Field(default=None, sa_column=Column(Text))
    expires_at: int | None = Field(default=None)
    token_type: str | None = Field(default=None, max_length=32)
    scope: str | None = Field(default=None, sa_column=Column(Text))
    session_state: str | None = Field(default=None, max_length=255)
