"""Column helpers shared by the portal tables.

Timestamps are stored as naive UTC; session claims re-attach the zone when
they are rendered.
"""

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Current time as naive UTC, the form every timestamp column holds."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """``created_at`` / ``updated_at`` for users, links, customers and grants."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)

    def touch(self) -> None:
        """Mark the row as modified by a profile sync or an admin edit."""
        self.updated_at = utcnow()
