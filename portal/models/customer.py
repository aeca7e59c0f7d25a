"""Customer company — local mirror of the rental system's customers.

Only the columns needed for joins and search live here; everything else is
fetched live from the rental API.
"""

from sqlmodel import Field, SQLModel

from portal.models.base import TimestampMixin


class Customer(TimestampMixin, SQLModel, table=True):
    __tablename__ = "customers"

    customer_id: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    name: str = Field(max_length=255, nullable=False, index=True)
    organization_number: str | None = Field(default=None, max_length=32, index=True)
    customer_number: int | None = Field(default=None)


# ── Pydantic schemas ─────────────────────────────────────────

class CompanyRead(SQLModel):
    id: int
    name: str
    organization_number: str | None
