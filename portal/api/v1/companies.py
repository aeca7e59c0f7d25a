"""Company search over the local customer table."""

from fastapi import APIRouter
from sqlalchemy import func, or_
from sqlmodel import select

from portal.api.deps import Session, SuperAdmin
from portal.models.customer import CompanyRead, Customer

router = APIRouter(prefix="/companies", tags=["companies"])

DEFAULT_LIMIT = 500
SEARCH_LIMIT = 50


@router.get("", response_model=list[CompanyRead])
async def search_companies(
    _admin: SuperAdmin,
    session: Session,
    q: str = "",
) -> list[CompanyRead]:
    """Match ``q`` against name or organization number, case-insensitively."""
    query = q.strip()
    stmt = select(Customer).order_by(Customer.name)
    if query:
        pattern = f"%{query.lower()}%"
        stmt = stmt.where(
            or_(
                func.lower(Customer.name).like(pattern),
                func.lower(Customer.organization_number).like(pattern),
            )
        )
    stmt = stmt.limit(SEARCH_LIMIT if query else DEFAULT_LIMIT)

    result = await session.execute(stmt)
    return [
        CompanyRead(id=c.customer_id, name=c.name, organization_number=c.organization_number)
        for c in result.scalars().all()
    ]
