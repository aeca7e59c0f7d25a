"""Customer companies — live details and per-company access grants."""

import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Path, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from portal.api.deps import OnboardedSession, RentalApi, Session
from portal.core.errors import NotFound, Validation
from portal.models.access_grant import (
    AccessGrant,
    CompanyRole,
    CustomerAccessRead,
    CustomerGrantInput,
)
from portal.models.customer import Customer
from portal.models.user import GlobalRole, User
from portal.services import access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/customers", tags=["customers"])

CustomerId = Annotated[int, Path(gt=0)]


class CustomerDetail(BaseModel):
    customer: dict[str, Any]


class CustomerAccessUpdate(BaseModel):
    accesses: list[CustomerGrantInput] = []


async def _accesses(session: AsyncSession, customer_id: int) -> list[CustomerAccessRead]:
    stmt = (
        select(AccessGrant, User)
        .join(User, User.id == AccessGrant.user_id)
        .where(AccessGrant.customer_id == customer_id)
        .order_by(User.phone)
    )
    result = await session.execute(stmt)
    return [
        CustomerAccessRead(
            user_id=grant.user_id,
            role=grant.role,
            name=user.name,
            phone=user.phone,
            email=user.email,
        )
        for grant, user in result.all()
    ]


@router.get("/{customer_id}", response_model=CustomerDetail)
async def get_customer(
    customer_id: CustomerId,
    ctx: OnboardedSession,
    session: Session,
    rental_api: RentalApi,
) -> CustomerDetail:
    """Customer record from the rental system."""
    await access.authorize_company_access(session, ctx, customer_id, CompanyRole.USER)
    return CustomerDetail(customer=await rental_api.get_customer(customer_id))


@router.get("/{customer_id}/accesses", response_model=list[CustomerAccessRead])
async def list_customer_accesses(
    customer_id: CustomerId,
    ctx: OnboardedSession,
    session: Session,
) -> list[CustomerAccessRead]:
    await access.authorize_company_access(session, ctx, customer_id, CompanyRole.ADMIN)
    return await _accesses(session, customer_id)


@router.put("/{customer_id}/accesses", response_model=list[CustomerAccessRead])
async def replace_customer_accesses(
    customer_id: CustomerId,
    body: CustomerAccessUpdate,
    ctx: OnboardedSession,
    session: Session,
) -> list[CustomerAccessRead]:
    """Replace the full grant set of a company."""
    await access.authorize_company_access(session, ctx, customer_id, CompanyRole.ADMIN)
    if await session.get(Customer, customer_id) is None:
        raise NotFound("Kunde ikke funnet")

    user_ids = {g.user_id for g in body.accesses}
    if user_ids:
        result = await session.execute(
            select(User.id, User.role).where(User.id.in_(user_ids))  # type: ignore[attr-defined]
        )
        roles = dict(result.all())
        missing = user_ids - set(roles)
        if missing:
            raise Validation(
                "Ukjente brukere i tilgangslisten",
                details={"missing": sorted(str(uid) for uid in missing)},
            )
        super_admins = [uid for uid, role in roles.items() if role == GlobalRole.SUPER_ADMIN]
        if super_admins:
            raise Validation(
                "Superadministratorer kan ikke ha selskapstilganger",
                details={"super_admins": sorted(str(uid) for uid in super_admins)},
            )

    await access.replace_grants_for_customer(session, customer_id, body.accesses)
    logger.info("Customer %s grants replaced by %s", customer_id, ctx.user_id)
    return await _accesses(session, customer_id)


@router.delete("/{customer_id}/accesses/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_customer_access(
    customer_id: CustomerId,
    user_id: uuid.UUID,
    ctx: OnboardedSession,
    session: Session,
) -> None:
    """Remove a user from a company."""
    await access.authorize_company_access(session, ctx, customer_id, CompanyRole.ADMIN)
    if not await access.remove_grant(session, user_id, customer_id):
        raise NotFound("Tilgang ikke funnet")
