"""Onboarding — terms acceptance gate for first-time and re-consenting users."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel
from sqlmodel import select

from portal.api.deps import CurrentSession, Session
from portal.core.config import get_settings
from portal.core.errors import Conflict, NotFound
from portal.models.access_grant import AccessGrant, CompanyRole
from portal.models.base import utcnow
from portal.models.customer import Customer
from portal.models.user import User, UserRead

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


# ── Schemas ──────────────────────────────────────────────────

class OnboardingCompany(BaseModel):
    role: CompanyRole
    customer_id: int
    company_name: str | None
    organization_number: str | None


class OnboardingStatus(BaseModel):
    user: UserRead
    companies: list[OnboardingCompany]
    terms_version: str
    onboarding_complete: bool


class AcceptTermsRequest(BaseModel):
    accepted_terms_version: str | None = None


class AcceptTermsResponse(BaseModel):
    ok: bool = True
    terms_version: str


# ── Routes ───────────────────────────────────────────────────

@router.get("", response_model=OnboardingStatus)
async def get_onboarding(ctx: CurrentSession, session: Session) -> OnboardingStatus:
    """Profile and company memberships shown on the onboarding screen."""
    user = await session.get(User, ctx.user_id)
    if user is None:
        raise NotFound("Bruker ikke funnet")

    stmt = (
        select(AccessGrant, Customer)
        .join(Customer, Customer.customer_id == AccessGrant.customer_id)
        .where(AccessGrant.user_id == user.id)
        .order_by(Customer.name)
    )
    result = await session.execute(stmt)
    companies = [
        OnboardingCompany(
            role=grant.role,
            customer_id=customer.customer_id,
            company_name=customer.name,
            organization_number=customer.organization_number,
        )
        for grant, customer in result.all()
    ]

    return OnboardingStatus(
        user=UserRead.model_validate(user),
        companies=companies,
        terms_version=get_settings().latest_terms_version,
        onboarding_complete=ctx.onboarding_complete,
    )


@router.post("", response_model=AcceptTermsResponse)
async def accept_terms(
    body: AcceptTermsRequest,
    ctx: CurrentSession,
    session: Session,
) -> AcceptTermsResponse:
    """Accept the current terms; the client then patches its session."""
    latest = get_settings().latest_terms_version
    if body.accepted_terms_version and body.accepted_terms_version != latest:
        raise Conflict("terms_outdated", details={"terms_version": latest})

    user = await session.get(User, ctx.user_id)
    if user is None:
        raise NotFound("Bruker ikke funnet")

    now = utcnow()
    user.accepted_terms = True
    user.accepted_terms_at = now
    user.accepted_terms_version = latest
    user.last_login_at = now
    user.updated_at = now
    session.add(user)
    await session.commit()
    logger.info("User %s accepted terms %s", user.id, latest)
    return AcceptTermsResponse(terms_version=latest)
