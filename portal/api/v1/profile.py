"""The caller's company cards, fetched live per company."""

from fastapi import APIRouter
from pydantic import BaseModel

from portal.api.deps import OnboardedSession, RentalApi, Session
from portal.core.config import get_settings
from portal.models.user import GlobalRole
from portal.services import access
from portal.services.rental_api import CompanyCard

router = APIRouter(prefix="/profile", tags=["profile"])


class ProfileCompanies(BaseModel):
    full_access: bool = False
    companies: list[CompanyCard] = []


@router.get("/companies", response_model=ProfileCompanies)
async def list_profile_companies(
    ctx: OnboardedSession,
    session: Session,
    rental_api: RentalApi,
) -> ProfileCompanies:
    """One card per company; a failed lookup only marks its own card."""
    if ctx.global_role == GlobalRole.SUPER_ADMIN:
        mock_ids = get_settings().mock_company_ids_for_admin
        if not mock_ids:
            return ProfileCompanies(full_access=True)
        return ProfileCompanies(full_access=True, companies=await rental_api.company_cards(mock_ids))

    customer_ids = await access.accessible_customer_ids(session, ctx.user_id)
    return ProfileCompanies(companies=await rental_api.company_cards(customer_ids))
