"""Rental agreements for the caller's companies."""

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from portal.api.deps import OnboardedSession, RentalApi, Session
from portal.core.errors import Forbidden
from portal.models.user import GlobalRole
from portal.services import access
from portal.services.rental_api import Agreement, split_agreements

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agreements", tags=["agreements"])


class AgreementsResponse(BaseModel):
    active: list[Agreement] = []
    historical: list[Agreement] = []
    placeholder: bool = False
    message: str | None = None


@router.get("", response_model=AgreementsResponse)
async def list_agreements(
    ctx: OnboardedSession,
    session: Session,
    rental_api: RentalApi,
) -> AgreementsResponse:
    """Active and historical agreements across every granted company."""
    if ctx.global_role == GlobalRole.SUPER_ADMIN:
        # No portal-wide agreement lookup in the rental API yet
        return AgreementsResponse(
            placeholder=True,
            message="Admin-wide avtaleoppslag er ikke implementert enda.",
        )
    if ctx.global_role != GlobalRole.CUSTOMER:
        raise Forbidden()

    customer_ids = await access.accessible_customer_ids(session, ctx.user_id)
    if not customer_ids:
        return AgreementsResponse()

    agreements = await rental_api.agreements_for_customers(customer_ids)
    active, historical = split_agreements(agreements)
    logger.debug(
        "User %s: %d active, %d historical agreements", ctx.user_id, len(active), len(historical)
    )
    return AgreementsResponse(active=active, historical=historical)
