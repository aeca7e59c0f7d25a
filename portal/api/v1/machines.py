"""Machine details from the rental system."""

from typing import Annotated, Any

from fastapi import APIRouter, Path
from pydantic import BaseModel

from portal.api.deps import OnboardedSession, RentalApi
from portal.core.errors import Forbidden
from portal.models.user import GlobalRole

router = APIRouter(prefix="/machines", tags=["machines"])


class MachineDetail(BaseModel):
    machine: dict[str, Any]


@router.get("/{machine_id}", response_model=MachineDetail)
async def get_machine(
    machine_id: Annotated[int, Path(gt=0)],
    ctx: OnboardedSession,
    rental_api: RentalApi,
) -> MachineDetail:
    if ctx.global_role not in (GlobalRole.CUSTOMER, GlobalRole.SUPER_ADMIN):
        raise Forbidden()
    return MachineDetail(machine=await rental_api.get_machine(machine_id))
