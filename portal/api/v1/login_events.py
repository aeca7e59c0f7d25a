"""Login activity feed for administrators."""

from typing import Annotated

from fastapi import APIRouter, Query

from portal.api.deps import Session, SuperAdmin
from portal.models.login_event import LoginEventRead, LoginEventUser
from portal.services import access

router = APIRouter(prefix="/login-events", tags=["login-events"])


@router.get("", response_model=list[LoginEventRead])
async def list_login_events(
    _admin: SuperAdmin,
    session: Session,
    limit: Annotated[int, Query(ge=1, le=1000)] = 200,
) -> list[LoginEventRead]:
    """Most recent sign-ins first."""
    rows = await access.list_recent_logins(session, limit)
    return [
        LoginEventRead(
            id=event.id,
            provider=event.provider,
            logged_at=event.logged_at,
            user=LoginEventUser.model_validate(user),
        )
        for event, user in rows
    ]
