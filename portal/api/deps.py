"""FastAPI dependencies for session resolution and authorization."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from portal.core.config import get_settings
from portal.core.database import get_session
from portal.core.errors import OnboardingRequired
from portal.core.security import (
    SessionContext,
    needs_refresh,
    refresh_session_token,
    resolve_session,
)
from portal.models.user import GlobalRole
from portal.services.access import authorize_global
from portal.services.identity_provider import IdentityProvider, get_identity_provider
from portal.services.rental_api import RentalApiClient, get_rental_api

bearer_scheme = HTTPBearer(auto_error=False)

SESSION_TOKEN_HEADER = "X-Session-Token"


def set_session_cookie(response: Response, token: str, expires_at: int) -> None:
    """Hand a (re)issued session token back to the client."""
    settings = get_settings()
    max_age = max(0, expires_at - int(datetime.now(timezone.utc).timestamp()))
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    response.headers[SESSION_TOKEN_HEADER] = token


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(get_settings().session_cookie_name)


async def get_session_context(
    request: Request,
    response: Response,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> SessionContext:
    """Resolve the caller's session from a bearer token or the session cookie.

    Tokens older than the update age are silently re-signed; the hard expiry
    set at sign-in never moves.
    """
    token = (
        credentials.credentials
        if credentials is not None
        else request.cookies.get(get_settings().session_cookie_name)
    )
    ctx = resolve_session(token)
    if needs_refresh(ctx.claims):
        fresh = refresh_session_token(ctx.claims)
        set_session_cookie(response, fresh, int(ctx.claims["exp"]))
        ctx = resolve_session(fresh)
    return ctx


async def require_onboarding(
    ctx: Annotated[SessionContext, Depends(get_session_context)],
) -> SessionContext:
    """Pending sessions may only reach the auth and onboarding routes."""
    if not ctx.onboarding_complete:
        raise OnboardingRequired()
    return ctx


async def require_super_admin(
    ctx: Annotated[SessionContext, Depends(require_onboarding)],
) -> SessionContext:
    authorize_global(ctx, GlobalRole.SUPER_ADMIN)
    return ctx


# Typed shorthand for use in route signatures
CurrentSession = Annotated[SessionContext, Depends(get_session_context)]
OnboardedSession = Annotated[SessionContext, Depends(require_onboarding)]
SuperAdmin = Annotated[SessionContext, Depends(require_super_admin)]
Session = Annotated[AsyncSession, Depends(get_session)]
Provider = Annotated[IdentityProvider, Depends(get_identity_provider)]
RentalApi = Annotated[RentalApiClient, Depends(get_rental_api)]
