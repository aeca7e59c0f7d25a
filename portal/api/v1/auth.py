"""Authentication endpoints — provider sign-in, callback and the session."""

import logging
import uuid
from datetime import datetime
from enum import StrEnum
from urllib.parse import urlencode

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from portal.api.deps import (
    CurrentSession,
    Provider,
    Session,
    clear_session_cookie,
    set_session_cookie,
)
from portal.core.config import get_settings
from portal.core.errors import (
    ConfigurationError,
    LoginErrorCode,
    NotFound,
    PortalError,
    Unauthorized,
    Validation,
    login_error_message,
)
from portal.core.security import (
    SESSION_USER_FIELDS,
    create_session_token,
    decode_session_token,
    generate_state,
    is_onboarding_complete,
    refresh_session_token,
    user_claims,
)
from portal.models.user import User, normalize_phone
from portal.services.reconciler import (
    complete_sign_in,
    find_user_by_phone,
    reconcile,
    record_login,
    resolve_signed_in_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "portal_oauth_state"
CALLBACK_COOKIE = "portal_callback_url"


# ── Schemas ──────────────────────────────────────────────────

class SessionRead(BaseModel):
    user_id: uuid.UUID
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    role: str | None = None
    address_street: str | None = None
    address_postal_code: str | None = None
    address_region: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    accepted_terms: bool = False
    accepted_terms_version: str | None = None
    last_login_at: datetime | None = None
    onboarding_complete: bool
    expires_at: int


class SessionTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    session: SessionRead


class PatchableField(StrEnum):
    ACCEPTED_TERMS = "accepted_terms"
    ACCEPTED_TERMS_VERSION = "accepted_terms_version"
    LAST_LOGIN_AT = "last_login_at"
    ROLE = "role"
    PROFILE = "profile"


_PATCH_COLUMNS: dict[PatchableField, tuple[str, ...]] = {
    PatchableField.ACCEPTED_TERMS: ("accepted_terms",),
    PatchableField.ACCEPTED_TERMS_VERSION: ("accepted_terms_version",),
    PatchableField.LAST_LOGIN_AT: ("last_login_at",),
    PatchableField.ROLE: ("role",),
    PatchableField.PROFILE: (
        "name",
        "email",
        "phone",
        "address_street",
        "address_postal_code",
        "address_region",
        "updated_at",
    ),
}


class SessionPatch(BaseModel):
    """Fields to re-read from the user row; empty means all of them."""
    fields: list[PatchableField] = []


class DevLoginRequest(BaseModel):
    phone: str


class LoginErrorResponse(BaseModel):
    code: str
    message: str


# ── Helpers ──────────────────────────────────────────────────

def _session_read(claims: dict) -> SessionRead:
    settings = get_settings()
    return SessionRead(
        user_id=uuid.UUID(claims["sub"]),
        **{field: claims.get(field) for field in SESSION_USER_FIELDS},
        onboarding_complete=is_onboarding_complete(claims, settings.latest_terms_version),
        expires_at=int(claims["exp"]),
    )


def _token_response(response: Response, token: str) -> SessionTokenResponse:
    claims = decode_session_token(token)
    set_session_cookie(response, token, int(claims["exp"]))
    return SessionTokenResponse(access_token=token, session=_session_read(claims))


def _login_redirect(code: LoginErrorCode, email: str | None = None) -> RedirectResponse:
    settings = get_settings()
    params = {"error": code.value}
    if email:
        params["email"] = email
    url = f"{settings.public_base_url.rstrip('/')}{settings.login_path}?{urlencode(params)}"
    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    response.delete_cookie(STATE_COOKIE)
    response.delete_cookie(CALLBACK_COOKIE)
    return response


def _safe_callback(path: str | None) -> str:
    """Only same-site absolute paths are honoured as post-login targets."""
    settings = get_settings()
    if path and path.startswith("/") and not path.startswith("//"):
        return path
    return settings.default_landing_path


def _redirect_uri(request: Request) -> str:
    return str(request.url_for("auth_callback"))


# ── Routes ───────────────────────────────────────────────────

@router.get("/signin", name="auth_signin")
async def sign_in(
    request: Request,
    provider: Provider,
    callback_url: str | None = None,
) -> RedirectResponse:
    """Start the provider's authorization code flow."""
    state = generate_state()
    try:
        url = await provider.authorization_url(state, _redirect_uri(request))
    except ConfigurationError:
        return _login_redirect(LoginErrorCode.CONFIGURATION)
    except PortalError:
        logger.exception("Could not start sign-in with %s", provider.name)
        return _login_redirect(LoginErrorCode.OAUTH_CALLBACK)

    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    settings = get_settings()
    for name, value in ((STATE_COOKIE, state), (CALLBACK_COOKIE, _safe_callback(callback_url))):
        response.set_cookie(
            name,
            value,
            max_age=600,
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
        )
    return response


@router.get("/callback", name="auth_callback")
async def callback(
    request: Request,
    session: Session,
    provider: Provider,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """Provider redirect target: reconcile the identity and issue a session."""
    if error:
        logger.info("Provider returned error %s", error)
        if error == "access_denied":
            return _login_redirect(LoginErrorCode.ACCESS_DENIED)
        return _login_redirect(LoginErrorCode.OAUTH_CALLBACK)

    expected_state = request.cookies.get(STATE_COOKIE)
    if not code or not state or state != expected_state:
        logger.warning("OAuth callback with missing code or mismatched state")
        return _login_redirect(LoginErrorCode.OAUTH_CALLBACK)

    redirect_uri = _redirect_uri(request)
    try:
        tokens = await provider.exchange_code(code, redirect_uri)
        profile = await provider.fetch_profile(tokens)
    except ConfigurationError:
        return _login_redirect(LoginErrorCode.CONFIGURATION)
    except PortalError:
        logger.exception("Token exchange with %s failed", provider.name)
        return _login_redirect(LoginErrorCode.OAUTH_CALLBACK)

    outcome = await reconcile(session, profile, tokens)
    if not outcome.allowed:
        return _login_redirect(outcome.error_code, outcome.email)

    user = await resolve_signed_in_user(session, outcome, profile)
    if user is None:
        # Degraded allow with nothing to bind to; users are never created here
        logger.warning("Allowed sign-in (%s) without a resolvable user", outcome.reason)
        return _login_redirect(LoginErrorCode.USER_NOT_FOUND, profile.email)

    user = await complete_sign_in(session, user, profile)
    token = create_session_token(user)
    claims = decode_session_token(token)
    settings = get_settings()

    if is_onboarding_complete(claims, settings.latest_terms_version):
        target = _safe_callback(request.cookies.get(CALLBACK_COOKIE))
    else:
        target = settings.onboarding_path
    response = RedirectResponse(
        f"{settings.public_base_url.rstrip('/')}{target}",
        status_code=status.HTTP_302_FOUND,
    )
    response.delete_cookie(STATE_COOKIE)
    response.delete_cookie(CALLBACK_COOKIE)
    set_session_cookie(response, token, int(claims["exp"]))
    logger.info("Issued session for user %s via %s", user.id, profile.provider)
    return response


@router.post("/dev-login", response_model=SessionTokenResponse)
async def dev_login(
    body: DevLoginRequest,
    session: Session,
    response: Response,
) -> SessionTokenResponse:
    """Sign in as an existing user without the provider. Disabled by default."""
    if not get_settings().dev_bypass_enabled:
        raise NotFound()
    phone = normalize_phone(body.phone)
    if phone is None:
        raise Validation("Telefonnummer mangler eller har feil format")
    user = await find_user_by_phone(session, phone)
    if user is None:
        raise NotFound(login_error_message(LoginErrorCode.USER_NOT_FOUND))
    await record_login(session, user, "dev")
    logger.warning("Dev bypass sign-in for user %s", user.id)
    return _token_response(response, create_session_token(user))


@router.get("/session", response_model=SessionRead)
async def get_current_session(ctx: CurrentSession) -> SessionRead:
    """Return the claims of the caller's session."""
    return _session_read(ctx.claims)


@router.patch("/session", response_model=SessionTokenResponse)
async def patch_session(
    body: SessionPatch,
    ctx: CurrentSession,
    session: Session,
    response: Response,
) -> SessionTokenResponse:
    """Re-derive the listed session fields from the user row."""
    user = await session.get(User, ctx.user_id)
    if user is None:
        raise Unauthorized()
    await session.refresh(user)
    fields = body.fields or list(PatchableField)
    columns = tuple(column for field in fields for column in _PATCH_COLUMNS[field])
    token = refresh_session_token(ctx.claims, overrides=user_claims(user, columns))
    return _token_response(response, token)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(response: Response) -> None:
    clear_session_cookie(response)


@router.get("/login-error", response_model=LoginErrorResponse)
async def get_login_error(code: str, email: str | None = None) -> LoginErrorResponse:
    """Localized message for a ``?error=`` code on the login page."""
    return LoginErrorResponse(code=code, message=login_error_message(code, email))
