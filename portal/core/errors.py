"""Error taxonomy shared by route handlers, services and the auth gate.

Every failure that reaches a client is one of the classes below. Handlers
registered in :func:`register_exception_handlers` render them as
``{"detail": ..., "code": ..., "details": ...}`` with the matching status.

Login failures are *not* exceptions: the provider callback redirects to the
login page with one of the :class:`LoginErrorCode` values instead.
"""

import logging
from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

logger = logging.getLogger(__name__)


class PortalError(Exception):
    code = "Unknown"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Noe gikk galt. Prøv på nytt, og kontakt support hvis feilen vedvarer."

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.details = details
        super().__init__(self.message)


class Unauthorized(PortalError):
    code = "Unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Økten din mangler eller er utløpt. Logg inn på nytt."


class Forbidden(PortalError):
    code = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Du har ikke tilgang til denne ressursen."


class OnboardingRequired(Forbidden):
    code = "OnboardingRequired"
    message = "Du må godta vilkårene før du kan bruke portalen."


class NotFound(PortalError):
    code = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    message = "Ikke funnet."


class Validation(PortalError):
    code = "Validation"
    status_code = 422
    message = "Ugyldig forespørsel."


class Conflict(PortalError):
    code = "Conflict"
    status_code = status.HTTP_409_CONFLICT
    message = "Ressursen finnes allerede."


class ConfigurationError(PortalError):
    code = "Configuration"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Tjenesten mangler konfigurasjon. Kontakt support."


class UpstreamUnavailable(PortalError):
    code = "UpstreamUnavailable"
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Klarte ikke å nå en ekstern tjeneste. Prøv igjen."


# ── Login error codes (carried on ?error= redirects) ─────────

class LoginErrorCode(StrEnum):
    ACCOUNT_NOT_LINKED = "AccountNotLinked"
    USER_NOT_FOUND = "UserNotFound"
    ACCESS_DENIED = "AccessDenied"
    CONFIGURATION = "Configuration"
    OAUTH_CALLBACK = "OAuthCallback"


LOGIN_ERROR_MESSAGES: dict[LoginErrorCode, str] = {
    LoginErrorCode.ACCOUNT_NOT_LINKED: (
        "E-postadressen{email} er allerede knyttet til en eksisterende bruker. "
        "Kontakt support for å koble innloggingen til kontoen."
    ),
    LoginErrorCode.USER_NOT_FOUND: (
        "Vi fant ingen bruker knyttet til kontaktopplysningene dine. "
        "Ta kontakt med din kontoansvarlige for å få brukertilgang før du logger inn igjen."
    ),
    LoginErrorCode.ACCESS_DENIED: (
        "Tilgang nektet under innlogging. Prøv igjen eller kontakt support."
    ),
    LoginErrorCode.CONFIGURATION: (
        "Det har oppstått en feil i servertilkoblingen. "
        "Prøv å logge inn igjen eller kontakt support."
    ),
    LoginErrorCode.OAUTH_CALLBACK: "Noe gikk galt i innloggingen. Prøv igjen.",
}


def login_error_message(code: str, email: str | None = None) -> str:
    """Return the user-facing message for a login error code."""
    try:
        template = LOGIN_ERROR_MESSAGES[LoginErrorCode(code)]
    except ValueError:
        return f"Innlogging mislyktes ({code}). Prøv igjen."
    return template.format(email=f" ({email})" if email else "")


# ── FastAPI wiring ───────────────────────────────────────────

def _render(exc: PortalError) -> JSONResponse:
    body: dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortalError)
    async def portal_error_handler(_request: Request, exc: PortalError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s: %s %s", exc.code, exc.message, exc.details or "")
        return _render(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _render(Validation(details={"errors": exc.errors()}))

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(_request: Request, exc: IntegrityError) -> JSONResponse:
        logger.warning("Unique constraint violated: %s", exc.orig)
        return _render(Conflict())
