"""Security utilities: token encryption and the signed session token."""

import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from cryptography.fernet import Fernet
from jose import JWTError, jwt

from portal.core.config import get_settings
from portal.core.errors import ConfigurationError, Unauthorized

settings = get_settings()

# User columns mirrored into the session token
SESSION_USER_FIELDS = (
    "name",
    "email",
    "phone",
    "role",
    "address_street",
    "address_postal_code",
    "address_region",
    "created_at",
    "updated_at",
    "accepted_terms",
    "accepted_terms_version",
    "last_login_at",
)

_TOKEN_BOOKKEEPING = ("iat", "exp", "auth_time")


def generate_state() -> str:
    """Opaque value for the OAuth ``state`` round trip."""
    return secrets.token_urlsafe(32)


# ── Field-level encryption (Fernet) ──────────────────────────

def _get_fernet() -> Fernet:
    if not settings.encryption_key:
        raise ConfigurationError(details={"missing": "ENCRYPTION_KEY"})
    return Fernet(settings.encryption_key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def seal_token(value: str | None) -> str | None:
    """Encrypt OAuth token material for storage when a key is configured."""
    if value is None or not settings.encryption_key:
        return value
    return encrypt_value(value)


# ── Session token (JWT) ──────────────────────────────────────

def _claim_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.replace(tzinfo=timezone.utc).isoformat()
    return value


def user_claims(user: Any, fields: tuple[str, ...] = SESSION_USER_FIELDS) -> dict[str, Any]:
    """Copy whitelisted profile columns from a user row into claim form."""
    return {field: _claim_value(getattr(user, field, None)) for field in fields}


def create_session_token(
    user: Any,
    auth_time: datetime | None = None,
    now: datetime | None = None,
) -> str:
    """Issue a session token for ``user``.

    ``auth_time`` is the moment of the original sign-in and fixes the hard
    expiry; refreshed tokens carry it forward unchanged.
    """
    now = now or datetime.now(timezone.utc)
    auth_time = auth_time or now
    payload = {
        "sub": str(user.id),
        **user_claims(user),
        "iat": int(now.timestamp()),
        "auth_time": int(auth_time.timestamp()),
        "exp": int((auth_time + timedelta(seconds=settings.session_max_age_seconds)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> dict:
    """Decode and verify a session token. Raises jose.JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def needs_refresh(payload: dict, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    issued_at = int(payload.get("iat", 0))
    return now.timestamp() - issued_at >= settings.session_update_age_seconds


def refresh_session_token(
    payload: dict,
    overrides: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> str:
    """Re-sign an existing session with a new ``iat`` and the same hard expiry.

    ``overrides`` replaces individual profile claims (already in claim form).
    """
    now = now or datetime.now(timezone.utc)
    claims = {k: v for k, v in payload.items() if k not in _TOKEN_BOOKKEEPING}
    if overrides:
        claims.update({k: v for k, v in overrides.items() if k in SESSION_USER_FIELDS})
    claims["iat"] = int(now.timestamp())
    claims["auth_time"] = payload["auth_time"]
    claims["exp"] = payload["exp"]
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


# ── Session resolution ───────────────────────────────────────

def is_onboarding_complete(claims: dict, latest_terms_version: str) -> bool:
    """``complete`` needs current terms accepted and a prior completed login."""
    return (
        claims.get("accepted_terms") is True
        and claims.get("accepted_terms_version") == latest_terms_version
        and bool(claims.get("last_login_at"))
    )


class SessionContext:
    """Resolved identity carried through a request."""

    __slots__ = ("user_id", "global_role", "onboarding_complete", "claims", "token")

    def __init__(
        self,
        user_id: uuid.UUID,
        global_role: str,
        onboarding_complete: bool,
        claims: dict,
        token: str,
    ) -> None:
        self.user_id = user_id
        self.global_role = global_role
        self.onboarding_complete = onboarding_complete
        self.claims = claims
        self.token = token


def resolve_session(token: str | None) -> SessionContext:
    """Validate a session token. Raises Unauthorized if absent or expired."""
    if not token:
        raise Unauthorized()
    try:
        payload = decode_session_token(token)
    except JWTError as exc:
        raise Unauthorized("Ugyldig eller utløpt økt") from exc

    try:
        user_id = uuid.UUID(payload["sub"])
        auth_time = int(payload["auth_time"])
    except (KeyError, TypeError, ValueError) as exc:
        raise Unauthorized("Ugyldig økt") from exc

    # Tokens signed under a longer max-age must not outlive the current cap
    now = datetime.now(timezone.utc).timestamp()
    if now - auth_time > settings.session_max_age_seconds:
        raise Unauthorized("Økten er utløpt")

    return SessionContext(
        user_id=user_id,
        global_role=payload.get("role") or "",
        onboarding_complete=is_onboarding_complete(payload, settings.latest_terms_version),
        claims=payload,
        token=token,
    )
