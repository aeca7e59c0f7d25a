"""Account reconciler — decides the outcome of an identity-provider callback.

The phone number asserted by the provider is the primary identity key. A
callback is matched against the users table before any session is issued:

1. No provider account id or no usable phone number: allow, degraded. The
   identity policy cannot be applied without them.
2. Phone belongs to a user: allow, unless this provider account is already
   linked to somebody else. A missing link is created on the spot and newly
   available profile fields are synced.
3. Phone unknown but the email belongs to a user: account not linked.
4. Neither phone nor email known: user not found. Users are provisioned by
   administrators only.

Unexpected errors never block a sign-in: they are logged and turned into a
degraded allow.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from portal.core.errors import LoginErrorCode
from portal.core.security import seal_token
from portal.models.base import utcnow
from portal.models.login_event import LoginEvent
from portal.models.provider_account import ProviderAccount
from portal.models.user import User, normalize_phone
from portal.services.identity_provider import OAuthTokens, VerifiedProfile, map_address

logger = logging.getLogger(__name__)


class OutcomeKind(StrEnum):
    ALLOW = "allow"
    ALLOW_DEGRADED = "allow_degraded"
    ACCOUNT_NOT_LINKED = "account_not_linked"
    USER_NOT_FOUND = "user_not_found"


@dataclass(frozen=True)
class SignInOutcome:
    kind: OutcomeKind
    user_id: uuid.UUID | None = None
    email: str | None = None
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.kind in (OutcomeKind.ALLOW, OutcomeKind.ALLOW_DEGRADED)

    @property
    def error_code(self) -> LoginErrorCode | None:
        if self.kind is OutcomeKind.ACCOUNT_NOT_LINKED:
            return LoginErrorCode.ACCOUNT_NOT_LINKED
        if self.kind is OutcomeKind.USER_NOT_FOUND:
            return LoginErrorCode.USER_NOT_FOUND
        return None


def _degraded(reason: str) -> SignInOutcome:
    return SignInOutcome(OutcomeKind.ALLOW_DEGRADED, reason=reason)


# ── Lookups ──────────────────────────────────────────────────

async def find_user_by_phone(session: AsyncSession, phone: str) -> User | None:
    result = await session.execute(select(User).where(User.phone == phone))
    return result.scalar_one_or_none()


async def find_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def find_provider_account(
    session: AsyncSession, provider: str, provider_account_id: str
) -> ProviderAccount | None:
    stmt = select(ProviderAccount).where(
        ProviderAccount.provider == provider,
        ProviderAccount.provider_account_id == provider_account_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


# ── Profile sync ─────────────────────────────────────────────

async def _profile_updates(
    session: AsyncSession,
    user: User,
    phone: str | None,
    email: str | None,
    address: dict[str, str],
) -> dict[str, Any]:
    """Fields of ``user`` that the provider profile fills in or replaces.

    Email is only filled when the user has none and nobody else owns it;
    phone and address are overwritten when they differ.
    """
    updates: dict[str, Any] = {}
    if email and not user.email:
        owner = await find_user_by_email(session, email)
        if owner is None:
            updates["email"] = email
        else:
            logger.warning("Not syncing email for user %s: owned by user %s", user.id, owner.id)
    if phone and user.phone != phone:
        owner = await find_user_by_phone(session, phone)
        if owner is None:
            updates["phone"] = phone
        else:
            logger.warning("Not syncing phone for user %s: owned by user %s", user.id, owner.id)
    for column, value in address.items():
        if getattr(user, column) != value:
            updates[column] = value
    return updates


def _apply(user: User, updates: dict[str, Any]) -> None:
    for column, value in updates.items():
        setattr(user, column, value)
    if updates:
        user.touch()


def _new_link(user: User, provider: str, provider_account_id: str, tokens: OAuthTokens) -> ProviderAccount:
    return ProviderAccount(
        user_id=user.id,
        type=tokens.type,
        provider=provider,
        provider_account_id=provider_account_id,
        access_token=seal_token(tokens.access_token),
        refresh_token=seal_token(tokens.refresh_token),
        id_token=seal_token(tokens.id_token),
        expires_at=tokens.expires_at,
        token_type=tokens.token_type,
        scope=tokens.scope,
        session_state=tokens.session_state,
    )


# ── Decision procedure ───────────────────────────────────────

async def reconcile(
    session: AsyncSession,
    profile: VerifiedProfile,
    tokens: OAuthTokens | None = None,
) -> SignInOutcome:
    """Decide whether ``profile`` may sign in. Never raises."""
    try:
        return await _decide(session, profile, tokens or OAuthTokens())
    except Exception:
        logger.exception(
            "Reconciliation failed for %s account %s; allowing sign-in",
            profile.provider,
            profile.provider_account_id,
        )
        await session.rollback()
        return _degraded("internal_error")


async def _decide(
    session: AsyncSession, profile: VerifiedProfile, tokens: OAuthTokens
) -> SignInOutcome:
    provider = profile.provider
    account_id = profile.provider_account_id
    phone = normalize_phone(profile.phone_number)
    email = profile.email
    address = map_address(profile.address)

    if not provider or not account_id:
        logger.warning("Callback without provider or provider account id")
        return _degraded("missing_provider_account")

    if not phone:
        logger.warning("No usable phone number from %s for account %s", provider, account_id)
        return _degraded("missing_phone")

    user_by_phone = await find_user_by_phone(session, phone)

    if user_by_phone is not None:
        link = await find_provider_account(session, provider, account_id)
        if link is not None and link.user_id != user_by_phone.id:
            logger.info(
                "%s account %s is linked to user %s, not phone owner %s",
                provider,
                account_id,
                link.user_id,
                user_by_phone.id,
            )
            return SignInOutcome(OutcomeKind.ACCOUNT_NOT_LINKED, email=email)

        _apply(user_by_phone, await _profile_updates(session, user_by_phone, phone, email, address))
        session.add(user_by_phone)
        if link is None:
            session.add(_new_link(user_by_phone, provider, account_id, tokens))
            logger.info("Linked %s account %s to user %s", provider, account_id, user_by_phone.id)
        await session.commit()
        return SignInOutcome(OutcomeKind.ALLOW, user_id=user_by_phone.id, email=email)

    user_by_email = await find_user_by_email(session, email) if email else None

    if user_by_email is not None:
        logger.info("New phone %s but email belongs to user %s", phone, user_by_email.id)
        return SignInOutcome(OutcomeKind.ACCOUNT_NOT_LINKED, email=email)

    logger.info("No provisioned user for phone %s; blocking sign-in", phone)
    return SignInOutcome(OutcomeKind.USER_NOT_FOUND, email=email)


# ── After an allowed sign-in ─────────────────────────────────

async def resolve_signed_in_user(
    session: AsyncSession, outcome: SignInOutcome, profile: VerifiedProfile
) -> User | None:
    """Find the user an allowed outcome refers to.

    Degraded outcomes carry no user id; fall back to an existing provider
    link, then to the phone number.
    """
    if outcome.user_id is not None:
        return await session.get(User, outcome.user_id)
    if profile.provider and profile.provider_account_id:
        link = await find_provider_account(session, profile.provider, profile.provider_account_id)
        if link is not None:
            return await session.get(User, link.user_id)
    phone = normalize_phone(profile.phone_number)
    if phone:
        return await find_user_by_phone(session, phone)
    return None


async def record_login(session: AsyncSession, user: User, provider: str | None) -> LoginEvent:
    event = LoginEvent(user_id=user.id, provider=provider)
    session.add(event)
    await session.commit()
    return event


async def complete_sign_in(
    session: AsyncSession, user: User, profile: VerifiedProfile
) -> User:
    """Post-authentication sync, run once a session is about to be issued.

    ``last_login_at`` only moves for users who completed onboarding before;
    first-time users get it from the terms acceptance.
    """
    updates = await _profile_updates(
        session,
        user,
        normalize_phone(profile.phone_number),
        profile.email,
        map_address(profile.address),
    )
    if user.last_login_at is not None:
        updates["last_login_at"] = utcnow()
    _apply(user, updates)
    session.add(user)
    await record_login(session, user, profile.provider)
    await session.refresh(user)
    return user
