"""Sign-in reconciliation: phone-keyed identity, link ownership, fail-open."""

from unittest.mock import AsyncMock, patch

import pytest
from cryptography.fernet import Fernet
from sqlalchemy import func
from sqlmodel import select

from portal.core.config import get_settings
from portal.models.login_event import LoginEvent
from portal.models.provider_account import ProviderAccount
from portal.models.user import User
from portal.services.identity_provider import OAuthTokens, VerifiedProfile
from portal.services.reconciler import (
    OutcomeKind,
    complete_sign_in,
    reconcile,
    resolve_signed_in_user,
)


def _profile(**overrides) -> VerifiedProfile:
    data = {
        "provider": "vipps",
        "provider_account_id": "vipps-sub-1",
        "phone_number": "4745938863",
        "email": None,
        "address": None,
    }
    data.update(overrides)
    return VerifiedProfile(**data)


async def _count(session, model) -> int:
    result = await session.execute(select(func.count()).select_from(model))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_first_login_links_provider_account(session, make_user):
    """Known phone, no link yet: allowed and exactly one link is created."""
    user = await make_user("+4745938863")

    outcome = await reconcile(
        session,
        _profile(address={"street_address": "Storgata 1", "postal_code": "0155"}),
        OAuthTokens(access_token="at-1", refresh_token="rt-1"),
    )

    assert outcome.kind == OutcomeKind.ALLOW
    assert outcome.user_id == user.id
    links = (await session.execute(select(ProviderAccount))).scalars().all()
    assert len(links) == 1
    assert links[0].user_id == user.id
    assert links[0].provider_account_id == "vipps-sub-1"
    # Token material is stored encrypted
    assert links[0].access_token != "at-1"
    fernet = Fernet(get_settings().encryption_key.encode())
    assert fernet.decrypt(links[0].access_token.encode()) == b"at-1"

    await session.refresh(user)
    assert user.address_street == "Storgata 1"
    assert user.address_postal_code == "0155"
    assert user.address_region is None


@pytest.mark.asyncio
async def test_returning_login_adds_no_rows(session, make_user):
    user = await make_user("+4745938863")
    await reconcile(session, _profile())
    created_at = user.created_at

    outcome = await reconcile(session, _profile())

    assert outcome.kind == OutcomeKind.ALLOW
    assert await _count(session, ProviderAccount) == 1
    await session.refresh(user)
    assert user.created_at == created_at


@pytest.mark.asyncio
async def test_link_owned_by_other_user_is_rejected(session, make_user):
    """A provider account linked to A cannot sign in as phone owner B."""
    user_a = await make_user("+4711111111")
    user_b = await make_user("+4745938863")
    session.add(ProviderAccount(user_id=user_a.id, provider="vipps", provider_account_id="vipps-sub-1"))
    await session.commit()

    outcome = await reconcile(session, _profile(email="b@example.com"))

    assert outcome.kind == OutcomeKind.ACCOUNT_NOT_LINKED
    assert outcome.error_code == "AccountNotLinked"
    assert outcome.email == "b@example.com"
    assert await _count(session, ProviderAccount) == 1
    await session.refresh(user_b)
    assert user_b.email is None


@pytest.mark.asyncio
async def test_unknown_phone_and_email_is_user_not_found(session):
    outcome = await reconcile(
        session, _profile(phone_number="+4799999999", email="new@example.com")
    )

    assert outcome.kind == OutcomeKind.USER_NOT_FOUND
    assert outcome.error_code == "UserNotFound"
    assert outcome.email == "new@example.com"
    assert not outcome.allowed
    assert await _count(session, User) == 0
    assert await _count(session, ProviderAccount) == 0


@pytest.mark.asyncio
async def test_new_phone_with_known_email_is_not_linked(session, make_user):
    await make_user("+4722222222", email="ola@example.com")

    outcome = await reconcile(
        session, _profile(phone_number="+4799999999", email="ola@example.com")
    )

    assert outcome.kind == OutcomeKind.ACCOUNT_NOT_LINKED
    assert outcome.email == "ola@example.com"
    assert await _count(session, ProviderAccount) == 0


@pytest.mark.asyncio
async def test_email_owned_by_someone_else_is_not_synced(session, make_user):
    user = await make_user("+4745938863")
    await make_user("+4722222222", email="taken@example.com")

    outcome = await reconcile(session, _profile(email="taken@example.com"))

    assert outcome.kind == OutcomeKind.ALLOW
    await session.refresh(user)
    assert user.email is None


@pytest.mark.asyncio
async def test_existing_email_is_never_replaced(session, make_user):
    user = await make_user("+4745938863", email="first@example.com")

    await reconcile(session, _profile(email="second@example.com"))

    await session.refresh(user)
    assert user.email == "first@example.com"


@pytest.mark.asyncio
async def test_missing_phone_is_degraded_allow(session):
    outcome = await reconcile(session, _profile(phone_number="not a number"))

    assert outcome.kind == OutcomeKind.ALLOW_DEGRADED
    assert outcome.reason == "missing_phone"
    assert outcome.allowed
    assert outcome.error_code is None


@pytest.mark.asyncio
async def test_missing_account_id_is_degraded_allow(session):
    outcome = await reconcile(session, _profile(provider_account_id=None))

    assert outcome.kind == OutcomeKind.ALLOW_DEGRADED
    assert outcome.reason == "missing_provider_account"


@pytest.mark.asyncio
async def test_lookup_failure_fails_open(session, make_user):
    await make_user("+4745938863")

    with patch(
        "portal.services.reconciler.find_user_by_phone",
        AsyncMock(side_effect=RuntimeError("db down")),
    ):
        outcome = await reconcile(session, _profile())

    assert outcome.kind == OutcomeKind.ALLOW_DEGRADED
    assert outcome.reason == "internal_error"


@pytest.mark.asyncio
async def test_degraded_outcome_resolves_through_existing_link(session, make_user):
    user = await make_user("+4745938863")
    session.add(ProviderAccount(user_id=user.id, provider="vipps", provider_account_id="vipps-sub-1"))
    await session.commit()
    profile = _profile(phone_number=None)

    outcome = await reconcile(session, profile)
    resolved = await resolve_signed_in_user(session, outcome, profile)

    assert outcome.kind == OutcomeKind.ALLOW_DEGRADED
    assert resolved is not None
    assert resolved.id == user.id


@pytest.mark.asyncio
async def test_degraded_outcome_without_match_resolves_to_nobody(session):
    profile = _profile(provider_account_id=None, phone_number="+4799999999")

    outcome = await reconcile(session, profile)

    assert await resolve_signed_in_user(session, outcome, profile) is None


@pytest.mark.asyncio
async def test_complete_sign_in_leaves_first_login_unstamped(session, make_user):
    """``last_login_at`` stays empty until onboarding is completed once."""
    user = await make_user("+4745938863", onboarded=False)

    user = await complete_sign_in(session, user, _profile(email="ola@example.com"))

    assert user.last_login_at is None
    assert user.email == "ola@example.com"
    assert await _count(session, LoginEvent) == 1


@pytest.mark.asyncio
async def test_complete_sign_in_stamps_returning_user(session, make_user):
    user = await make_user("+4745938863")
    previous = user.last_login_at

    user = await complete_sign_in(session, user, _profile())

    assert user.last_login_at is not None
    assert user.last_login_at >= previous
    event = (await session.execute(select(LoginEvent))).scalar_one()
    assert event.user_id == user.id
    assert event.provider == "vipps"
