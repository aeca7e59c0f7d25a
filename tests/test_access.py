"""Access store and authorization gate."""

import uuid

import pytest
from pydantic import ValidationError
from sqlmodel import select

from portal.core.errors import Forbidden
from portal.core.security import SessionContext
from portal.models.access_grant import (
    AccessGrant,
    CompanyRole,
    UserGrantInput,
    normalize_company_role,
)
from portal.models.user import GlobalRole, normalize_phone
from portal.services import access


def _ctx(user_id: uuid.UUID, role: GlobalRole) -> SessionContext:
    return SessionContext(
        user_id=user_id, global_role=role.value, onboarding_complete=True, claims={}, token=""
    )


async def _grants(session, user_id) -> dict[int, CompanyRole]:
    result = await session.execute(select(AccessGrant).where(AccessGrant.user_id == user_id))
    return {g.customer_id: CompanyRole(g.role) for g in result.scalars().all()}


@pytest.mark.parametrize("raw", ["+4745938863", "4745938863", " +47 459 388 63 ", "47 45938863"])
def test_phone_is_canonicalized(raw):
    assert normalize_phone(raw) == "+4745938863"
    assert normalize_phone(normalize_phone(raw)) == "+4745938863"


@pytest.mark.parametrize("raw", [None, "", "   ", "+47-459", "abc", "++4745"])
def test_unusable_phone_is_absent(raw):
    assert normalize_phone(raw) is None


def test_company_role_synonyms():
    assert normalize_company_role("selskapsadmin") is CompanyRole.ADMIN
    assert normalize_company_role("Selskapsbruker") is CompanyRole.USER
    assert UserGrantInput(customer_id=1, role="selskapsadmin").role is CompanyRole.ADMIN
    with pytest.raises(ValidationError):
        UserGrantInput(customer_id=1, role="owner")


def test_admin_satisfies_user():
    assert CompanyRole.ADMIN.satisfies(CompanyRole.USER)
    assert CompanyRole.ADMIN.satisfies(CompanyRole.ADMIN)
    assert not CompanyRole.USER.satisfies(CompanyRole.ADMIN)


@pytest.mark.asyncio
async def test_replace_grants_for_user(session, make_user, make_customer):
    for cid in (2228, 1075, 999):
        await make_customer(cid, f"Company {cid}")
    user = await make_user("+4745938863", grants={999: CompanyRole.USER})

    await access.replace_grants_for_user(session, user.id, [
        UserGrantInput(customer_id=2228, role="admin"),
        UserGrantInput(customer_id=1075, role="user"),
    ])

    assert await _grants(session, user.id) == {
        2228: CompanyRole.ADMIN,
        1075: CompanyRole.USER,
    }


@pytest.mark.asyncio
async def test_replace_with_empty_set_removes_everything(session, make_user, make_customer):
    await make_customer(2228, "Bygg AS")
    user = await make_user("+4745938863", grants={2228: CompanyRole.ADMIN})

    await access.replace_grants_for_user(session, user.id, [])

    assert await _grants(session, user.id) == {}


@pytest.mark.asyncio
async def test_duplicate_entries_collapse_to_last(session, make_user, make_customer):
    await make_customer(2228, "Bygg AS")
    user = await make_user("+4745938863")

    rows = await access.replace_grants_for_user(session, user.id, [
        UserGrantInput(customer_id=2228, role="user"),
        UserGrantInput(customer_id=2228, role="admin"),
    ])

    assert len(rows) == 1
    assert await _grants(session, user.id) == {2228: CompanyRole.ADMIN}


@pytest.mark.asyncio
async def test_replace_only_touches_target_user(session, make_user, make_customer):
    await make_customer(2228, "Bygg AS")
    other = await make_user("+4711111111", grants={2228: CompanyRole.USER})
    user = await make_user("+4745938863", grants={2228: CompanyRole.USER})

    await access.replace_grants_for_user(session, user.id, [])

    assert await _grants(session, other.id) == {2228: CompanyRole.USER}


@pytest.mark.asyncio
async def test_super_admin_passes_without_grants(session):
    ctx = _ctx(uuid.uuid4(), GlobalRole.SUPER_ADMIN)

    for customer_id in (1, 2228, 999999):
        await access.authorize_company_access(session, ctx, customer_id, CompanyRole.ADMIN)
    access.authorize_global(ctx, GlobalRole.SUPER_ADMIN)


@pytest.mark.asyncio
async def test_customer_needs_matching_grant(session, make_user, make_customer):
    await make_customer(2228, "Bygg AS")
    await make_customer(1075, "Anlegg AS")
    user = await make_user(
        "+4745938863", grants={2228: CompanyRole.ADMIN, 1075: CompanyRole.USER}
    )
    ctx = _ctx(user.id, GlobalRole.CUSTOMER)

    await access.authorize_company_access(session, ctx, 2228, CompanyRole.ADMIN)
    await access.authorize_company_access(session, ctx, 2228, CompanyRole.USER)
    await access.authorize_company_access(session, ctx, 1075, CompanyRole.USER)
    with pytest.raises(Forbidden):
        await access.authorize_company_access(session, ctx, 1075, CompanyRole.ADMIN)
    with pytest.raises(Forbidden):
        await access.authorize_company_access(session, ctx, 42, CompanyRole.USER)
    with pytest.raises(Forbidden):
        access.authorize_global(ctx, GlobalRole.SUPER_ADMIN)


@pytest.mark.asyncio
async def test_unknown_global_role_is_denied(session):
    ctx = SessionContext(
        user_id=uuid.uuid4(), global_role="", onboarding_complete=True, claims={}, token=""
    )
    with pytest.raises(Forbidden):
        await access.authorize_company_access(session, ctx, 2228)


@pytest.mark.asyncio
async def test_missing_customer_ids(session, make_customer):
    await make_customer(2228, "Bygg AS")

    assert await access.missing_customer_ids(session, [2228, 1075, 1075]) == [1075]
    assert await access.missing_customer_ids(session, []) == []
