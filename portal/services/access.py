"""Access store queries and the authorization gate.

Two layers decide what a session may do:

- the global role (``customer`` / ``super_admin``) on the user row, carried
  in the session token;
- per-company grants (``admin`` / ``user``) in ``user_customer_accesses``,
  only consulted for ``customer`` sessions. Super admins never have rows.
"""

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from portal.core.errors import Forbidden
from portal.core.security import SessionContext
from portal.models.access_grant import (
    AccessGrant,
    CompanyRole,
    CustomerGrantInput,
    UserGrantInput,
)
from portal.models.customer import Customer
from portal.models.login_event import LoginEvent
from portal.models.provider_account import ProviderAccount
from portal.models.user import GlobalRole, User

logger = logging.getLogger(__name__)


# ── Authorization gate ───────────────────────────────────────

def authorize_global(ctx: SessionContext, required_role: GlobalRole) -> None:
    """Raise Forbidden unless the session holds exactly ``required_role``."""
    if ctx.global_role != required_role:
        raise Forbidden()


async def authorize_company_access(
    session: AsyncSession,
    ctx: SessionContext,
    customer_id: int,
    required_role: CompanyRole = CompanyRole.USER,
) -> None:
    """Raise Forbidden unless the session may act on ``customer_id``."""
    if ctx.global_role == GlobalRole.SUPER_ADMIN:
        return
    if ctx.global_role != GlobalRole.CUSTOMER:
        raise Forbidden()
    grant = await session.get(AccessGrant, (ctx.user_id, customer_id))
    if grant is None or not CompanyRole(grant.role).satisfies(required_role):
        raise Forbidden()


# ── Grant queries ────────────────────────────────────────────

async def grants_for_user(session: AsyncSession, user_id: uuid.UUID) -> list[AccessGrant]:
    stmt = (
        select(AccessGrant)
        .where(AccessGrant.user_id == user_id)
        .order_by(AccessGrant.customer_id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def grants_for_customer(session: AsyncSession, customer_id: int) -> list[AccessGrant]:
    stmt = (
        select(AccessGrant)
        .where(AccessGrant.customer_id == customer_id)
        .order_by(AccessGrant.user_id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def accessible_customer_ids(session: AsyncSession, user_id: uuid.UUID) -> list[int]:
    return [grant.customer_id for grant in await grants_for_user(session, user_id)]


async def missing_customer_ids(session: AsyncSession, customer_ids: Iterable[int]) -> list[int]:
    """Ids in ``customer_ids`` with no row in the customers table."""
    wanted = sorted(set(customer_ids))
    if not wanted:
        return []
    result = await session.execute(
        select(Customer.customer_id).where(Customer.customer_id.in_(wanted))  # type: ignore[union-attr]
    )
    found = set(result.scalars().all())
    return [cid for cid in wanted if cid not in found]


def _dedupe_by(items: Iterable, key) -> list:
    """Collapse entries sharing a key; the last one wins."""
    return list({key(item): item for item in items}.values())


async def replace_grants_for_user(
    session: AsyncSession,
    user_id: uuid.UUID,
    grants: list[UserGrantInput],
) -> list[AccessGrant]:
    """Replace every grant of ``user_id`` with ``grants`` in one transaction."""
    rows = [
        AccessGrant(user_id=user_id, customer_id=g.customer_id, role=g.role)
        for g in _dedupe_by(grants, lambda g: g.customer_id)
    ]
    try:
        await session.execute(delete(AccessGrant).where(AccessGrant.user_id == user_id))
        session.add_all(rows)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Replaced grants for user %s: %d rows", user_id, len(rows))
    return rows


async def replace_grants_for_customer(
    session: AsyncSession,
    customer_id: int,
    grants: list[CustomerGrantInput],
) -> list[AccessGrant]:
    """Replace every grant on ``customer_id`` with ``grants`` in one transaction."""
    rows = [
        AccessGrant(user_id=g.user_id, customer_id=customer_id, role=g.role)
        for g in _dedupe_by(grants, lambda g: g.user_id)
    ]
    try:
        await session.execute(delete(AccessGrant).where(AccessGrant.customer_id == customer_id))
        session.add_all(rows)
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("Replaced grants for customer %s: %d rows", customer_id, len(rows))
    return rows


async def remove_grant(session: AsyncSession, user_id: uuid.UUID, customer_id: int) -> bool:
    grant = await session.get(AccessGrant, (user_id, customer_id))
    if grant is None:
        return False
    await session.delete(grant)
    await session.commit()
    return True


# ── Users ────────────────────────────────────────────────────

async def delete_user(session: AsyncSession, user: User) -> None:
    """Delete a user with its grants, provider links and login events."""
    for model in (AccessGrant, ProviderAccount, LoginEvent):
        await session.execute(delete(model).where(model.user_id == user.id))
    await session.delete(user)
    await session.commit()


# ── Login events ─────────────────────────────────────────────

async def list_recent_logins(
    session: AsyncSession, limit: int = 200
) -> list[tuple[LoginEvent, User]]:
    stmt = (
        select(LoginEvent, User)
        .join(User, User.id == LoginEvent.user_id)
        .order_by(LoginEvent.logged_at.desc())  # type: ignore[attr-defined]
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [(event, user) for event, user in result.all()]
