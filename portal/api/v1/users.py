"""Users CRUD — super admins only."""

import logging
import uuid
from collections import defaultdict

from fastapi import APIRouter, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from portal.api.deps import Session, SuperAdmin
from portal.core.errors import Conflict, NotFound, Validation
from portal.models.access_grant import AccessGrant
from portal.models.customer import Customer
from portal.models.user import GlobalRole, User, UserAccessRead, UserCreate, UserRead, UserUpdate
from portal.services import access

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


async def _accesses_by_user(
    session: AsyncSession, user_ids: list[uuid.UUID]
) -> dict[uuid.UUID, list[UserAccessRead]]:
    stmt = (
        select(AccessGrant, Customer)
        .join(Customer, Customer.customer_id == AccessGrant.customer_id, isouter=True)
        .where(AccessGrant.user_id.in_(user_ids))  # type: ignore[attr-defined]
        .order_by(AccessGrant.customer_id)
    )
    result = await session.execute(stmt)
    grouped: dict[uuid.UUID, list[UserAccessRead]] = defaultdict(list)
    for grant, customer in result.all():
        grouped[grant.user_id].append(
            UserAccessRead(
                customer_id=grant.customer_id,
                role=grant.role,
                customer_name=customer.name if customer else None,
                customer_number=customer.customer_number if customer else None,
            )
        )
    return grouped


async def _read(session: AsyncSession, user: User) -> UserRead:
    accesses = await _accesses_by_user(session, [user.id])
    return UserRead.model_validate(user).model_copy(update={"accesses": accesses[user.id]})


async def _check_companies(session: AsyncSession, customer_ids: list[int]) -> None:
    missing = await access.missing_customer_ids(session, customer_ids)
    if missing:
        raise Validation(
            f"Fant ikke selskap med id: {', '.join(str(cid) for cid in missing)}",
            details={"missing": missing},
        )


@router.get("", response_model=list[UserRead])
async def list_users(_admin: SuperAdmin, session: Session) -> list[UserRead]:
    stmt = select(User).order_by(User.created_at.desc())  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    users = list(result.scalars().all())
    accesses = await _accesses_by_user(session, [u.id for u in users])
    return [
        UserRead.model_validate(u).model_copy(update={"accesses": accesses[u.id]})
        for u in users
    ]


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, _admin: SuperAdmin, session: Session) -> UserRead:
    """Provision a user. Customers must be linked to at least one company."""
    relationships = body.relationships if body.role == GlobalRole.CUSTOMER else []
    if body.role == GlobalRole.CUSTOMER and not relationships:
        raise Validation("Kunder må knyttes til minst ett selskap")

    existing = await session.execute(select(User).where(User.phone == body.phone))
    if existing.scalar_one_or_none():
        raise Conflict("En bruker med dette telefonnummeret finnes allerede")

    await _check_companies(session, [rel.customer_id for rel in relationships])

    user = User(phone=body.phone, role=body.role)
    session.add(user)
    await session.flush()  # populate user.id
    await access.replace_grants_for_user(session, user.id, relationships)
    await session.refresh(user)
    logger.info("Created %s user %s", user.role, user.id)
    return await _read(session, user)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: uuid.UUID, _admin: SuperAdmin, session: Session) -> UserRead:
    return await _read(session, await _get_or_404(user_id, session))


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    _admin: SuperAdmin,
    session: Session,
) -> UserRead:
    """Replace the user's grants and/or change the global role."""
    user = await _get_or_404(user_id, session)
    role = body.role or user.role
    if role == GlobalRole.SUPER_ADMIN and body.accesses:
        raise Validation("Superadministratorer kan ikke ha selskapstilganger")

    if role != user.role:
        user.role = role
        user.touch()
        session.add(user)

    if role == GlobalRole.SUPER_ADMIN:
        # Super admins see every company and never hold grant rows
        await access.replace_grants_for_user(session, user.id, [])
    elif body.accesses is not None:
        await _check_companies(session, [g.customer_id for g in body.accesses])
        await access.replace_grants_for_user(session, user.id, body.accesses)
    else:
        await session.commit()

    await session.refresh(user)
    return await _read(session, user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: uuid.UUID, admin: SuperAdmin, session: Session) -> None:
    user = await _get_or_404(user_id, session)
    await access.delete_user(session, user)
    logger.info("User %s deleted by %s", user_id, admin.user_id)


# ── Internal helper ───────────────────────────────────────────

async def _get_or_404(user_id: uuid.UUID, session: AsyncSession) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise NotFound("Bruker ikke funnet")
    return user
