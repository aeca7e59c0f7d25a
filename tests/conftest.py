"""Shared test fixtures — async SQLite in-memory DB + test client."""

import os
from collections.abc import AsyncGenerator

# Settings are read at import time; configure before importing the app
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("PUBLIC_BASE_URL", "http://localhost:3000")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

# Import all models so metadata is populated
import portal.models  # noqa: F401
from portal.core.database import get_session
from portal.core.security import create_session_token
from portal.main import app
from portal.models.access_grant import AccessGrant, CompanyRole
from portal.models.base import utcnow
from portal.models.customer import Customer
from portal.models.user import GlobalRole, User


@pytest.fixture
async def engine():
    eng = create_async_engine("sqlite+aiosqlite://", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
async def client(session) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session override."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    """Factory: insert a user, optionally onboarded and with company grants."""

    async def _make(
        phone: str,
        role: GlobalRole = GlobalRole.CUSTOMER,
        *,
        email: str | None = None,
        name: str | None = None,
        onboarded: bool = True,
        grants: dict[int, CompanyRole] | None = None,
    ) -> User:
        user = User(phone=phone, role=role, email=email, name=name)
        if onboarded:
            user.accepted_terms = True
            user.accepted_terms_version = "v1"
            user.accepted_terms_at = utcnow()
            user.last_login_at = utcnow()
        session.add(user)
        await session.flush()
        for customer_id, company_role in (grants or {}).items():
            session.add(AccessGrant(user_id=user.id, customer_id=customer_id, role=company_role))
        await session.commit()
        return user

    return _make


@pytest.fixture
def make_customer(session):
    async def _make(
        customer_id: int,
        name: str,
        organization_number: str | None = None,
        customer_number: int | None = None,
    ) -> Customer:
        customer = Customer(
            customer_id=customer_id,
            name=name,
            organization_number=organization_number,
            customer_number=customer_number,
        )
        session.add(customer)
        await session.commit()
        return customer

    return _make


def auth_headers(user: User, **kwargs) -> dict[str, str]:
    """Bearer header carrying a freshly issued session for ``user``."""
    return {"Authorization": f"Bearer {create_session_token(user, **kwargs)}"}


@pytest.fixture
def headers_for():
    return auth_headers
