"""V1 API router aggregation."""

from fastapi import APIRouter

from portal.api.v1.agreements import router as agreements_router
from portal.api.v1.auth import router as auth_router
from portal.api.v1.companies import router as companies_router
from portal.api.v1.customers import router as customers_router
from portal.api.v1.login_events import router as login_events_router
from portal.api.v1.machines import router as machines_router
from portal.api.v1.onboarding import router as onboarding_router
from portal.api.v1.profile import router as profile_router
from portal.api.v1.users import router as users_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(auth_router)
v1_router.include_router(onboarding_router)
v1_router.include_router(users_router)
v1_router.include_router(customers_router)
v1_router.include_router(companies_router)
v1_router.include_router(agreements_router)
v1_router.include_router(machines_router)
v1_router.include_router(profile_router)
v1_router.include_router(login_events_router)
