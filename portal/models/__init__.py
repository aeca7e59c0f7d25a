"""Import all models so SQLModel.metadata picks them up."""

from portal.models.access_grant import (
    AccessGrant,
    CompanyRole,
    CustomerAccessRead,
    CustomerGrantInput,
    UserGrantInput,
    normalize_company_role,
)
from portal.models.customer import CompanyRead, Customer
from portal.models.login_event import LoginEvent, LoginEventRead, LoginEventUser
from portal.models.provider_account import ProviderAccount
from portal.models.user import (
    GlobalRole,
    User,
    UserAccessRead,
    UserCreate,
    UserRead,
    UserUpdate,
    normalize_phone,
)

__all__ = [
    "AccessGrant",
    "CompanyRead",
    "CompanyRole",
    "Customer",
    "CustomerAccessRead",
    "CustomerGrantInput",
    "GlobalRole",
    "LoginEvent",
    "LoginEventRead",
    "LoginEventUser",
    "ProviderAccount",
    "User",
    "UserAccessRead",
    "UserCreate",
    "UserGrantInput",
    "UserRead",
    "UserUpdate",
    "normalize_company_role",
    "normalize_phone",
]
