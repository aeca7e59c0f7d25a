"""create users, provider accounts, customers, grants and login events

Revision ID: 3f1a9c2d7b40
Revises: 
Create Date: 2026-10-17 09:12:44.218903

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2d7b40'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

global_role = sa.Enum("CUSTOMER", "SUPER_ADMIN", name="globalrole")
company_role = sa.Enum("ADMIN", "USER", name="companyrole")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", global_role, nullable=False),
        sa.Column("address_street", sa.String(255), nullable=True),
        sa.Column("address_postal_code", sa.String(16), nullable=True),
        sa.Column("address_region", sa.String(255), nullable=True),
        sa.Column("accepted_terms", sa.Boolean(), nullable=False),
        sa.Column("accepted_terms_version", sa.String(32), nullable=True),
        sa.Column("accepted_terms_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_phone", "users", ["phone"], unique=True)
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "customers",
        sa.Column("customer_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("organization_number", sa.String(32), nullable=True),
        sa.Column("customer_number", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_customers_name", "customers", ["name"])
    op.create_index("ix_customers_organization_number", "customers", ["organization_number"])

    op.create_table(
        "provider_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("provider", sa.String(64), nullable=False),
        sa.Column("provider_account_id", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("id_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.Integer(), nullable=True),
        sa.Column("token_type", sa.String(32), nullable=True),
        sa.Column("scope", sa.Text(), nullable=True),
        sa.Column("session_state", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("provider", "provider_account_id", name="uq_provider_account"),
    )
    op.create_index("ix_provider_accounts_user_id", "provider_accounts", ["user_id"])

    op.create_table(
        "user_customer_accesses",
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
        ),
        sa.Column(
            "customer_id",
            sa.Integer(),
            sa.ForeignKey("customers.customer_id"),
            primary_key=True,
        ),
        sa.Column("role", company_role, nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_user_customer_accesses_customer_id", "user_customer_accesses", ["customer_id"]
    )

    op.create_table(
        "user_login_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "user_id", sa.Uuid(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("provider", sa.String(64), nullable=True),
        sa.Column("logged_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_user_login_events_user_id", "user_login_events", ["user_id"])
    op.create_index("ix_user_login_events_logged_at", "user_login_events", ["logged_at"])


def downgrade() -> None:
    op.drop_table("user_login_events")
    op.drop_table("user_customer_accesses")
    op.drop_table("provider_accounts")
    op.drop_table("customers")
    op.drop_table("users")
    company_role.drop(op.get_bind(), checkfirst=True)
    global_role.drop(op.get_bind(), checkfirst=True)
