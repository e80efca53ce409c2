"""Initial schema: accounts, referral ledger, agent payouts, billing history

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Adds tables for:
- accounts: Homeowner, contractor and agent accounts with cached credits
- referral_relationships: One row per referee, credit or commission kind
- agent_payouts: At most one commission payout per agent referral
- billing_history_events: Append-only billing cycle audit trail
- processed_webhook_events: Webhook idempotency
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLAlchemy stores enum member names
role_enum = sa.Enum("HOMEOWNER", "CONTRACTOR", "AGENT", name="role")
subscription_status_enum = sa.Enum(
    "TRIALING", "ACTIVE", "PAST_DUE", "CANCELED", "GRANDFATHERED", name="subscriptionstatus"
)
reward_kind_enum = sa.Enum("CREDIT", "COMMISSION", name="rewardkind")
referral_status_enum = sa.Enum("TRIAL", "ACTIVE", "ELIGIBLE", "PAID", "VOIDED", name="referralstatus")
payout_status_enum = sa.Enum("PENDING", "PROCESSING", "PAID", "FAILED", name="payoutstatus")
billing_status_enum = sa.Enum("PAID", "FAILED", "VOIDED", name="billingeventstatus")


def upgrade() -> None:
    """Create HomeBase referral tables."""

    # Accounts table
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("role", role_enum, nullable=False),
        sa.Column("subscription_status", subscription_status_enum, nullable=False),
        sa.Column("subscription_tier_name", sa.String(50), nullable=False),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("max_houses_allowed", sa.Integer(), nullable=True),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("current_credits", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("payout_account_id", sa.String(255), nullable=True),
        sa.Column("signup_fingerprint", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
    op.create_index("ix_accounts_referral_code", "accounts", ["referral_code"], unique=True)
    op.create_index("ix_accounts_stripe_customer_id", "accounts", ["stripe_customer_id"], unique=True)
    op.create_index("ix_accounts_signup_fingerprint", "accounts", ["signup_fingerprint"], unique=False)

    # Referral relationships (one per referee)
    op.create_table(
        "referral_relationships",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referrer_id", sa.Integer(), nullable=False),
        sa.Column("referee_id", sa.Integer(), nullable=False),
        sa.Column("kind", reward_kind_enum, nullable=False),
        sa.Column("status", referral_status_enum, nullable=False),
        sa.Column("consecutive_months_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_cycle_period_start", sa.DateTime(), nullable=True),
        sa.Column("voided_at", sa.DateTime(), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("signup_date", sa.DateTime(), nullable=False),
        sa.Column("trial_end_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referrer_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["referee_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referee_id"),
    )
    op.create_index(
        "ix_referral_relationships_referrer_id", "referral_relationships", ["referrer_id"], unique=False
    )

    # Agent payouts (at most one per relationship)
    op.create_table(
        "agent_payouts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("referral_relationship_id", sa.Integer(), nullable=False),
        sa.Column("agent_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", payout_status_enum, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transfer_reference", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["referral_relationship_id"], ["referral_relationships.id"]),
        sa.ForeignKeyConstraint(["agent_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("referral_relationship_id"),
    )
    op.create_index("ix_agent_payouts_agent_id", "agent_payouts", ["agent_id"], unique=False)

    # Billing history (append-only)
    op.create_table(
        "billing_history_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.String(255), nullable=True),
        sa.Column("period_start", sa.DateTime(), nullable=False),
        sa.Column("period_end", sa.DateTime(), nullable=False),
        sa.Column("status", billing_status_enum, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id"),
    )
    op.create_index(
        "ix_billing_history_events_account_id", "billing_history_events", ["account_id"], unique=False
    )

    # Processed webhook events (idempotency)
    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_processed_webhook_events_event_id", "processed_webhook_events", ["event_id"], unique=True
    )


def downgrade() -> None:
    """Drop HomeBase referral tables."""
    op.drop_index("ix_processed_webhook_events_event_id", table_name="processed_webhook_events")
    op.drop_table("processed_webhook_events")

    op.drop_index("ix_billing_history_events_account_id", table_name="billing_history_events")
    op.drop_table("billing_history_events")

    op.drop_index("ix_agent_payouts_agent_id", table_name="agent_payouts")
    op.drop_table("agent_payouts")

    op.drop_index("ix_referral_relationships_referrer_id", table_name="referral_relationships")
    op.drop_table("referral_relationships")

    op.drop_index("ix_accounts_signup_fingerprint", table_name="accounts")
    op.drop_index("ix_accounts_stripe_customer_id", table_name="accounts")
    op.drop_index("ix_accounts_referral_code", table_name="accounts")
    op.drop_index("ix_accounts_email", table_name="accounts")
    op.drop_table("accounts")

    for enum in (
        billing_status_enum,
        payout_status_enum,
        referral_status_enum,
        reward_kind_enum,
        subscription_status_enum,
        role_enum,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
