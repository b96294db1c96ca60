"""Create loyalty ledger, redemption, referral, goal and notification tables."""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


membership_tier = postgresql.ENUM("bronze", "silver", "gold", name="loyalty_membership_tier", create_type=False)
ledger_event_kind = postgresql.ENUM("earn", "redeem", "adjustment", name="loyalty_ledger_event_kind", create_type=False)
redemption_status = postgresql.ENUM("pending", "redeemed", "expired", name="loyalty_redemption_status", create_type=False)
referral_status = postgresql.ENUM("pending", "completed", name="loyalty_referral_status", create_type=False)
notification_kind = postgresql.ENUM(
    "redemption", "points", "referral", "goal", "birthday", name="notification_kind_enum", create_type=False
)
notification_status = postgresql.ENUM("pending", "sent", "failed", name="notification_status_enum", create_type=False)

_ENUMS = (
    membership_tier,
    ledger_event_kind,
    redemption_status,
    referral_status,
    notification_kind,
    notification_status,
)


def upgrade() -> None:
    bind = op.get_bind()
    for enum in _ENUMS:
        postgresql.ENUM(*enum.enums, name=enum.name).create(bind, checkfirst=True)

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("membership_tier", membership_tier, nullable=False, server_default="bronze"),
        sa.Column("visits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ledger_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("birthday", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("current_points >= 0", name="ck_loyalty_accounts_current_points_non_negative"),
        sa.UniqueConstraint("email", name="uq_loyalty_accounts_email"),
    )
    op.create_index("ix_loyalty_accounts_email", "loyalty_accounts", ["email"])

    op.create_table(
        "loyalty_ledger_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("kind", ledger_event_kind, nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reward_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("goal_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("redemption_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("account_id", "sequence", name="uq_loyalty_ledger_events_account_sequence"),
    )
    op.create_index(
        "ix_loyalty_ledger_events_account_created",
        "loyalty_ledger_events",
        ["account_id", "created_at"],
    )
    op.create_index("ix_loyalty_ledger_events_redemption", "loyalty_ledger_events", ["redemption_id"])

    op.create_table(
        "loyalty_ledger_audit_notes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "ledger_event_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_ledger_events.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("redemption_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("membership_required", membership_tier, nullable=True),
        sa.Column("inventory", sa.Integer(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("points_required > 0", name="ck_loyalty_rewards_points_required_positive"),
        sa.CheckConstraint("inventory IS NULL OR inventory >= 0", name="ck_loyalty_rewards_inventory_non_negative"),
    )

    op.create_table(
        "loyalty_redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reward_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("loyalty_rewards.id"), nullable=False),
        sa.Column("points_spent", sa.Integer(), nullable=False),
        sa.Column("status", redemption_status, nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fulfilled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
    )
    op.create_index("ix_loyalty_redemptions_account_status", "loyalty_redemptions", ["account_id", "status"])

    op.create_table(
        "loyalty_referrals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "referrer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "referee_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("referee_email", sa.String(), nullable=True),
        sa.Column("status", referral_status, nullable=False, server_default="pending"),
        sa.Column("bonus_points", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("referrer_id", "referee_id", name="uq_loyalty_referrals_pair"),
    )
    op.create_index("ix_loyalty_referrals_referee_email", "loyalty_referrals", ["referee_email"])

    op.create_table(
        "loyalty_community_goals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("target_points", sa.Integer(), nullable=False),
        sa.Column("current_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("target_points > 0", name="ck_loyalty_community_goals_target_points_positive"),
        sa.CheckConstraint("current_points >= 0", name="ck_loyalty_community_goals_goal_points_non_negative"),
    )

    op.create_table(
        "loyalty_settings",
        sa.Column("key", sa.String(), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "notifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "account_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", notification_kind, nullable=False),
        sa.Column("status", notification_status, nullable=False, server_default="pending"),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_account_id", "notifications", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_notifications_account_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("loyalty_settings")
    op.drop_table("loyalty_community_goals")
    op.drop_index("ix_loyalty_referrals_referee_email", table_name="loyalty_referrals")
    op.drop_table("loyalty_referrals")
    op.drop_index("ix_loyalty_redemptions_account_status", table_name="loyalty_redemptions")
    op.drop_table("loyalty_redemptions")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_ledger_audit_notes")
    op.drop_index("ix_loyalty_ledger_events_redemption", table_name="loyalty_ledger_events")
    op.drop_index("ix_loyalty_ledger_events_account_created", table_name="loyalty_ledger_events")
    op.drop_table("loyalty_ledger_events")
    op.drop_index("ix_loyalty_accounts_email", table_name="loyalty_accounts")
    op.drop_table("loyalty_accounts")

    bind = op.get_bind()
    for enum in reversed(_ENUMS):
        postgresql.ENUM(*enum.enums, name=enum.name).drop(bind, checkfirst=True)
