"""Loyalty ledger, redemption, referral and community goal models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from brewpoints_api.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum: type[Enum]) -> list[str]:
    return [member.value for member in enum]


class MembershipTier(str, Enum):
    """Membership tiers ordered from lowest to highest."""

    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


class LedgerEventKind(str, Enum):
    """Kinds of point-affecting ledger events."""

    EARN = "earn"
    REDEEM = "redeem"
    ADJUSTMENT = "adjustment"


class RedemptionStatus(str, Enum):
    """Redemption lifecycle; redeemed and expired are terminal."""

    PENDING = "pending"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class ReferralStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class LoyaltyAccount(Base):
    """Customer loyalty account holding the authoritative point balance."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        CheckConstraint("current_points >= 0", name="current_points_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    membership_tier = Column(
        SqlEnum(MembershipTier, name="loyalty_membership_tier", values_callable=_enum_values),
        nullable=False,
        default=MembershipTier.BRONZE,
        server_default=MembershipTier.BRONZE.value,
    )
    visits = Column(Integer, nullable=False, default=0, server_default="0")
    ledger_version = Column(Integer, nullable=False, default=0, server_default="0")
    birthday = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    ledger_events = relationship(
        "LedgerEvent",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    redemptions = relationship(
        "RedemptionRequest",
        back_populates="account",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    audit_notes = relationship(
        "LedgerAuditNote",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class LedgerEvent(Base):
    """Immutable record of a point-affecting action."""

    __tablename__ = "loyalty_ledger_events"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uq_loyalty_ledger_events_account_sequence"),
        Index("ix_loyalty_ledger_events_account_created", "account_id", "created_at"),
        Index("ix_loyalty_ledger_events_redemption", "redemption_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence = Column(Integer, nullable=False)
    kind = Column(SqlEnum(LedgerEventKind, name="loyalty_ledger_event_kind", values_callable=_enum_values), nullable=False)
    points = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    reward_id = Column(UUID(as_uuid=True), nullable=True)
    goal_id = Column(UUID(as_uuid=True), nullable=True)
    redemption_id = Column(UUID(as_uuid=True), nullable=True)
    note = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    account = relationship("LoyaltyAccount", back_populates="ledger_events")

    @property
    def signed_points(self) -> int:
        """Balance delta this event applied."""

        if self.kind == LedgerEventKind.REDEEM:
            return -int(self.points)
        return int(self.points)


class LedgerAuditNote(Base):
    """Best-effort audit trail attached to settled redemptions."""

    __tablename__ = "loyalty_ledger_audit_notes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    ledger_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_ledger_events.id", ondelete="CASCADE"),
        nullable=True,
    )
    redemption_id = Column(UUID(as_uuid=True), nullable=True)
    note = Column(Text, nullable=False)
    actor = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class Reward(Base):
    """Catalog entry that members exchange points for."""

    __tablename__ = "loyalty_rewards"
    __table_args__ = (
        CheckConstraint("points_required > 0", name="points_required_positive"),
        CheckConstraint("inventory IS NULL OR inventory >= 0", name="inventory_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    points_required = Column(Integer, nullable=False)
    membership_required = Column(
        SqlEnum(MembershipTier, name="loyalty_membership_tier", values_callable=_enum_values),
        nullable=True,
    )
    inventory = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    image_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    redemptions = relationship("RedemptionRequest", back_populates="reward")


class RedemptionRequest(Base):
    """One attempt to exchange points for a reward."""

    __tablename__ = "loyalty_redemptions"
    __table_args__ = (
        Index("ix_loyalty_redemptions_account_status", "account_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    account_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    reward_id = Column(UUID(as_uuid=True), ForeignKey("loyalty_rewards.id"), nullable=False)
    points_spent = Column(Integer, nullable=False)
    status = Column(
        SqlEnum(RedemptionStatus, name="loyalty_redemption_status", values_callable=_enum_values),
        nullable=False,
        default=RedemptionStatus.PENDING,
        server_default=RedemptionStatus.PENDING.value,
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    fulfilled_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    account = relationship("LoyaltyAccount", back_populates="redemptions")
    reward = relationship("Reward", back_populates="redemptions")


class Referral(Base):
    """Referral of a new customer by an existing member."""

    __tablename__ = "loyalty_referrals"
    __table_args__ = (
        UniqueConstraint("referrer_id", "referee_id", name="uq_loyalty_referrals_pair"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    referrer_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    referee_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loyalty_accounts.id", ondelete="SET NULL"),
        nullable=True,
    )
    referee_email = Column(String, nullable=True, index=True)
    status = Column(
        SqlEnum(ReferralStatus, name="loyalty_referral_status", values_callable=_enum_values),
        nullable=False,
        default=ReferralStatus.PENDING,
        server_default=ReferralStatus.PENDING.value,
    )
    bonus_points = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class CommunityGoal(Base):
    """Shared point pool members contribute towards."""

    __tablename__ = "loyalty_community_goals"
    __table_args__ = (
        CheckConstraint("target_points > 0", name="target_points_positive"),
        CheckConstraint("current_points >= 0", name="goal_points_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    target_points = Column(Integer, nullable=False)
    current_points = Column(Integer, nullable=False, default=0, server_default="0")
    active = Column(Boolean, nullable=False, default=True, server_default="true")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class LoyaltySetting(Base):
    """Operator-managed loyalty configuration rows."""

    __tablename__ = "loyalty_settings"

    key = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
