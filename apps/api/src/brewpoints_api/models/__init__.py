"""SQLAlchemy models package."""

# Import all models
from .loyalty import (  # noqa: F401
    CommunityGoal,
    LedgerAuditNote,
    LedgerEvent,
    LedgerEventKind,
    LoyaltyAccount,
    LoyaltySetting,
    MembershipTier,
    RedemptionRequest,
    RedemptionStatus,
    Referral,
    ReferralStatus,
    Reward,
)
from .notification import Notification, NotificationKindEnum, NotificationStatusEnum  # noqa: F401
