"""Loyalty service exports."""

from .catalog import CatalogService  # noqa: F401
from .config import RANK_THRESHOLDS_KEY, TierConfigService, default_thresholds  # noqa: F401
from .errors import (  # noqa: F401
    AlreadyProcessedError,
    BalanceConflictError,
    DuplicateRedemptionError,
    DuplicateReferralError,
    GoalExpiredOrInactiveError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidReferralError,
    LoyaltyError,
    NotFoundError,
    PartialFailureError,
    RewardUnavailableError,
    TierGateNotMetError,
)
from .goals import GoalContribution, GoalContributionService, goal_is_open  # noqa: F401
from .ledger import (  # noqa: F401
    EARN_ACTIONS,
    EarnAction,
    LedgerReconciliation,
    PointsLedger,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
    points_for_purchase,
)
from .redemptions import RedemptionService  # noqa: F401
from .referrals import ReferralCompletion, ReferralService  # noqa: F401
from .settlement import SettlementResult, SettlementService  # noqa: F401
from .tiers import (  # noqa: F401
    DowngradeCheck,
    TierProgress,
    TierThresholds,
    meets_tier_gate,
    tier_of,
    tier_progress,
    would_downgrade,
)
