from datetime import date, datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from brewpoints_api.models.loyalty import LedgerEventKind, MembershipTier, RedemptionStatus, ReferralStatus
from brewpoints_api.models.notification import NotificationKindEnum, NotificationStatusEnum

# meta: schema: loyalty-ledger


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class AccountResponse(_Schema):
    id: UUID
    email: str
    display_name: str | None = Field(None, alias="displayName")
    current_points: int = Field(..., alias="currentPoints")
    membership_tier: MembershipTier = Field(..., alias="membershipTier")
    visits: int
    birthday: date | None = None
    next_tier: MembershipTier | None = Field(None, alias="nextTier")
    points_to_next_tier: int | None = Field(None, alias="pointsToNextTier")


class AccountCreate(_Schema):
    email: str = Field(..., min_length=3)
    display_name: str | None = Field(None, alias="displayName")
    birthday: date | None = None


class LedgerEventResponse(_Schema):
    id: UUID
    account_id: UUID = Field(..., alias="accountId")
    sequence: int
    kind: LedgerEventKind
    points: int
    balance_after: int = Field(..., alias="balanceAfter")
    reward_id: UUID | None = Field(None, alias="rewardId")
    goal_id: UUID | None = Field(None, alias="goalId")
    redemption_id: UUID | None = Field(None, alias="redemptionId")
    note: str | None = None
    metadata: dict = Field(
        default_factory=dict,
        alias="metadata",
        validation_alias=AliasChoices("metadata_json", "metadata"),
    )
    created_at: datetime = Field(..., alias="createdAt")


class LedgerWindowResponse(_Schema):
    events: list[LedgerEventResponse]
    next_cursor: str | None = Field(None, alias="nextCursor")


class LedgerEventCreate(_Schema):
    """Admin ledger entry; ``purchase_amount`` converts a spend into earned points."""

    kind: LedgerEventKind
    points: int | None = None
    purchase_amount: float | None = Field(None, alias="purchaseAmount", gt=0)
    note: str | None = None
    reward_id: UUID | None = Field(None, alias="rewardId")
    goal_id: UUID | None = Field(None, alias="goalId")

    @model_validator(mode="after")
    def _check_amount(self) -> "LedgerEventCreate":
        if (self.points is None) == (self.purchase_amount is None):
            raise ValueError("Provide exactly one of points or purchaseAmount")
        if self.purchase_amount is not None and self.kind != LedgerEventKind.EARN:
            raise ValueError("purchaseAmount is only valid for earn events")
        return self


class ActionAwardResponse(_Schema):
    event: LedgerEventResponse
    account: AccountResponse


class ReconciliationResponse(_Schema):
    account_id: UUID = Field(..., alias="accountId")
    stored_balance: int = Field(..., alias="storedBalance")
    ledger_balance: int = Field(..., alias="ledgerBalance")
    event_count: int = Field(..., alias="eventCount")
    is_consistent: bool = Field(..., alias="isConsistent")


class DowngradeCheckResponse(_Schema):
    would_downgrade: bool = Field(..., alias="wouldDowngrade")
    current_tier: MembershipTier = Field(..., alias="currentTier")
    new_tier: MembershipTier = Field(..., alias="newTier")
    current_points: int = Field(..., alias="currentPoints")
    points_to_redeem: int = Field(..., alias="pointsToRedeem")


class TierThresholdsPayload(_Schema):
    silver_at: int = Field(..., alias="silverAt", gt=0)
    gold_at: int = Field(..., alias="goldAt", gt=0)

    @model_validator(mode="after")
    def _check_order(self) -> "TierThresholdsPayload":
        if self.silver_at >= self.gold_at:
            raise ValueError("silverAt must be lower than goldAt")
        return self


class RewardResponse(_Schema):
    id: UUID
    name: str
    description: str | None = None
    points_required: int = Field(..., alias="pointsRequired")
    membership_required: MembershipTier | None = Field(None, alias="membershipRequired")
    inventory: int | None = None
    active: bool
    image_url: str | None = Field(None, alias="imageUrl")


class RewardCreate(_Schema):
    name: str = Field(..., min_length=1)
    description: str | None = None
    points_required: int = Field(..., alias="pointsRequired", gt=0)
    membership_required: MembershipTier | None = Field(None, alias="membershipRequired")
    inventory: int | None = Field(None, ge=0)
    active: bool = True
    image_url: str | None = Field(None, alias="imageUrl")


class RewardUpdate(_Schema):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    points_required: int | None = Field(None, alias="pointsRequired", gt=0)
    membership_required: MembershipTier | None = Field(None, alias="membershipRequired")
    inventory: int | None = Field(None, ge=0)
    active: bool | None = None
    image_url: str | None = Field(None, alias="imageUrl")


class RedemptionCreate(_Schema):
    reward_id: UUID = Field(..., alias="rewardId")


class RedemptionResponse(_Schema):
    id: UUID
    account_id: UUID = Field(..., alias="accountId")
    reward_id: UUID = Field(..., alias="rewardId")
    points_spent: int = Field(..., alias="pointsSpent")
    status: RedemptionStatus
    created_at: datetime = Field(..., alias="createdAt")
    fulfilled_at: datetime | None = Field(None, alias="fulfilledAt")
    resolved_at: datetime | None = Field(None, alias="resolvedAt")
    failure_reason: str | None = Field(None, alias="failureReason")
    rejection_reason: str | None = Field(None, alias="rejectionReason")


class RedemptionWindowResponse(_Schema):
    redemptions: list[RedemptionResponse]
    next_cursor: str | None = Field(None, alias="nextCursor")


class RedemptionApprove(_Schema):
    actor: str | None = None


class RedemptionReject(_Schema):
    reason: str | None = None


class SettlementResponse(_Schema):
    redemption: RedemptionResponse
    ledger_event: LedgerEventResponse | None = Field(None, alias="ledgerEvent")
    audit_note_recorded: bool = Field(False, alias="auditNoteRecorded")


class ReferralInviteCreate(_Schema):
    referee_email: str = Field(..., alias="refereeEmail")


class ReferralComplete(_Schema):
    referrer_id: UUID = Field(..., alias="referrerId")
    referee_id: UUID = Field(..., alias="refereeId")
    bonus_points: int = Field(..., alias="bonusPoints")
    referee_bonus_points: int | None = Field(None, alias="refereeBonusPoints")


class ReferralResponse(_Schema):
    id: UUID
    referrer_id: UUID = Field(..., alias="referrerId")
    referee_id: UUID | None = Field(None, alias="refereeId")
    referee_email: str | None = Field(None, alias="refereeEmail")
    status: ReferralStatus
    bonus_points: int = Field(..., alias="bonusPoints")
    created_at: datetime = Field(..., alias="createdAt")
    completed_at: datetime | None = Field(None, alias="completedAt")


class GoalResponse(_Schema):
    id: UUID
    name: str
    description: str | None = None
    target_points: int = Field(..., alias="targetPoints")
    current_points: int = Field(..., alias="currentPoints")
    active: bool
    expires_at: datetime | None = Field(None, alias="expiresAt")


class GoalCreate(_Schema):
    name: str = Field(..., min_length=1)
    description: str | None = None
    target_points: int = Field(..., alias="targetPoints", gt=0)
    expires_at: datetime | None = Field(None, alias="expiresAt")
    active: bool = True


class GoalUpdate(_Schema):
    name: str | None = Field(None, min_length=1)
    description: str | None = None
    target_points: int | None = Field(None, alias="targetPoints", gt=0)
    expires_at: datetime | None = Field(None, alias="expiresAt")
    active: bool | None = None


class GoalContributionCreate(_Schema):
    points: int


class GoalContributionResponse(_Schema):
    goal: GoalResponse
    ledger_event: LedgerEventResponse = Field(..., alias="ledgerEvent")
    goal_reached: bool = Field(..., alias="goalReached")


class NotificationResponse(_Schema):
    id: UUID
    kind: NotificationKindEnum
    title: str
    message: str
    status: NotificationStatusEnum
    created_at: datetime = Field(..., alias="createdAt")
    read_at: datetime | None = Field(None, alias="readAt")
