"""Member API endpoints for points, redemptions, referrals and goals."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.api.dependencies.session import require_member_session
from brewpoints_api.db.session import get_session
from brewpoints_api.models.loyalty import LedgerEventKind, LoyaltyAccount, RedemptionStatus
from brewpoints_api.schemas.loyalty import (
    AccountResponse,
    ActionAwardResponse,
    DowngradeCheckResponse,
    GoalContributionCreate,
    GoalContributionResponse,
    GoalResponse,
    LedgerEventResponse,
    LedgerWindowResponse,
    NotificationResponse,
    RedemptionCreate,
    RedemptionResponse,
    RedemptionWindowResponse,
    ReferralInviteCreate,
    ReferralResponse,
    RewardResponse,
)
from brewpoints_api.services.loyalty import (
    CatalogService,
    GoalContributionService,
    LoyaltyError,
    PointsLedger,
    RedemptionService,
    ReferralService,
    TierThresholds,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
    tier_progress,
    would_downgrade,
)
from brewpoints_api.services.notifications import NotificationService


router = APIRouter(prefix="/loyalty", tags=["loyalty"])


def loyalty_http_error(exc: LoyaltyError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def serialize_account(account: LoyaltyAccount, thresholds: TierThresholds) -> AccountResponse:
    progress = tier_progress(int(account.current_points or 0), thresholds)
    return AccountResponse(
        id=account.id,
        email=account.email,
        display_name=account.display_name,
        current_points=account.current_points,
        membership_tier=account.membership_tier,
        visits=account.visits,
        birthday=account.birthday,
        next_tier=progress.next_tier,
        points_to_next_tier=progress.points_to_next_tier,
    )


def _decode_cursor(cursor: str | None, label: str):
    if not cursor:
        return None
    try:
        return decode_time_uuid_cursor(cursor)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label} cursor") from exc


@router.get("/accounts/me", response_model=AccountResponse)
async def get_my_account(
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> AccountResponse:
    """Return balance and tier, repairing the stored tier if thresholds moved."""

    ledger = PointsLedger(db)
    await ledger.sync_tier(account)
    await db.commit()
    return serialize_account(account, await ledger.thresholds())


@router.get("/ledger", response_model=LedgerWindowResponse)
async def list_my_ledger(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    kinds: list[str] | None = Query(None, description="Filter ledger event kinds"),
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> LedgerWindowResponse:
    """Return the member's ledger events with pagination."""

    event_kinds: list[LedgerEventKind] | None = None
    if kinds:
        event_kinds = []
        for value in kinds:
            try:
                event_kinds.append(LedgerEventKind(value))
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=f"Unsupported ledger kind: {value}") from exc

    events, next_cursor = await PointsLedger(db).list_events(
        account.id,
        limit=limit,
        cursor=_decode_cursor(cursor, "ledger"),
        kinds=event_kinds,
    )
    return LedgerWindowResponse(
        events=[LedgerEventResponse.model_validate(event) for event in events],
        next_cursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.post(
    "/actions/{action}",
    response_model=ActionAwardResponse,
    status_code=status.HTTP_201_CREATED,
)
async def award_my_action(
    action: str,
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> ActionAwardResponse:
    """Earn points for a named in-store action such as ``cafe_visit``."""

    ledger = PointsLedger(db)
    try:
        event = await ledger.award_action(account.id, action)
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(account)
    return ActionAwardResponse(
        event=LedgerEventResponse.model_validate(event),
        account=serialize_account(account, await ledger.thresholds()),
    )


@router.get("/tier/downgrade-check", response_model=DowngradeCheckResponse)
async def check_my_downgrade(
    points: int = Query(..., ge=0, description="Points the member intends to spend"),
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> DowngradeCheckResponse:
    """Advisory check; nothing is blocked on the answer."""

    thresholds = await PointsLedger(db).thresholds()
    current_points = int(account.current_points or 0)
    check = would_downgrade(current_points, points, thresholds)
    return DowngradeCheckResponse(
        would_downgrade=check.would_downgrade,
        current_tier=check.current_tier,
        new_tier=check.new_tier,
        current_points=current_points,
        points_to_redeem=points,
    )


@router.get("/rewards", response_model=list[RewardResponse])
async def list_rewards(db: AsyncSession = Depends(get_session)) -> list[RewardResponse]:
    rewards = await CatalogService(db).list_rewards(active_only=True)
    return [RewardResponse.model_validate(reward) for reward in rewards]


@router.post(
    "/redemptions",
    response_model=RedemptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_redemption(
    payload: RedemptionCreate,
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    """Queue a redemption for admin approval; points are not deducted yet."""

    try:
        redemption = await RedemptionService(db).request_redemption(account.id, payload.reward_id)
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(redemption)
    return RedemptionResponse.model_validate(redemption)


@router.get("/redemptions", response_model=RedemptionWindowResponse)
async def list_my_redemptions(
    limit: int = Query(25, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    statuses: list[str] | None = Query(None, description="Filter redemption statuses"),
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> RedemptionWindowResponse:
    redemption_statuses: list[RedemptionStatus] | None = None
    if statuses:
        redemption_statuses = []
        for value in statuses:
            try:
                redemption_statuses.append(RedemptionStatus(value))
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=f"Unsupported redemption status: {value}") from exc

    redemptions, next_cursor = await RedemptionService(db).list_account_redemptions(
        account.id,
        limit=limit,
        cursor=_decode_cursor(cursor, "redemption"),
        statuses=redemption_statuses,
    )
    return RedemptionWindowResponse(
        redemptions=[RedemptionResponse.model_validate(item) for item in redemptions],
        next_cursor=encode_time_uuid_cursor(*next_cursor) if next_cursor else None,
    )


@router.get("/referrals", response_model=list[ReferralResponse])
async def list_my_referrals(
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[ReferralResponse]:
    referrals = await ReferralService(db).list_referrals(account.id)
    return [ReferralResponse.model_validate(referral) for referral in referrals]


@router.post(
    "/referrals",
    response_model=ReferralResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_my_referral(
    payload: ReferralInviteCreate,
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> ReferralResponse:
    """Invite a friend; bonuses are paid when the referral is completed."""

    try:
        referral = await ReferralService(db).create_invite(account.id, payload.referee_email)
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(referral)
    return ReferralResponse.model_validate(referral)


@router.get("/goals", response_model=list[GoalResponse])
async def list_goals(db: AsyncSession = Depends(get_session)) -> list[GoalResponse]:
    goals = await CatalogService(db).list_goals(active_only=True)
    return [GoalResponse.model_validate(goal) for goal in goals]


@router.post(
    "/goals/{goal_id}/contributions",
    response_model=GoalContributionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def contribute_to_goal(
    goal_id: UUID,
    payload: GoalContributionCreate,
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> GoalContributionResponse:
    """Move points into a community goal.

    Errors are committed rather than rolled back so that a refund or a
    recorded partial failure stays visible in the ledger.
    """

    try:
        contribution = await GoalContributionService(db).contribute_to_goal(account.id, goal_id, payload.points)
    except LoyaltyError as exc:
        await db.commit()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    return GoalContributionResponse(
        goal=GoalResponse.model_validate(contribution.goal),
        ledger_event=LedgerEventResponse.model_validate(contribution.ledger_event),
        goal_reached=contribution.goal_reached,
    )


@router.get("/notifications", response_model=list[NotificationResponse])
async def list_my_notifications(
    unread_only: bool = Query(False, alias="unreadOnly"),
    limit: int = Query(50, ge=1, le=100),
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> list[NotificationResponse]:
    notifications = await NotificationService(db).list_for_account(
        account.id,
        unread_only=unread_only,
        limit=limit,
    )
    return [NotificationResponse.model_validate(item) for item in notifications]


@router.post("/notifications/{notification_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_my_notification_read(
    notification_id: UUID,
    account: LoyaltyAccount = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> None:
    marked = await NotificationService(db).mark_read(account.id, notification_id)
    if not marked:
        raise HTTPException(status_code=404, detail="Notification not found or already read")
    await db.commit()
