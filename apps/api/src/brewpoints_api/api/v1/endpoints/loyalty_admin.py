"""Back-office endpoints for ledger corrections, settlement and catalog upkeep."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.api.dependencies.security import require_admin_api_key
from brewpoints_api.db.session import get_session
from brewpoints_api.models.loyalty import LoyaltyAccount
from brewpoints_api.schemas.loyalty import (
    AccountCreate,
    AccountResponse,
    GoalCreate,
    GoalResponse,
    GoalUpdate,
    LedgerEventCreate,
    LedgerEventResponse,
    ReconciliationResponse,
    RedemptionApprove,
    RedemptionReject,
    RedemptionResponse,
    ReferralComplete,
    ReferralResponse,
    RewardCreate,
    RewardResponse,
    RewardUpdate,
    SettlementResponse,
    TierThresholdsPayload,
)
from brewpoints_api.services.loyalty import (
    CatalogService,
    LoyaltyError,
    PointsLedger,
    ReferralService,
    SettlementResult,
    SettlementService,
    TierConfigService,
    TierThresholds,
    points_for_purchase,
)

from .loyalty import loyalty_http_error, serialize_account


router = APIRouter(
    prefix="/loyalty/admin",
    tags=["loyalty-admin"],
    dependencies=[Depends(require_admin_api_key)],
)


def _serialize_settlement(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        redemption=RedemptionResponse.model_validate(result.redemption),
        ledger_event=LedgerEventResponse.model_validate(result.ledger_event) if result.ledger_event else None,
        audit_note_recorded=result.audit_note_recorded,
    )


@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def create_account(
    payload: AccountCreate,
    db: AsyncSession = Depends(get_session),
) -> AccountResponse:
    """Open a loyalty account for a customer created by the identity layer."""

    email = payload.email.strip().lower()
    existing = await db.execute(select(LoyaltyAccount.id).where(func.lower(LoyaltyAccount.email) == email))
    if existing.first() is not None:
        raise HTTPException(status_code=409, detail="Loyalty account already exists for this email")

    account = LoyaltyAccount(email=email, display_name=payload.display_name, birthday=payload.birthday)
    db.add(account)
    await db.commit()
    await db.refresh(account)
    logger.info("Created loyalty account", account_id=str(account.id))
    ledger = PointsLedger(db)
    return serialize_account(account, await ledger.thresholds())


@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(account_id: UUID, db: AsyncSession = Depends(get_session)) -> AccountResponse:
    ledger = PointsLedger(db)
    try:
        account = await ledger.get_account(account_id)
    except LoyaltyError as exc:
        raise loyalty_http_error(exc) from exc
    await ledger.sync_tier(account)
    await db.commit()
    return serialize_account(account, await ledger.thresholds())


@router.post(
    "/accounts/{account_id}/events",
    response_model=LedgerEventResponse,
    status_code=status.HTTP_201_CREATED,
)
async def append_account_event(
    account_id: UUID,
    payload: LedgerEventCreate,
    db: AsyncSession = Depends(get_session),
) -> LedgerEventResponse:
    """Append an earn, redeem or adjustment event on behalf of an operator."""

    ledger = PointsLedger(db)
    try:
        points = payload.points
        metadata: dict[str, object] = {"source": "admin"}
        if payload.purchase_amount is not None:
            points = points_for_purchase(payload.purchase_amount)
            metadata["purchase_amount"] = payload.purchase_amount
        event = await ledger.append_event(
            account_id,
            payload.kind,
            points,
            reward_id=payload.reward_id,
            goal_id=payload.goal_id,
            note=payload.note,
            metadata=metadata,
        )
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    return LedgerEventResponse.model_validate(event)


@router.get("/accounts/{account_id}/reconciliation", response_model=ReconciliationResponse)
async def reconcile_account(account_id: UUID, db: AsyncSession = Depends(get_session)) -> ReconciliationResponse:
    try:
        report = await PointsLedger(db).reconcile(account_id)
    except LoyaltyError as exc:
        raise loyalty_http_error(exc) from exc
    return ReconciliationResponse(
        account_id=report.account_id,
        stored_balance=report.stored_balance,
        ledger_balance=report.ledger_balance,
        event_count=report.event_count,
        is_consistent=report.is_consistent,
    )


@router.get("/redemptions/pending", response_model=list[RedemptionResponse])
async def list_pending_redemptions(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
) -> list[RedemptionResponse]:
    redemptions = await SettlementService(db).list_pending(limit)
    return [RedemptionResponse.model_validate(item) for item in redemptions]


@router.post("/redemptions/{redemption_id}/approve", response_model=SettlementResponse)
async def approve_redemption(
    redemption_id: UUID,
    payload: RedemptionApprove | None = None,
    db: AsyncSession = Depends(get_session),
) -> SettlementResponse:
    """Approve a pending redemption and deduct its points.

    A failed settlement is committed too, so the request is left pending
    with its failure reason for a retry or a rejection.
    """

    try:
        result = await SettlementService(db).approve(redemption_id, actor=payload.actor if payload else None)
    except LoyaltyError as exc:
        await db.commit()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    return _serialize_settlement(result)


@router.post("/redemptions/{redemption_id}/reject", response_model=SettlementResponse)
async def reject_redemption(
    redemption_id: UUID,
    payload: RedemptionReject | None = None,
    db: AsyncSession = Depends(get_session),
) -> SettlementResponse:
    try:
        result = await SettlementService(db).reject(redemption_id, reason=payload.reason if payload else None)
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    return _serialize_settlement(result)


@router.post("/referrals/complete", response_model=ReferralResponse)
async def complete_referral(
    payload: ReferralComplete,
    db: AsyncSession = Depends(get_session),
) -> ReferralResponse:
    try:
        completion = await ReferralService(db).complete_referral(
            payload.referrer_id,
            payload.referee_id,
            payload.bonus_points,
            payload.referee_bonus_points,
        )
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(completion.referral)
    return ReferralResponse.model_validate(completion.referral)


@router.get("/rewards", response_model=list[RewardResponse])
async def list_all_rewards(
    active_only: bool = Query(False, alias="activeOnly"),
    db: AsyncSession = Depends(get_session),
) -> list[RewardResponse]:
    rewards = await CatalogService(db).list_rewards(active_only=active_only)
    return [RewardResponse.model_validate(reward) for reward in rewards]


@router.post("/rewards", response_model=RewardResponse, status_code=status.HTTP_201_CREATED)
async def create_reward(payload: RewardCreate, db: AsyncSession = Depends(get_session)) -> RewardResponse:
    try:
        reward = await CatalogService(db).create_reward(
            name=payload.name,
            description=payload.description,
            points_required=payload.points_required,
            membership_required=payload.membership_required,
            inventory=payload.inventory,
            active=payload.active,
            image_url=payload.image_url,
        )
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(reward)
    return RewardResponse.model_validate(reward)


@router.patch("/rewards/{reward_id}", response_model=RewardResponse)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdate,
    db: AsyncSession = Depends(get_session),
) -> RewardResponse:
    try:
        reward = await CatalogService(db).update_reward(reward_id, payload.model_dump(exclude_unset=True))
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(reward)
    return RewardResponse.model_validate(reward)


@router.get("/goals", response_model=list[GoalResponse])
async def list_all_goals(
    active_only: bool = Query(False, alias="activeOnly"),
    db: AsyncSession = Depends(get_session),
) -> list[GoalResponse]:
    goals = await CatalogService(db).list_goals(active_only=active_only)
    return [GoalResponse.model_validate(goal) for goal in goals]


@router.post("/goals", response_model=GoalResponse, status_code=status.HTTP_201_CREATED)
async def create_goal(payload: GoalCreate, db: AsyncSession = Depends(get_session)) -> GoalResponse:
    try:
        goal = await CatalogService(db).create_goal(
            name=payload.name,
            description=payload.description,
            target_points=payload.target_points,
            expires_at=payload.expires_at,
            active=payload.active,
        )
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(goal)
    return GoalResponse.model_validate(goal)


@router.patch("/goals/{goal_id}", response_model=GoalResponse)
async def update_goal(
    goal_id: UUID,
    payload: GoalUpdate,
    db: AsyncSession = Depends(get_session),
) -> GoalResponse:
    try:
        goal = await CatalogService(db).update_goal(goal_id, payload.model_dump(exclude_unset=True))
    except LoyaltyError as exc:
        await db.rollback()
        raise loyalty_http_error(exc) from exc
    await db.commit()
    await db.refresh(goal)
    return GoalResponse.model_validate(goal)


@router.get("/tier-thresholds", response_model=TierThresholdsPayload)
async def get_tier_thresholds(db: AsyncSession = Depends(get_session)) -> TierThresholdsPayload:
    thresholds = await TierConfigService(db).get_thresholds()
    return TierThresholdsPayload(silver_at=thresholds.silver_at, gold_at=thresholds.gold_at)


@router.put("/tier-thresholds", response_model=TierThresholdsPayload)
async def update_tier_thresholds(
    payload: TierThresholdsPayload,
    db: AsyncSession = Depends(get_session),
) -> TierThresholdsPayload:
    """Persist new thresholds; stored tiers catch up lazily on the next read or write."""

    thresholds = await TierConfigService(db).update_thresholds(
        TierThresholds(silver_at=payload.silver_at, gold_at=payload.gold_at)
    )
    await db.commit()
    return TierThresholdsPayload(silver_at=thresholds.silver_at, gold_at=thresholds.gold_at)
