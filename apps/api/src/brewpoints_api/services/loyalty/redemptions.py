"""Member-facing redemption requests."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import RedemptionRequest, RedemptionStatus, Reward
from brewpoints_api.models.notification import NotificationKindEnum
from brewpoints_api.services.notifications import NotificationService

from .errors import (
    DuplicateRedemptionError,
    InsufficientBalanceError,
    NotFoundError,
    RewardUnavailableError,
    TierGateNotMetError,
)
from .ledger import PointsLedger
from .tiers import meets_tier_gate


class RedemptionService:
    """Creates pending redemption requests without touching the balance.

    Points are only deducted when an admin approves the request, so a
    rejected request never needs a refund.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        notification_service: NotificationService | None = None,
        block_duplicate_pending: bool | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._notifications = notification_service or NotificationService(db_session)
        self._block_duplicates = (
            settings.redemption_block_duplicate_pending
            if block_duplicate_pending is None
            else block_duplicate_pending
        )

    async def request_redemption(self, account_id: UUID, reward_id: UUID) -> RedemptionRequest:
        """Queue a pending redemption after checking every precondition."""

        reward = await self._db.get(Reward, reward_id)
        if reward is None:
            raise NotFoundError("Reward", reward_id)
        if not reward.active:
            raise RewardUnavailableError(f"Reward {reward.name} is not active")
        if reward.inventory is not None and reward.inventory <= 0:
            raise RewardUnavailableError(f"Reward {reward.name} is out of stock")

        account = await self._ledger.get_account(account_id)
        await self._ledger.sync_tier(account)
        if not meets_tier_gate(account.membership_tier, reward.membership_required):
            raise TierGateNotMetError(account.membership_tier.value, reward.membership_required.value)

        if self._block_duplicates and await self._has_pending(account_id, reward_id):
            raise DuplicateRedemptionError(f"A redemption for {reward.name} is already pending")

        balance = int(account.current_points or 0)
        if balance < reward.points_required:
            raise InsufficientBalanceError(balance, reward.points_required)

        redemption = RedemptionRequest(
            account_id=account_id,
            reward_id=reward_id,
            points_spent=reward.points_required,
            status=RedemptionStatus.PENDING,
        )
        self._db.add(redemption)
        await self._db.flush()
        logger.info(
            "Requested loyalty redemption",
            redemption_id=str(redemption.id),
            account_id=str(account_id),
            reward_id=str(reward_id),
            points=redemption.points_spent,
        )

        await self._notifications.notify(
            account_id,
            "Redemption requested",
            f"Your request for {reward.name} ({reward.points_required} points) is awaiting confirmation.",
            kind=NotificationKindEnum.REDEMPTION,
            metadata={"redemption_id": str(redemption.id)},
        )
        return redemption

    async def _has_pending(self, account_id: UUID, reward_id: UUID) -> bool:
        result = await self._db.execute(
            select(RedemptionRequest.id)
            .where(
                RedemptionRequest.account_id == account_id,
                RedemptionRequest.reward_id == reward_id,
                RedemptionRequest.status == RedemptionStatus.PENDING,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_redemption(self, redemption_id: UUID) -> RedemptionRequest:
        redemption = await self._db.get(RedemptionRequest, redemption_id)
        if redemption is None:
            raise NotFoundError("Redemption", redemption_id)
        return redemption

    async def list_account_redemptions(
        self,
        account_id: UUID,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
        statuses: Sequence[RedemptionStatus] | None = None,
    ) -> tuple[list[RedemptionRequest], Tuple[datetime, UUID] | None]:
        """Return a paginated slice of redemptions for an account."""

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(RedemptionRequest)
            .where(RedemptionRequest.account_id == account_id)
            .order_by(RedemptionRequest.created_at.desc(), RedemptionRequest.id.desc())
        )
        if statuses:
            stmt = stmt.where(RedemptionRequest.status.in_(list(statuses)))
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    RedemptionRequest.created_at < cursor_time,
                    and_(
                        RedemptionRequest.created_at == cursor_time,
                        RedemptionRequest.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.limit(bounded_limit + 1)
        result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > bounded_limit
        redemptions = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if has_more and redemptions:
            tail = redemptions[-1]
            next_cursor = (tail.created_at, tail.id)
        return redemptions, next_cursor


__all__ = ["RedemptionService"]
