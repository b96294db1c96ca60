"""Community goal contributions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import CommunityGoal, LedgerEvent, LedgerEventKind
from brewpoints_api.models.notification import NotificationKindEnum
from brewpoints_api.observability.loyalty import get_loyalty_store
from brewpoints_api.services.notifications import NotificationService

from .errors import GoalExpiredOrInactiveError, NotFoundError, PartialFailureError
from .ledger import PointsLedger, validate_points


@dataclass(slots=True)
class GoalContribution:
    goal: CommunityGoal
    ledger_event: LedgerEvent

    @property
    def goal_reached(self) -> bool:
        return self.goal.current_points >= self.goal.target_points


def _ensure_aware(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def goal_is_open(goal: CommunityGoal, now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    expires_at = _ensure_aware(goal.expires_at)
    return bool(goal.active) and (expires_at is None or expires_at > now)


class GoalContributionService:
    """Moves points from an account into a shared community goal.

    The deduction and the goal increment run in one transaction. If the
    increment still fails after the deduction landed, the points are
    refunded with an adjustment event; when no refund can be made the
    caller gets ``PartialFailureError`` instead of a plain failure.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        notification_service: NotificationService | None = None,
        auto_refund: bool | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._notifications = notification_service or NotificationService(db_session)
        self._auto_refund = settings.goal_contribution_auto_refund if auto_refund is None else auto_refund
        self._store = get_loyalty_store()

    async def contribute_to_goal(self, account_id: UUID, goal_id: UUID, points: int) -> GoalContribution:
        amount = validate_points(LedgerEventKind.REDEEM, points)
        goal = await self._db.get(CommunityGoal, goal_id)
        if goal is None:
            raise NotFoundError("Community goal", goal_id)
        if not goal_is_open(goal):
            raise GoalExpiredOrInactiveError(f"Community goal {goal.name} is not accepting contributions")

        event = await self._ledger.append_event(
            account_id,
            LedgerEventKind.REDEEM,
            amount,
            goal_id=goal_id,
            note="Community goal contribution",
        )

        event_id = event.id
        try:
            async with self._db.begin_nested():
                await self._increment_goal(goal_id, amount)
        except Exception as exc:
            await self._handle_increment_failure(account_id, goal_id, amount, event_id, exc)
            raise

        await self._db.refresh(goal)
        self._store.record_goal_event("contributed")
        logger.info(
            "Contributed to community goal",
            account_id=str(account_id),
            goal_id=str(goal_id),
            points=amount,
            goal_points=goal.current_points,
        )
        contribution = GoalContribution(goal=goal, ledger_event=event)
        if contribution.goal_reached and goal.current_points - amount < goal.target_points:
            self._store.record_goal_event("reached")
            logger.info("Community goal reached", goal_id=str(goal_id), target=goal.target_points)
        await self._notifications.notify(
            account_id,
            "Thanks for contributing",
            f"You added {amount} points to {goal.name}.",
            kind=NotificationKindEnum.GOAL,
            metadata={"goal_id": str(goal_id)},
        )
        return contribution

    async def _increment_goal(self, goal_id: UUID, amount: int) -> None:
        now = datetime.now(timezone.utc)
        result = await self._db.execute(
            update(CommunityGoal)
            .where(
                CommunityGoal.id == goal_id,
                CommunityGoal.active.is_(True),
                or_(CommunityGoal.expires_at.is_(None), CommunityGoal.expires_at > now),
            )
            .values(current_points=CommunityGoal.current_points + amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise GoalExpiredOrInactiveError(f"Community goal {goal_id} closed before the contribution landed")

    async def _handle_increment_failure(
        self,
        account_id: UUID,
        goal_id: UUID,
        amount: int,
        event_id: UUID,
        exc: Exception,
    ) -> None:
        """Refund the deduction or escalate to a partial failure."""

        if not self._auto_refund:
            self._store.record_goal_event("partial_failure")
            logger.error(
                "Goal increment failed after deduction; refund disabled",
                account_id=str(account_id),
                goal_id=str(goal_id),
                ledger_event_id=str(event_id),
                error=str(exc),
            )
            raise PartialFailureError(
                "Points were deducted but the goal was not credited",
                ledger_event_id=event_id,
                cause=exc,
            ) from exc

        try:
            async with self._db.begin_nested():
                await self._ledger.append_event(
                    account_id,
                    LedgerEventKind.ADJUSTMENT,
                    amount,
                    goal_id=goal_id,
                    note="Refund for failed community goal contribution",
                    metadata={"refund_of": str(event_id)},
                )
        except Exception as refund_exc:
            self._store.record_goal_event("partial_failure")
            logger.error(
                "Goal contribution refund failed",
                account_id=str(account_id),
                goal_id=str(goal_id),
                ledger_event_id=str(event_id),
                error=str(refund_exc),
            )
            raise PartialFailureError(
                "Points were deducted, the goal was not credited and the refund failed",
                ledger_event_id=event_id,
                cause=exc,
            ) from refund_exc

        self._store.record_goal_event("refunded")
        self._store.record_compensation("goal_refund")
        logger.warning(
            "Refunded goal contribution after failed increment",
            account_id=str(account_id),
            goal_id=str(goal_id),
            ledger_event_id=str(event_id),
            error=str(exc),
        )


__all__ = ["GoalContribution", "GoalContributionService", "goal_is_open"]
