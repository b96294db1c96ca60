"""Admin management of rewards and community goals."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.models.loyalty import CommunityGoal, MembershipTier, Reward

from .errors import InvalidAmountError, NotFoundError

_REWARD_FIELDS = {"name", "description", "points_required", "membership_required", "inventory", "active", "image_url"}
_GOAL_FIELDS = {"name", "description", "target_points", "active", "expires_at"}


def _require_positive(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidAmountError(f"{field} must be a positive integer")
    return value


def _check_inventory(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidAmountError("inventory must be a non-negative integer or null")
    return value


class CatalogService:
    """CRUD over the reward catalog and community goals.

    Changing a reward's cost never touches the ``points_spent`` snapshot of
    redemptions that were already requested.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def list_rewards(self, *, active_only: bool = True) -> list[Reward]:
        stmt = select(Reward).order_by(Reward.points_required.asc(), Reward.name.asc())
        if active_only:
            stmt = stmt.where(Reward.active.is_(True))
        result = await self._db.execute(stmt)
        rewards = list(result.scalars().all())
        logger.debug("Fetched loyalty rewards", count=len(rewards))
        return rewards

    async def get_reward(self, reward_id: UUID) -> Reward:
        reward = await self._db.get(Reward, reward_id)
        if reward is None:
            raise NotFoundError("Reward", reward_id)
        return reward

    async def create_reward(
        self,
        *,
        name: str,
        points_required: int,
        description: str | None = None,
        membership_required: MembershipTier | None = None,
        inventory: int | None = None,
        active: bool = True,
        image_url: str | None = None,
    ) -> Reward:
        reward = Reward(
            name=name,
            description=description,
            points_required=_require_positive(points_required, "points_required"),
            membership_required=membership_required,
            inventory=_check_inventory(inventory),
            active=active,
            image_url=image_url,
        )
        self._db.add(reward)
        await self._db.flush()
        logger.info("Created loyalty reward", reward_id=str(reward.id), points_required=reward.points_required)
        return reward

    async def update_reward(self, reward_id: UUID, changes: dict[str, Any]) -> Reward:
        reward = await self.get_reward(reward_id)
        for field, value in changes.items():
            if field not in _REWARD_FIELDS:
                continue
            if field == "points_required":
                value = _require_positive(value, field)
            elif field == "inventory":
                value = _check_inventory(value)
            setattr(reward, field, value)
        await self._db.flush()
        logger.info("Updated loyalty reward", reward_id=str(reward_id), fields=sorted(changes))
        return reward

    async def list_goals(self, *, active_only: bool = True) -> list[CommunityGoal]:
        stmt = select(CommunityGoal).order_by(CommunityGoal.created_at.desc())
        if active_only:
            stmt = stmt.where(CommunityGoal.active.is_(True))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def get_goal(self, goal_id: UUID) -> CommunityGoal:
        goal = await self._db.get(CommunityGoal, goal_id)
        if goal is None:
            raise NotFoundError("Community goal", goal_id)
        return goal

    async def create_goal(
        self,
        *,
        name: str,
        target_points: int,
        description: str | None = None,
        expires_at: datetime | None = None,
        active: bool = True,
    ) -> CommunityGoal:
        goal = CommunityGoal(
            name=name,
            description=description,
            target_points=_require_positive(target_points, "target_points"),
            current_points=0,
            expires_at=expires_at,
            active=active,
        )
        self._db.add(goal)
        await self._db.flush()
        logger.info("Created community goal", goal_id=str(goal.id), target_points=goal.target_points)
        return goal

    async def update_goal(self, goal_id: UUID, changes: dict[str, Any]) -> CommunityGoal:
        goal = await self.get_goal(goal_id)
        for field, value in changes.items():
            if field not in _GOAL_FIELDS:
                continue
            if field == "target_points":
                value = _require_positive(value, field)
            setattr(goal, field, value)
        await self._db.flush()
        logger.info("Updated community goal", goal_id=str(goal_id), fields=sorted(changes))
        return goal


__all__ = ["CatalogService"]
