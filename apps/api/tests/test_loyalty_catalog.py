from uuid import uuid4

import pytest

from brewpoints_api.models.loyalty import LoyaltySetting, MembershipTier
from brewpoints_api.services.loyalty import (
    RANK_THRESHOLDS_KEY,
    CatalogService,
    InvalidAmountError,
    NotFoundError,
    TierConfigService,
    TierThresholds,
)


@pytest.mark.asyncio
async def test_reward_catalog_crud(session_factory) -> None:
    async with session_factory() as session:
        catalog = CatalogService(session)
        drip = await catalog.create_reward(name="Drip Coffee", points_required=100)
        beans = await catalog.create_reward(
            name="House Beans",
            points_required=600,
            membership_required=MembershipTier.GOLD,
            inventory=5,
        )
        await session.commit()

        updated = await catalog.update_reward(beans.id, {"inventory": 3, "active": False, "unknown": "ignored"})
        await session.commit()
        assert updated.inventory == 3
        assert updated.active is False

        active = await catalog.list_rewards()
        assert [reward.id for reward in active] == [drip.id]
        everything = await catalog.list_rewards(active_only=False)
        assert {reward.id for reward in everything} == {drip.id, beans.id}


@pytest.mark.asyncio
async def test_reward_catalog_validation(session_factory) -> None:
    async with session_factory() as session:
        catalog = CatalogService(session)
        with pytest.raises(InvalidAmountError):
            await catalog.create_reward(name="Free", points_required=0)
        with pytest.raises(InvalidAmountError):
            await catalog.create_reward(name="Negative Stock", points_required=10, inventory=-1)

        reward = await catalog.create_reward(name="Tea", points_required=40)
        with pytest.raises(InvalidAmountError):
            await catalog.update_reward(reward.id, {"points_required": -5})
        with pytest.raises(NotFoundError):
            await catalog.get_reward(uuid4())


@pytest.mark.asyncio
async def test_goal_catalog_crud(session_factory) -> None:
    async with session_factory() as session:
        catalog = CatalogService(session)
        goal = await catalog.create_goal(name="Community Garden", target_points=1000)
        await session.commit()
        assert goal.current_points == 0

        await catalog.update_goal(goal.id, {"active": False, "target_points": 1500})
        await session.commit()

        assert await catalog.list_goals() == []
        stored = await catalog.get_goal(goal.id)
        assert stored.target_points == 1500

        with pytest.raises(InvalidAmountError):
            await catalog.create_goal(name="Nothing", target_points=0)
        with pytest.raises(NotFoundError):
            await catalog.get_goal(uuid4())


@pytest.mark.asyncio
async def test_tier_threshold_override_round_trip(session_factory) -> None:
    async with session_factory() as session:
        config = TierConfigService(session)
        assert await config.get_thresholds() == TierThresholds(silver_at=200, gold_at=550)

        await config.update_thresholds(TierThresholds(silver_at=150, gold_at=400))
        await session.commit()
        assert await config.get_thresholds() == TierThresholds(silver_at=150, gold_at=400)

        await config.update_thresholds(TierThresholds(silver_at=180, gold_at=450))
        await session.commit()
        assert await config.get_thresholds() == TierThresholds(silver_at=180, gold_at=450)


@pytest.mark.asyncio
async def test_malformed_threshold_override_falls_back_to_defaults(session_factory) -> None:
    async with session_factory() as session:
        session.add(LoyaltySetting(key=RANK_THRESHOLDS_KEY, value={"silver_at": 900, "gold_at": 100}))
        await session.commit()

        thresholds = await TierConfigService(session).get_thresholds()
        assert thresholds == TierThresholds()
