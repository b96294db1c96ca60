"""Seed development loyalty accounts, rewards and a community goal."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import CommunityGoal, LoyaltyAccount, MembershipTier, Reward


class SeedAccount(TypedDict):
    email: str
    display_name: str


class SeedReward(TypedDict):
    name: str
    points_required: int
    membership_required: MembershipTier | None
    inventory: int | None


DEV_ACCOUNTS: list[SeedAccount] = [
    {
        "email": os.getenv("DEV_MEMBER_EMAIL", "member@brewpoints.dev").lower(),
        "display_name": "Member QA",
    },
    {
        "email": os.getenv("DEV_FRIEND_EMAIL", "friend@brewpoints.dev").lower(),
        "display_name": "Friend QA",
    },
]

DEV_REWARDS: list[SeedReward] = [
    {"name": "Free Drip Coffee", "points_required": 100, "membership_required": None, "inventory": None},
    {"name": "Pastry of the Day", "points_required": 150, "membership_required": None, "inventory": 40},
    {"name": "Signature Latte", "points_required": 250, "membership_required": MembershipTier.SILVER, "inventory": None},
    {"name": "Bag of House Beans", "points_required": 600, "membership_required": MembershipTier.GOLD, "inventory": 10},
]


async def seed(session: AsyncSession) -> None:
    for account in DEV_ACCOUNTS:
        with session.no_autoflush:
            existing = await session.execute(select(LoyaltyAccount).where(LoyaltyAccount.email == account["email"]))
        record = existing.scalar_one_or_none()
        if record:
            record.display_name = account["display_name"]
        else:
            session.add(LoyaltyAccount(email=account["email"], display_name=account["display_name"]))

    for reward in DEV_REWARDS:
        existing = await session.execute(select(Reward).where(Reward.name == reward["name"]))
        record = existing.scalar_one_or_none()
        if record:
            record.points_required = reward["points_required"]
            record.membership_required = reward["membership_required"]
        else:
            session.add(Reward(**reward))

    existing_goal = await session.execute(select(CommunityGoal).where(CommunityGoal.name == "Neighbourhood Espresso Machine"))
    if existing_goal.scalar_one_or_none() is None:
        session.add(
            CommunityGoal(
                name="Neighbourhood Espresso Machine",
                description="Pool points to fund an espresso machine for the community centre.",
                target_points=5000,
            )
        )
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed(session)
        print("Development loyalty data ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
