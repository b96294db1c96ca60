import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from brewpoints_api.app import create_app  # noqa: E402
from brewpoints_api.db.base import Base  # noqa: E402
from brewpoints_api.db.session import get_session  # noqa: E402
from brewpoints_api.models.loyalty import (  # noqa: E402
    CommunityGoal,
    LedgerEventKind,
    LoyaltyAccount,
    MembershipTier,
    Reward,
)
from brewpoints_api.observability.loyalty import get_loyalty_store  # noqa: E402
from brewpoints_api.services.loyalty import PointsLedger  # noqa: E402


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    store = get_loyalty_store()
    store.reset()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file database so each session gets its own connection."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'brewpoints.db'}", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def create_account():
    """Return a coroutine that commits an account seeded with ``points`` earned points."""

    async def _create(session_factory, email: str, points: int = 0, **fields) -> LoyaltyAccount:
        async with session_factory() as session:
            account = LoyaltyAccount(email=email, **fields)
            session.add(account)
            await session.flush()
            if points:
                await PointsLedger(session).append_event(account.id, LedgerEventKind.EARN, points, note="Seed points")
            await session.commit()
            await session.refresh(account)
            return account

    return _create


@pytest.fixture
def create_reward():
    async def _create(
        session_factory,
        name: str = "Free Drip Coffee",
        points_required: int = 100,
        *,
        membership_required: MembershipTier | None = None,
        inventory: int | None = None,
        active: bool = True,
    ) -> Reward:
        async with session_factory() as session:
            reward = Reward(
                name=name,
                points_required=points_required,
                membership_required=membership_required,
                inventory=inventory,
                active=active,
            )
            session.add(reward)
            await session.commit()
            await session.refresh(reward)
            return reward

    return _create


@pytest.fixture
def create_goal():
    async def _create(session_factory, name: str = "Espresso Machine", target_points: int = 100, **fields) -> CommunityGoal:
        async with session_factory() as session:
            goal = CommunityGoal(name=name, target_points=target_points, current_points=0, **fields)
            session.add(goal)
            await session.commit()
            await session.refresh(goal)
            return goal

    return _create
