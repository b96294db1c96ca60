"""Tests for loyalty housekeeping jobs."""

import datetime as dt

import pytest
from sqlalchemy import select, update

from brewpoints_api.jobs.loyalty import award_birthday_bonuses, reconcile_ledgers
from brewpoints_api.models.loyalty import LedgerEvent, LoyaltyAccount
from brewpoints_api.models.notification import Notification, NotificationKindEnum
from brewpoints_api.services.loyalty import PointsLedger


@pytest.mark.asyncio
async def test_birthday_bonus_is_awarded_once_per_year(session_factory, create_account) -> None:
    celebrant = await create_account(session_factory, "cake@example.com", birthday=dt.date(1990, 6, 1))
    await create_account(session_factory, "later@example.com", birthday=dt.date(1990, 9, 12))
    await create_account(session_factory, "unknown@example.com")
    today = dt.date(2026, 6, 1)

    summary = await award_birthday_bonuses(session_factory=session_factory, today=today, bonus_points=20)
    assert summary["candidates"] == 1
    assert summary["awarded"] == 1

    rerun = await award_birthday_bonuses(session_factory=session_factory, today=today, bonus_points=20)
    assert rerun["awarded"] == 0
    assert rerun["skipped"] == 1

    async with session_factory() as session:
        assert await PointsLedger(session).get_balance(celebrant.id) == 20
        event = (
            await session.execute(select(LedgerEvent).where(LedgerEvent.account_id == celebrant.id))
        ).scalar_one()
        assert event.metadata_json == {"bonus": "birthday", "year": 2026}
        notifications = (
            await session.execute(select(Notification).where(Notification.account_id == celebrant.id))
        ).scalars().all()
        assert [item.kind for item in notifications] == [NotificationKindEnum.BIRTHDAY]

    next_year = await award_birthday_bonuses(session_factory=session_factory, today=dt.date(2027, 6, 1))
    assert next_year["awarded"] == 1


@pytest.mark.asyncio
async def test_leap_day_birthdays_are_celebrated_in_common_years(session_factory, create_account) -> None:
    leapling = await create_account(session_factory, "leap@example.com", birthday=dt.date(2000, 2, 29))

    summary = await award_birthday_bonuses(
        session_factory=session_factory,
        today=dt.date(2027, 2, 28),
        bonus_points=15,
    )

    assert summary["awarded"] == 1
    async with session_factory() as session:
        assert await PointsLedger(session).get_balance(leapling.id) == 15


@pytest.mark.asyncio
async def test_reconciliation_reports_drift(session_factory, create_account) -> None:
    healthy = await create_account(session_factory, "healthy@example.com", points=40)
    drifted = await create_account(session_factory, "drifted@example.com", points=40)

    clean = await reconcile_ledgers(session_factory=session_factory)
    assert clean["accounts_checked"] == 2
    assert clean["drifted"] == []

    async with session_factory() as session:
        await session.execute(
            update(LoyaltyAccount).where(LoyaltyAccount.id == drifted.id).values(current_points=55)
        )
        await session.commit()

    summary = await reconcile_ledgers(session_factory=session_factory)
    assert summary["drifted"] == [
        {
            "account_id": str(drifted.id),
            "stored_balance": 55,
            "ledger_balance": 40,
            "drift": 15,
        }
    ]
    assert str(healthy.id) not in {entry["account_id"] for entry in summary["drifted"]}
