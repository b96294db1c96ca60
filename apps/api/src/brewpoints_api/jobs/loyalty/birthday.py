"""Daily job awarding birthday bonus points."""

from __future__ import annotations

import calendar
import datetime as dt
from typing import Any, Awaitable, Callable, Dict, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import extract, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import LedgerEvent, LedgerEventKind, LoyaltyAccount
from brewpoints_api.models.notification import NotificationKindEnum
from brewpoints_api.services.loyalty import LoyaltyError, PointsLedger
from brewpoints_api.services.notifications import NotificationService


# meta: job: loyalty-birthday-bonus

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]

BIRTHDAY_NOTE = "Birthday bonus"


def _birthday_matches(today: dt.date) -> Iterable[tuple[int, int]]:
    yield today.month, today.day
    # Leap-day birthdays are celebrated on 28 February in common years.
    if today.month == 2 and today.day == 28 and not calendar.isleap(today.year):
        yield 2, 29


async def _already_awarded(session: AsyncSession, account_id: UUID, year: int) -> bool:
    result = await session.execute(
        select(LedgerEvent.metadata_json).where(
            LedgerEvent.account_id == account_id,
            LedgerEvent.kind == LedgerEventKind.EARN,
            LedgerEvent.note == BIRTHDAY_NOTE,
        )
    )
    for metadata in result.scalars():
        if (metadata or {}).get("year") == year:
            return True
    return False


async def award_birthday_bonuses(
    *,
    session_factory: SessionFactory,
    today: dt.date | None = None,
    bonus_points: int | None = None,
) -> Dict[str, Any]:
    """Credit every account whose birthday is today, at most once per year."""

    today = today or dt.datetime.now(dt.timezone.utc).date()
    points = bonus_points or settings.birthday_bonus_points

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        conditions = [
            (extract("month", LoyaltyAccount.birthday) == month) & (extract("day", LoyaltyAccount.birthday) == day)
            for month, day in _birthday_matches(today)
        ]
        result = await managed_session.execute(
            select(LoyaltyAccount.id).where(LoyaltyAccount.birthday.is_not(None), or_(*conditions))
        )
        account_ids = list(result.scalars().all())

        awarded = 0
        skipped = 0
        failed = 0
        for account_id in account_ids:
            if await _already_awarded(managed_session, account_id, today.year):
                skipped += 1
                continue
            try:
                await PointsLedger(managed_session).append_event(
                    account_id,
                    LedgerEventKind.EARN,
                    points,
                    note=BIRTHDAY_NOTE,
                    metadata={"bonus": "birthday", "year": today.year},
                )
            except LoyaltyError as exc:
                await managed_session.rollback()
                failed += 1
                logger.warning("Birthday bonus failed", account_id=str(account_id), error=exc.message)
                continue
            await NotificationService(managed_session).notify(
                account_id,
                "Happy birthday!",
                f"We added {points} points to your account. Enjoy a treat on us.",
                kind=NotificationKindEnum.BIRTHDAY,
                metadata={"points": points},
            )
            await managed_session.commit()
            awarded += 1

        summary = {
            "date": today.isoformat(),
            "candidates": len(account_ids),
            "awarded": awarded,
            "skipped": skipped,
            "failed": failed,
        }
        logger.bind(summary=summary).info("Birthday bonuses processed")
        return summary


__all__ = ["award_birthday_bonuses", "BIRTHDAY_NOTE"]
