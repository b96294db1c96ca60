from uuid import uuid4

import pytest
from sqlalchemy import select

from brewpoints_api.models.loyalty import LedgerEvent, Referral, ReferralStatus
from brewpoints_api.models.notification import Notification, NotificationKindEnum
from brewpoints_api.services.loyalty import (
    DuplicateReferralError,
    InvalidAmountError,
    InvalidReferralError,
    NotFoundError,
    PointsLedger,
    ReferralService,
)


@pytest.mark.asyncio
async def test_referral_pays_both_sides_once(session_factory, create_account, reset_loyalty_store) -> None:
    referrer = await create_account(session_factory, "alice@example.com")
    referee = await create_account(session_factory, "bob@example.com")

    async with session_factory() as session:
        service = ReferralService(session)
        completion = await service.complete_referral(referrer.id, referee.id, 15)
        await session.commit()

        assert completion.referral.status == ReferralStatus.COMPLETED
        assert completion.referrer_event.points == 15
        assert completion.referee_event.points == 15

        with pytest.raises(DuplicateReferralError):
            await service.complete_referral(referrer.id, referee.id, 15)
        await session.rollback()

        ledger = PointsLedger(session)
        assert await ledger.get_balance(referrer.id) == 15
        assert await ledger.get_balance(referee.id) == 15
        events = (await session.execute(select(LedgerEvent))).scalars().all()
        assert len(events) == 2

    snapshot = reset_loyalty_store.snapshot()
    assert snapshot.referrals["completed"] == 1
    assert snapshot.referrals["duplicate"] == 1


@pytest.mark.asyncio
async def test_referral_validation(session_factory, create_account) -> None:
    member = await create_account(session_factory, "solo@example.com")
    friend = await create_account(session_factory, "pal@example.com")

    async with session_factory() as session:
        service = ReferralService(session)
        with pytest.raises(InvalidReferralError):
            await service.complete_referral(member.id, member.id, 10)
        with pytest.raises(InvalidAmountError):
            await service.complete_referral(member.id, friend.id, 0)
        with pytest.raises(InvalidAmountError):
            await service.complete_referral(member.id, friend.id, 10, referee_bonus_points=-2)
        with pytest.raises(NotFoundError):
            await service.complete_referral(member.id, uuid4(), 10)

        referrals = (await session.execute(select(Referral))).scalars().all()
        assert referrals == []


@pytest.mark.asyncio
async def test_invite_is_completed_when_friend_joins(session_factory, create_account) -> None:
    referrer = await create_account(session_factory, "host@example.com")

    async with session_factory() as session:
        service = ReferralService(session)
        invite = await service.create_invite(referrer.id, "  Newbie@Example.com ")
        await session.commit()
        invite_id = invite.id
        assert invite.status == ReferralStatus.PENDING
        assert invite.referee_email == "newbie@example.com"

        with pytest.raises(DuplicateReferralError):
            await service.create_invite(referrer.id, "newbie@example.com")
        with pytest.raises(InvalidReferralError):
            await service.create_invite(referrer.id, "host@example.com")
        with pytest.raises(InvalidReferralError):
            await service.create_invite(referrer.id, "not-an-email")
        await session.rollback()

    newcomer = await create_account(session_factory, "newbie@example.com")

    async with session_factory() as session:
        service = ReferralService(session)
        completion = await service.complete_referral(referrer.id, newcomer.id, 50, referee_bonus_points=25)
        await session.commit()

        assert completion.referral.id == invite_id
        assert completion.referral.referee_id == newcomer.id
        assert completion.referral.completed_at is not None

        ledger = PointsLedger(session)
        assert await ledger.get_balance(referrer.id) == 50
        assert await ledger.get_balance(newcomer.id) == 25

        referrals = await service.list_referrals(referrer.id)
        assert len(referrals) == 1
        assert referrals[0].status == ReferralStatus.COMPLETED

        notifications = (
            await session.execute(select(Notification).where(Notification.account_id == referrer.id))
        ).scalars().all()
        assert [item.kind for item in notifications] == [NotificationKindEnum.REFERRAL]
