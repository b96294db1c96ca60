import pytest
from sqlalchemy import select

from brewpoints_api.models.loyalty import LoyaltyAccount
from brewpoints_api.models.notification import Notification, NotificationKindEnum, NotificationStatusEnum
from brewpoints_api.services.notifications import InMemoryEmailBackend, NotificationService


class _BrokenBackend:
    async def send_email(self, recipient, subject, body_text, *, body_html=None) -> None:
        raise ConnectionError("smtp relay unreachable")


@pytest.mark.asyncio
async def test_notify_persists_and_emails(session_factory, create_account) -> None:
    account = await create_account(session_factory, "mail@example.com", display_name="Robin")
    backend = InMemoryEmailBackend()

    async with session_factory() as session:
        service = NotificationService(session, backend=backend)
        notification = await service.notify(
            account.id,
            "Reward ready",
            "Your latte is waiting at the counter.",
            kind=NotificationKindEnum.REDEMPTION,
            metadata={"redemption_id": "abc"},
        )
        await session.commit()

        assert notification is not None
        assert notification.status == NotificationStatusEnum.SENT
        assert notification.sent_at is not None

    assert len(backend.sent_messages) == 1
    message = backend.sent_messages[0]
    assert message["To"] == "mail@example.com"
    assert message["Subject"] == "Reward ready"
    assert "Hi Robin," in message.get_body(preferencelist=("plain",)).get_content()

    assert service.sent_events[0].kind == "redemption"
    assert service.sent_events[0].metadata == {"redemption_id": "abc"}


@pytest.mark.asyncio
async def test_email_failure_marks_notification_failed(session_factory, create_account, reset_loyalty_store) -> None:
    account = await create_account(session_factory, "bounce@example.com")

    async with session_factory() as session:
        notification = await NotificationService(session, backend=_BrokenBackend()).notify(
            account.id,
            "Points added",
            "You earned 10 points.",
            kind=NotificationKindEnum.POINTS,
        )
        await session.commit()

        assert notification.status == NotificationStatusEnum.FAILED
        assert "unreachable" in notification.error

    assert reset_loyalty_store.snapshot().notifications["failed"] == 1


@pytest.mark.asyncio
async def test_notify_never_breaks_the_callers_transaction(session_factory, reset_loyalty_store) -> None:
    async with session_factory() as session:
        account = LoyaltyAccount(email="sturdy@example.com")
        session.add(account)
        await session.flush()

        result = await NotificationService(session).notify(
            account.id,
            None,  # violates NOT NULL on title
            "Body",
            kind=NotificationKindEnum.POINTS,
        )
        await session.commit()

        assert result is None
        stored = (await session.execute(select(LoyaltyAccount).where(LoyaltyAccount.email == "sturdy@example.com")))
        assert stored.scalar_one_or_none() is not None
        assert (await session.execute(select(Notification))).scalars().all() == []

    assert reset_loyalty_store.snapshot().notifications["failed"] == 1


@pytest.mark.asyncio
async def test_unread_listing_and_mark_read(session_factory, create_account) -> None:
    account = await create_account(session_factory, "reader@example.com")
    other = await create_account(session_factory, "other@example.com")

    async with session_factory() as session:
        service = NotificationService(session)
        first = await service.notify(account.id, "One", "First", kind=NotificationKindEnum.POINTS)
        await service.notify(account.id, "Two", "Second", kind=NotificationKindEnum.GOAL)
        await session.commit()

        assert await service.mark_read(other.id, first.id) is False
        assert await service.mark_read(account.id, first.id) is True
        assert await service.mark_read(account.id, first.id) is False
        await session.commit()

        unread = await service.list_for_account(account.id, unread_only=True)
        assert [item.title for item in unread] == ["Two"]
        everything = await service.list_for_account(account.id)
        assert len(everything) == 2
