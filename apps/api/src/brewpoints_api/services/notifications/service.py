"""Fire-and-forget notification sink for loyalty events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import get_settings
from brewpoints_api.models.loyalty import LoyaltyAccount
from brewpoints_api.models.notification import (
    Notification,
    NotificationKindEnum,
    NotificationStatusEnum,
)
from brewpoints_api.observability.loyalty import get_loyalty_store

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .templates import render_account_notification


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    account_id: UUID
    recipient: str | None
    title: str
    message: str
    kind: str
    metadata: dict[str, Any]


class NotificationService:
    """Persists in-app notifications and optionally emails them."""

    def __init__(
        self,
        db_session: AsyncSession,
        backend: Optional[EmailBackend] = None,
    ) -> None:
        self._db = db_session
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []
        self._store = get_loyalty_store()

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return self._events

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        """Replace backend with in-memory implementation (useful for tests)."""
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def notify(
        self,
        account_id: UUID,
        title: str,
        message: str,
        *,
        kind: NotificationKindEnum,
        metadata: dict[str, Any] | None = None,
    ) -> Notification | None:
        """Record a notification for the account; never raises.

        The row is written inside a savepoint so a failed insert leaves the
        caller's transaction untouched.
        """

        try:
            async with self._db.begin_nested():
                notification = Notification(
                    account_id=account_id,
                    kind=kind,
                    title=title,
                    message=message,
                    status=NotificationStatusEnum.PENDING,
                )
                self._db.add(notification)
                await self._db.flush()
        except SQLAlchemyError as exc:
            self._store.record_notification("failed")
            logger.warning(
                "Failed to record loyalty notification",
                account_id=str(account_id),
                kind=kind.value,
                error=str(exc),
            )
            return None

        await self._deliver(notification, metadata or {})
        return notification

    async def list_for_account(
        self,
        account_id: UUID,
        *,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(Notification)
            .where(Notification.account_id == account_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(bounded_limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(self, account_id: UUID, notification_id: UUID) -> bool:
        result = await self._db.execute(
            update(Notification)
            .where(
                Notification.id == notification_id,
                Notification.account_id == account_id,
                Notification.read_at.is_(None),
            )
            .values(read_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _build_default_backend(self) -> Optional[EmailBackend]:
        return SMTPEmailBackend.from_settings(get_settings())

    async def _deliver(self, notification: Notification, metadata: dict[str, Any]) -> None:
        """Send using active backend and record emitted event."""

        recipient: str | None = None
        status = NotificationStatusEnum.SENT
        error: str | None = None
        if self._backend is not None:
            account = await self._db.get(LoyaltyAccount, notification.account_id)
            recipient = account.email if account else None
            if recipient:
                template = render_account_notification(
                    title=notification.title,
                    message=notification.message,
                    contact_name=account.display_name,
                )
                try:
                    await self._backend.send_email(
                        recipient,
                        template.subject,
                        template.text_body,
                        body_html=template.html_body,
                    )
                except Exception as exc:
                    status = NotificationStatusEnum.FAILED
                    error = str(exc)
                    logger.warning(
                        "Failed to email loyalty notification",
                        notification_id=str(notification.id),
                        error=error,
                    )

        notification.status = status
        notification.error = error
        notification.sent_at = datetime.now(timezone.utc) if status == NotificationStatusEnum.SENT else None
        self._store.record_notification(status.value)
        self._events.append(
            NotificationEvent(
                account_id=notification.account_id,
                recipient=recipient,
                title=notification.title,
                message=notification.message,
                kind=notification.kind.value,
                metadata=metadata,
            )
        )
