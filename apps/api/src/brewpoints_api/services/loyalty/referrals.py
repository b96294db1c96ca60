"""Referral invites and completion bonuses."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import LedgerEvent, LedgerEventKind, Referral, ReferralStatus
from brewpoints_api.models.notification import NotificationKindEnum
from brewpoints_api.observability.loyalty import get_loyalty_store
from brewpoints_api.services.notifications import NotificationService

from .errors import DuplicateReferralError, InvalidReferralError
from .ledger import PointsLedger, validate_points


@dataclass(slots=True)
class ReferralCompletion:
    referral: Referral
    referrer_event: LedgerEvent
    referee_event: LedgerEvent


def _normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


class ReferralService:
    """Issues referral invites and pays both sides once per pair."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        ledger: PointsLedger | None = None,
        notification_service: NotificationService | None = None,
    ) -> None:
        self._db = db_session
        self._ledger = ledger or PointsLedger(db_session)
        self._notifications = notification_service or NotificationService(db_session)
        self._store = get_loyalty_store()

    async def create_invite(
        self,
        referrer_id: UUID,
        referee_email: str,
        bonus_points: int | None = None,
    ) -> Referral:
        """Record a pending invite for a friend who has not joined yet."""

        email = _normalize_email(referee_email)
        if "@" not in email:
            raise InvalidReferralError("A valid referee email is required")
        points = validate_points(
            LedgerEventKind.EARN,
            settings.referral_default_bonus_points if bonus_points is None else bonus_points,
        )

        referrer = await self._ledger.get_account(referrer_id)
        if _normalize_email(referrer.email) == email:
            raise InvalidReferralError("Members cannot refer themselves")

        existing = await self._db.execute(
            select(Referral.id).where(
                Referral.referrer_id == referrer_id,
                func.lower(Referral.referee_email) == email,
            )
        )
        if existing.first() is not None:
            raise DuplicateReferralError(f"{email} has already been referred")

        referral = Referral(
            referrer_id=referrer_id,
            referee_email=email,
            bonus_points=points,
            status=ReferralStatus.PENDING,
        )
        self._db.add(referral)
        await self._db.flush()
        self._store.record_referral_event("invited")
        logger.info("Issued referral invite", referral_id=str(referral.id), referrer_id=str(referrer_id))
        return referral

    async def list_referrals(self, referrer_id: UUID) -> list[Referral]:
        result = await self._db.execute(
            select(Referral)
            .where(Referral.referrer_id == referrer_id)
            .order_by(Referral.created_at.desc())
        )
        return list(result.scalars().all())

    async def complete_referral(
        self,
        referrer_id: UUID,
        referee_id: UUID,
        bonus_points: int,
        referee_bonus_points: int | None = None,
    ) -> ReferralCompletion:
        """Mark the pair's referral completed and pay both bonuses.

        A pair can only ever be paid once; a repeat call raises
        ``DuplicateReferralError`` before any ledger event is written.
        """

        if referrer_id == referee_id:
            raise InvalidReferralError("Members cannot refer themselves")
        referrer_points = validate_points(LedgerEventKind.EARN, bonus_points)
        referee_points = validate_points(
            LedgerEventKind.EARN,
            referrer_points if referee_bonus_points is None else referee_bonus_points,
        )

        await self._ledger.get_account(referrer_id)
        referee = await self._ledger.get_account(referee_id)

        referral = await self._claim(referrer_id, referee_id, referee.email, referrer_points)

        referrer_event = await self._ledger.append_event(
            referrer_id,
            LedgerEventKind.EARN,
            referrer_points,
            note="Referral bonus",
            metadata={"referral_id": str(referral.id), "role": "referrer"},
        )
        referee_event = await self._ledger.append_event(
            referee_id,
            LedgerEventKind.EARN,
            referee_points,
            note="Referral welcome bonus",
            metadata={"referral_id": str(referral.id), "role": "referee"},
        )

        self._store.record_referral_event("completed")
        logger.info(
            "Referral completed",
            referral_id=str(referral.id),
            referrer_id=str(referrer_id),
            referee_id=str(referee_id),
            bonus_points=referrer_points,
        )
        await self._notifications.notify(
            referrer_id,
            "Referral bonus earned",
            f"Your friend joined! {referrer_points} points have been added to your balance.",
            kind=NotificationKindEnum.REFERRAL,
            metadata={"referral_id": str(referral.id)},
        )
        return ReferralCompletion(referral=referral, referrer_event=referrer_event, referee_event=referee_event)

    async def _claim(
        self,
        referrer_id: UUID,
        referee_id: UUID,
        referee_email: str | None,
        bonus_points: int,
    ) -> Referral:
        existing = await self._db.execute(
            select(Referral.id).where(
                Referral.referrer_id == referrer_id,
                Referral.referee_id == referee_id,
            )
        )
        if existing.first() is not None:
            self._store.record_referral_event("duplicate")
            raise DuplicateReferralError(f"Referral {referrer_id} -> {referee_id} already completed")

        now = datetime.now(timezone.utc)
        try:
            invite = await self._find_pending_invite(referrer_id, referee_email)
            if invite is not None:
                result = await self._db.execute(
                    update(Referral)
                    .where(Referral.id == invite, Referral.status == ReferralStatus.PENDING)
                    .values(
                        status=ReferralStatus.COMPLETED,
                        referee_id=referee_id,
                        bonus_points=bonus_points,
                        completed_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise DuplicateReferralError(f"Referral invite {invite} was already completed")
                referral = await self._db.get(Referral, invite, populate_existing=True)
            else:
                referral = Referral(
                    referrer_id=referrer_id,
                    referee_id=referee_id,
                    referee_email=_normalize_email(referee_email) or None,
                    bonus_points=bonus_points,
                    status=ReferralStatus.COMPLETED,
                    completed_at=now,
                )
                self._db.add(referral)
                await self._db.flush()
        except IntegrityError as exc:
            self._store.record_referral_event("duplicate")
            raise DuplicateReferralError(f"Referral {referrer_id} -> {referee_id} already completed") from exc
        except DuplicateReferralError:
            self._store.record_referral_event("duplicate")
            raise
        return referral

    async def _find_pending_invite(self, referrer_id: UUID, referee_email: str | None) -> UUID | None:
        email = _normalize_email(referee_email)
        if not email:
            return None
        result = await self._db.execute(
            select(Referral.id)
            .where(
                Referral.referrer_id == referrer_id,
                Referral.status == ReferralStatus.PENDING,
                Referral.referee_id.is_(None),
                func.lower(Referral.referee_email) == email,
            )
            .order_by(Referral.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()


__all__ = ["ReferralCompletion", "ReferralService"]
