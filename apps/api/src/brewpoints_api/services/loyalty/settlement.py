"""Admin settlement of pending redemptions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.models.loyalty import (
    LedgerAuditNote,
    LedgerEvent,
    LedgerEventKind,
    RedemptionRequest,
    RedemptionStatus,
    Reward,
)
from brewpoints_api.models.notification import NotificationKindEnum
from brewpoints_api.observability.loyalty import get_loyalty_store
from brewpoints_api.observability.tracing import get_tracer
from brewpoints_api.services.notifications import NotificationService

from .errors import AlreadyProcessedError, LoyaltyError, NotFoundError, RewardUnavailableError
from .ledger import PointsLedger


@dataclass(slots=True)
class SettlementResult:
    redemption: RedemptionRequest
    ledger_event: LedgerEvent | None
    audit_note_recorded: bool = False


class SettlementService:
    """Drives pending redemptions to a terminal state.

    Approval claims the request with a conditional status update, takes a
    unit of reward inventory and appends the deduction. If either of the
    last two steps fails, the request is put back to ``pending`` with the
    failure recorded and the original error is raised again.
    """

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

    async def approve(self, redemption_id: UUID, *, actor: str | None = None) -> SettlementResult:
        """Approve a pending redemption and deduct its points exactly once."""

        redemption = await self._load(redemption_id)
        self._ensure_pending(redemption)

        account_id = redemption.account_id
        reward_id = redemption.reward_id
        points = int(redemption.points_spent)

        with get_tracer().start_as_current_span("loyalty.settlement.approve") as span:
            span.set_attribute("loyalty.redemption_id", str(redemption_id))

            now = datetime.now(timezone.utc)
            claimed = await self._transition(
                redemption_id,
                RedemptionStatus.REDEEMED,
                fulfilled_at=now,
                resolved_at=now,
                failure_reason=None,
            )
            if not claimed:
                await self._raise_already_processed(redemption_id)

            try:
                async with self._db.begin_nested():
                    await self._reserve_inventory(reward_id)
                    event = await self._ledger.append_event(
                        account_id,
                        LedgerEventKind.REDEEM,
                        points,
                        reward_id=reward_id,
                        redemption_id=redemption_id,
                        note="Reward redemption",
                    )
            except Exception as exc:
                await self._compensate(redemption_id, exc)
                raise

        audit_recorded = await self._record_audit_note(
            account_id=account_id,
            ledger_event_id=event.id,
            redemption_id=redemption_id,
            note=f"Approved redemption of {points} points for reward {reward_id}",
            actor=actor,
        )
        await self._db.refresh(redemption)
        self._store.record_settlement("approved")
        logger.info(
            "Approved loyalty redemption",
            redemption_id=str(redemption_id),
            account_id=str(account_id),
            points=points,
        )
        await self._notifications.notify(
            account_id,
            "Reward ready",
            f"Your redemption of {points} points has been approved. Enjoy!",
            kind=NotificationKindEnum.REDEMPTION,
            metadata={"redemption_id": str(redemption_id)},
        )
        return SettlementResult(redemption=redemption, ledger_event=event, audit_note_recorded=audit_recorded)

    async def reject(self, redemption_id: UUID, *, reason: str | None = None) -> SettlementResult:
        """Expire a pending redemption; no points were ever deducted for it."""

        redemption = await self._load(redemption_id)
        self._ensure_pending(redemption)

        claimed = await self._transition(
            redemption_id,
            RedemptionStatus.EXPIRED,
            resolved_at=datetime.now(timezone.utc),
            rejection_reason=reason,
        )
        if not claimed:
            await self._raise_already_processed(redemption_id)

        await self._db.refresh(redemption)
        self._store.record_settlement("rejected")
        logger.info("Rejected loyalty redemption", redemption_id=str(redemption_id), reason=reason)
        message = "Your redemption request was declined."
        if reason:
            message = f"{message} Reason: {reason}"
        await self._notifications.notify(
            redemption.account_id,
            "Redemption declined",
            message,
            kind=NotificationKindEnum.REDEMPTION,
            metadata={"redemption_id": str(redemption_id)},
        )
        return SettlementResult(redemption=redemption, ledger_event=None)

    async def list_pending(self, limit: int = 50) -> list[RedemptionRequest]:
        bounded_limit = max(1, min(limit, 200))
        result = await self._db.execute(
            select(RedemptionRequest)
            .where(RedemptionRequest.status == RedemptionStatus.PENDING)
            .order_by(RedemptionRequest.created_at.asc(), RedemptionRequest.id.asc())
            .limit(bounded_limit)
        )
        return list(result.scalars().all())

    async def _load(self, redemption_id: UUID) -> RedemptionRequest:
        result = await self._db.execute(
            select(RedemptionRequest)
            .where(RedemptionRequest.id == redemption_id)
            .execution_options(populate_existing=True)
        )
        redemption = result.scalar_one_or_none()
        if redemption is None:
            raise NotFoundError("Redemption", redemption_id)
        return redemption

    @staticmethod
    def _ensure_pending(redemption: RedemptionRequest) -> None:
        if redemption.status != RedemptionStatus.PENDING:
            raise AlreadyProcessedError(redemption.status.value)

    async def _transition(self, redemption_id: UUID, status: RedemptionStatus, **values) -> bool:
        result = await self._db.execute(
            update(RedemptionRequest)
            .where(
                RedemptionRequest.id == redemption_id,
                RedemptionRequest.status == RedemptionStatus.PENDING,
            )
            .values(status=status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _raise_already_processed(self, redemption_id: UUID) -> None:
        result = await self._db.execute(
            select(RedemptionRequest.status).where(RedemptionRequest.id == redemption_id)
        )
        status = result.scalar_one_or_none()
        self._store.record_settlement("already_processed")
        label = status.value if status is not None else "missing"
        raise AlreadyProcessedError(label)

    async def _reserve_inventory(self, reward_id: UUID) -> None:
        result = await self._db.execute(
            update(Reward)
            .where(Reward.id == reward_id, Reward.inventory.is_not(None), Reward.inventory > 0)
            .values(inventory=Reward.inventory - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        lookup = await self._db.execute(select(Reward.id, Reward.inventory).where(Reward.id == reward_id))
        row = lookup.one_or_none()
        if row is None:
            raise RewardUnavailableError(f"Reward {reward_id} no longer exists")
        if row.inventory is not None:
            raise RewardUnavailableError(f"Reward {reward_id} is out of stock")

    async def _compensate(self, redemption_id: UUID, exc: BaseException) -> None:
        reason = exc.code if isinstance(exc, LoyaltyError) else type(exc).__name__
        await self._db.execute(
            update(RedemptionRequest)
            .where(RedemptionRequest.id == redemption_id)
            .values(
                status=RedemptionStatus.PENDING,
                fulfilled_at=None,
                resolved_at=None,
                failure_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        self._store.record_settlement("failed")
        self._store.record_compensation(reason)
        logger.warning(
            "Reverted redemption to pending after failed settlement",
            redemption_id=str(redemption_id),
            reason=reason,
            error=str(exc),
        )

    async def _record_audit_note(
        self,
        *,
        account_id: UUID,
        ledger_event_id: UUID,
        redemption_id: UUID,
        note: str,
        actor: str | None,
    ) -> bool:
        try:
            async with self._db.begin_nested():
                self._db.add(
                    LedgerAuditNote(
                        account_id=account_id,
                        ledger_event_id=ledger_event_id,
                        redemption_id=redemption_id,
                        note=note,
                        actor=actor,
                    )
                )
                await self._db.flush()
        except SQLAlchemyError as exc:
            logger.warning(
                "Failed to record settlement audit note",
                redemption_id=str(redemption_id),
                error=str(exc),
            )
            return False
        return True


__all__ = ["SettlementResult", "SettlementService"]
