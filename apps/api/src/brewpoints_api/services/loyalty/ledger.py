"""Append-only points ledger with transactional balance maintenance."""

from __future__ import annotations

import base64
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Sequence, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import LedgerEvent, LedgerEventKind, LoyaltyAccount
from brewpoints_api.observability.loyalty import get_loyalty_store
from brewpoints_api.observability.tracing import get_tracer

from .config import TierConfigService
from .errors import BalanceConflictError, InsufficientBalanceError, InvalidAmountError, NotFoundError
from .tiers import TierThresholds, tier_of


@dataclass(frozen=True, slots=True)
class EarnAction:
    points: int
    description: str
    counts_visit: bool = False


EARN_ACTIONS: dict[str, EarnAction] = {
    "cafe_visit": EarnAction(10, "Cafe visit check-in", counts_visit=True),
    "drink_purchase": EarnAction(5, "Drink purchase"),
    "food_purchase": EarnAction(8, "Food purchase"),
    "friend_referral": EarnAction(50, "Successful friend referral"),
    "social_post": EarnAction(15, "Social media post about the cafe"),
    "photo_upload": EarnAction(20, "Photo contest participation"),
    "review_written": EarnAction(25, "Written review"),
    "challenge_completed": EarnAction(30, "Challenge completion"),
    "community_chat": EarnAction(2, "Community chat participation"),
    "song_request": EarnAction(5, "Song request"),
    "daily_checkin": EarnAction(5, "Daily check-in bonus", counts_visit=True),
}


@dataclass(frozen=True, slots=True)
class LedgerReconciliation:
    """Stored balance compared with the signed sum of the account's events."""

    account_id: UUID
    stored_balance: int
    ledger_balance: int
    event_count: int

    @property
    def is_consistent(self) -> bool:
        return self.stored_balance == self.ledger_balance

    @property
    def drift(self) -> int:
        return self.stored_balance - self.ledger_balance


def validate_points(kind: LedgerEventKind, points: Any) -> int:
    """Return ``points`` as an int or raise ``InvalidAmountError``."""

    if isinstance(points, bool) or not isinstance(points, (int, float, Decimal)):
        raise InvalidAmountError("Points must be a number")
    if isinstance(points, float) and not math.isfinite(points):
        raise InvalidAmountError("Points must be finite")
    if isinstance(points, Decimal) and not points.is_finite():
        raise InvalidAmountError("Points must be finite")
    if points != int(points):
        raise InvalidAmountError("Points must be a whole number")
    value = int(points)
    if kind == LedgerEventKind.ADJUSTMENT:
        if value == 0:
            raise InvalidAmountError("Adjustments require a non-zero amount")
    elif value <= 0:
        raise InvalidAmountError(f"{kind.value.capitalize()} events require a positive amount")
    return value


def points_for_purchase(amount: Any) -> int:
    """Round a spend amount to whole points, never below one."""

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmountError("Purchase amount must be numeric") from exc
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError("Purchase amount must be positive")
    return max(1, int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def signed_points_expression():
    return case(
        (LedgerEvent.kind == LedgerEventKind.REDEEM, -LedgerEvent.points),
        else_=LedgerEvent.points,
    )


class PointsLedger:
    """Appends ledger events and keeps the account balance in step.

    Every append runs inside the caller's transaction: the account row is
    locked, the new balance is written with a compare-and-set on the prior
    balance and ledger version, and the event is inserted in the same flush.
    Callers own the commit.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        thresholds: TierThresholds | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._db = db_session
        self._thresholds = thresholds
        self._max_attempts = max_attempts or settings.ledger_cas_max_attempts
        self._store = get_loyalty_store()

    async def thresholds(self) -> TierThresholds:
        if self._thresholds is None:
            self._thresholds = await TierConfigService(self._db).get_thresholds()
        return self._thresholds

    async def get_account(self, account_id: UUID) -> LoyaltyAccount:
        account = await self._db.get(LoyaltyAccount, account_id)
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    async def get_balance(self, account_id: UUID) -> int:
        result = await self._db.execute(
            select(LoyaltyAccount.current_points).where(LoyaltyAccount.id == account_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("Account", account_id)
        return int(balance)

    async def sync_tier(self, account: LoyaltyAccount) -> LoyaltyAccount:
        """Repair the stored tier if the active thresholds moved since the last write."""

        points = int(account.current_points or 0)
        expected = tier_of(points, await self.thresholds())
        if account.membership_tier == expected:
            return account

        await self._db.execute(
            update(LoyaltyAccount)
            .where(LoyaltyAccount.id == account.id, LoyaltyAccount.current_points == points)
            .values(membership_tier=expected)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Recomputed membership tier",
            account_id=str(account.id),
            stored=getattr(account.membership_tier, "value", account.membership_tier),
            tier=expected.value,
        )
        set_committed_value(account, "membership_tier", expected)
        return account

    async def append_event(
        self,
        account_id: UUID,
        kind: LedgerEventKind | str,
        points: Any,
        *,
        reward_id: UUID | None = None,
        goal_id: UUID | None = None,
        redemption_id: UUID | None = None,
        note: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> LedgerEvent:
        """Record one ledger event and apply it to the account balance."""

        try:
            kind = LedgerEventKind(kind)
        except ValueError as exc:
            raise InvalidAmountError(f"Unknown ledger event kind {kind!r}") from exc
        amount = validate_points(kind, points)
        return await self._append(
            account_id,
            kind,
            amount,
            reward_id=reward_id,
            goal_id=goal_id,
            redemption_id=redemption_id,
            note=note,
            metadata=metadata,
        )

    async def award_action(self, account_id: UUID, action: str) -> LedgerEvent:
        """Append an earn event for a named customer action."""

        earn_action = EARN_ACTIONS.get(action)
        if earn_action is None:
            raise InvalidAmountError(f"Unknown loyalty action {action!r}")
        return await self._append(
            account_id,
            LedgerEventKind.EARN,
            earn_action.points,
            note=earn_action.description,
            metadata={"action": action},
            visits_delta=1 if earn_action.counts_visit else 0,
        )

    async def _append(
        self,
        account_id: UUID,
        kind: LedgerEventKind,
        amount: int,
        *,
        reward_id: UUID | None = None,
        goal_id: UUID | None = None,
        redemption_id: UUID | None = None,
        note: str | None = None,
        metadata: dict[str, Any] | None = None,
        visits_delta: int = 0,
    ) -> LedgerEvent:
        delta = -amount if kind == LedgerEventKind.REDEEM else amount
        thresholds = await self.thresholds()

        with get_tracer().start_as_current_span("loyalty.ledger.append") as span:
            span.set_attribute("loyalty.account_id", str(account_id))
            span.set_attribute("loyalty.kind", kind.value)
            span.set_attribute("loyalty.points", amount)

            for attempt in range(1, self._max_attempts + 1):
                account = await self._read_account(account_id)
                balance = int(account.current_points or 0)
                version = int(account.ledger_version or 0)
                new_balance = balance + delta
                if new_balance < 0:
                    raise InsufficientBalanceError(balance, abs(delta))

                new_tier = tier_of(new_balance, thresholds)
                applied = await self._compare_and_set(
                    account_id,
                    expected_balance=balance,
                    expected_version=version,
                    new_balance=new_balance,
                    tier=new_tier,
                    visits_delta=visits_delta,
                )
                if applied:
                    break
                self._store.record_cas_retry()
                logger.warning(
                    "Balance changed during ledger append; retrying",
                    account_id=str(account_id),
                    attempt=attempt,
                )
            else:
                raise BalanceConflictError(
                    f"Balance for account {account_id} changed {self._max_attempts} times during append"
                )

            set_committed_value(account, "current_points", new_balance)
            set_committed_value(account, "ledger_version", version + 1)
            set_committed_value(account, "membership_tier", new_tier)
            if visits_delta:
                set_committed_value(account, "visits", int(account.visits or 0) + visits_delta)

            event = LedgerEvent(
                account_id=account_id,
                sequence=version + 1,
                kind=kind,
                points=amount,
                balance_after=new_balance,
                reward_id=reward_id,
                goal_id=goal_id,
                redemption_id=redemption_id,
                note=note,
                metadata_json=metadata or {},
            )
            self._db.add(event)
            await self._db.flush()

        self._store.record_ledger_event(kind.value, amount)
        logger.info(
            "Appended loyalty ledger event",
            account_id=str(account_id),
            kind=kind.value,
            points=amount,
            balance=new_balance,
            tier=new_tier.value,
        )
        return event

    async def _read_account(self, account_id: UUID) -> LoyaltyAccount:
        stmt = (
            select(LoyaltyAccount)
            .where(LoyaltyAccount.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise NotFoundError("Account", account_id)
        return account

    async def _compare_and_set(
        self,
        account_id: UUID,
        *,
        expected_balance: int,
        expected_version: int,
        new_balance: int,
        tier,
        visits_delta: int,
    ) -> bool:
        values: dict[str, Any] = {
            "current_points": new_balance,
            "membership_tier": tier,
            "ledger_version": expected_version + 1,
        }
        if visits_delta:
            values["visits"] = LoyaltyAccount.visits + visits_delta
        stmt = (
            update(LoyaltyAccount)
            .where(
                LoyaltyAccount.id == account_id,
                LoyaltyAccount.current_points == expected_balance,
                LoyaltyAccount.ledger_version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        return result.rowcount == 1

    async def reconcile(self, account_id: UUID) -> LedgerReconciliation:
        """Compare the stored balance with the sum of the account's events."""

        balance = await self.get_balance(account_id)
        result = await self._db.execute(
            select(
                func.coalesce(func.sum(signed_points_expression()), 0),
                func.count(LedgerEvent.id),
            ).where(LedgerEvent.account_id == account_id)
        )
        ledger_balance, event_count = result.one()
        return LedgerReconciliation(
            account_id=account_id,
            stored_balance=balance,
            ledger_balance=int(ledger_balance or 0),
            event_count=int(event_count or 0),
        )

    async def list_events(
        self,
        account_id: UUID,
        *,
        limit: int = 25,
        cursor: Tuple[datetime, UUID] | None = None,
        kinds: Sequence[LedgerEventKind] | None = None,
    ) -> tuple[list[LedgerEvent], Tuple[datetime, UUID] | None]:
        """Return a newest-first page of ledger events for an account.

        Events are ordered by their per-account sequence, the order in which
        they were applied; the cursor names the last event of the previous page.
        """

        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(LedgerEvent)
            .where(LedgerEvent.account_id == account_id)
            .order_by(LedgerEvent.sequence.desc())
        )
        if kinds:
            stmt = stmt.where(LedgerEvent.kind.in_(list(kinds)))
        if cursor:
            _, cursor_id = cursor
            cursor_sequence = (
                select(LedgerEvent.sequence)
                .where(LedgerEvent.account_id == account_id, LedgerEvent.id == cursor_id)
                .scalar_subquery()
            )
            stmt = stmt.where(LedgerEvent.sequence < cursor_sequence)

        stmt = stmt.limit(bounded_limit + 1)
        result = await self._db.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > bounded_limit
        events = rows[:bounded_limit]
        next_cursor: Tuple[datetime, UUID] | None = None
        if has_more and events:
            tail = events[-1]
            next_cursor = (tail.created_at, tail.id)
        return events, next_cursor


def encode_time_uuid_cursor(timestamp: datetime, identifier: UUID) -> str:
    """Encode pagination cursor for chronological queries."""

    payload = f"{timestamp.isoformat()}|{identifier}".encode("utf-8")
    return base64.urlsafe_b64encode(payload).decode("utf-8")


def decode_time_uuid_cursor(cursor: str) -> Tuple[datetime, UUID]:
    """Decode pagination cursor into datetime and UUID parts."""

    raw = base64.urlsafe_b64decode(cursor.encode("utf-8")).decode("utf-8")
    timestamp_str, identifier_str = raw.split("|", 1)
    return datetime.fromisoformat(timestamp_str), UUID(identifier_str)


__all__ = [
    "EARN_ACTIONS",
    "EarnAction",
    "LedgerReconciliation",
    "PointsLedger",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
    "points_for_purchase",
    "signed_points_expression",
    "validate_points",
]
