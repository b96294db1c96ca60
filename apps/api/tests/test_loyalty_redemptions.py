import asyncio

import pytest
from sqlalchemy import select

from brewpoints_api.models.loyalty import (
    LedgerAuditNote,
    LedgerEvent,
    LedgerEventKind,
    MembershipTier,
    RedemptionRequest,
    RedemptionStatus,
    Reward,
)
from brewpoints_api.models.notification import Notification, NotificationKindEnum
from brewpoints_api.services.loyalty import (
    AlreadyProcessedError,
    DuplicateRedemptionError,
    InsufficientBalanceError,
    LoyaltyError,
    NotFoundError,
    PointsLedger,
    RedemptionService,
    RewardUnavailableError,
    SettlementService,
    TierGateNotMetError,
)


async def _redeem_events(session, redemption_id) -> list[LedgerEvent]:
    result = await session.execute(
        select(LedgerEvent).where(
            LedgerEvent.redemption_id == redemption_id,
            LedgerEvent.kind == LedgerEventKind.REDEEM,
        )
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_request_approve_and_repeat_approve(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "scenario@example.com")
    reward = await create_reward(session_factory, "Espresso Shot", 10)

    async with session_factory() as session:
        ledger = PointsLedger(session)
        await ledger.append_event(account.id, LedgerEventKind.EARN, 10, note="welcome")
        await session.commit()
        assert await ledger.get_balance(account.id) == 10
        assert (await ledger.get_account(account.id)).membership_tier == MembershipTier.BRONZE

        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        await session.commit()
        assert redemption.status == RedemptionStatus.PENDING
        redemption_id = redemption.id
        assert redemption.points_spent == 10
        assert await ledger.get_balance(account.id) == 10

        settlement = SettlementService(session)
        result = await settlement.approve(redemption.id)
        await session.commit()
        assert result.redemption.status == RedemptionStatus.REDEEMED
        assert result.redemption.fulfilled_at is not None
        assert result.ledger_event.points == 10
        assert await ledger.get_balance(account.id) == 0

        with pytest.raises(AlreadyProcessedError):
            await settlement.approve(redemption.id)
        await session.rollback()

        assert await ledger.get_balance(account.id) == 0
        assert len(await _redeem_events(session, redemption_id)) == 1


@pytest.mark.asyncio
async def test_failed_settlement_reverts_to_pending(
    session_factory, create_account, create_reward, reset_loyalty_store
) -> None:
    account = await create_account(session_factory, "revert@example.com", points=100)
    reward = await create_reward(session_factory, "Cold Brew", 80)

    async with session_factory() as session:
        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        # The balance moves after the request was accepted.
        await PointsLedger(session).append_event(account.id, LedgerEventKind.REDEEM, 50)
        await session.commit()

        with pytest.raises(InsufficientBalanceError):
            await SettlementService(session).approve(redemption.id)
        await session.commit()

    async with session_factory() as session:
        stored = await session.get(RedemptionRequest, redemption.id)
        assert stored.status == RedemptionStatus.PENDING
        assert stored.failure_reason == "insufficient_balance"
        assert stored.fulfilled_at is None
        assert stored.resolved_at is None
        assert await _redeem_events(session, redemption.id) == []
        assert await PointsLedger(session).get_balance(account.id) == 50

    snapshot = reset_loyalty_store.snapshot()
    assert snapshot.compensations["total"] == 1
    assert snapshot.compensations["reason:insufficient_balance"] == 1
    assert snapshot.settlements["failed"] == 1

    async with session_factory() as session:
        await PointsLedger(session).append_event(account.id, LedgerEventKind.EARN, 40)
        result = await SettlementService(session).approve(redemption.id)
        await session.commit()
        assert result.redemption.status == RedemptionStatus.REDEEMED
        assert result.redemption.failure_reason is None
        assert await PointsLedger(session).get_balance(account.id) == 10


@pytest.mark.asyncio
async def test_sequential_approvals_never_overspend(
    file_session_factory, create_account, create_reward
) -> None:
    account = await create_account(file_session_factory, "double@example.com", points=100)
    latte = await create_reward(file_session_factory, "Latte", 80)
    mocha = await create_reward(file_session_factory, "Mocha", 80)

    async with file_session_factory() as session:
        service = RedemptionService(session)
        first = await service.request_redemption(account.id, latte.id)
        second = await service.request_redemption(account.id, mocha.id)
        await session.commit()

    async with file_session_factory() as session_a, file_session_factory() as session_b:
        await SettlementService(session_a).approve(first.id)
        await session_a.commit()

        with pytest.raises(InsufficientBalanceError):
            await SettlementService(session_b).approve(second.id)
        await session_b.commit()

    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.get_balance(account.id) == 20
        assert (await ledger.reconcile(account.id)).is_consistent
        first_state = await session.get(RedemptionRequest, first.id)
        second_state = await session.get(RedemptionRequest, second.id)
        assert first_state.status == RedemptionStatus.REDEEMED
        assert second_state.status == RedemptionStatus.PENDING
        assert second_state.failure_reason == "insufficient_balance"
        deductions = (
            await session.execute(select(LedgerEvent).where(LedgerEvent.kind == LedgerEventKind.REDEEM))
        ).scalars().all()
        assert len(deductions) == 1


async def _settle_in_own_session(session_factory, redemption_id) -> str:
    async with session_factory() as session:
        try:
            await SettlementService(session).approve(redemption_id)
        except LoyaltyError as exc:
            await session.commit()
            return type(exc).__name__
        await session.commit()
        return "approved"


@pytest.mark.asyncio
async def test_concurrent_approvals_never_overspend(
    file_session_factory, create_account, create_reward
) -> None:
    account = await create_account(file_session_factory, "racing.com", points=100)
    latte = await create_reward(file_session_factory, "Latte", 80)
    mocha = await create_reward(file_session_factory, "Mocha", 80)

    async with file_session_factory() as session:
        service = RedemptionService(session)
        first = await service.request_redemption(account.id, latte.id)
        second = await service.request_redemption(account.id, mocha.id)
        await session.commit()
        request_ids = [first.id, second.id]

    outcomes = await asyncio.gather(
        *(_settle_in_own_session(file_session_factory, request_id) for request_id in request_ids)
    )

    assert sorted(outcomes) == ["InsufficientBalanceError", "approved"]
    async with file_session_factory() as session:
        ledger = PointsLedger(session)
        assert await ledger.get_balance(account.id) == 20
        assert (await ledger.reconcile(account.id)).is_consistent
        deductions = (
            await session.execute(select(LedgerEvent).where(LedgerEvent.kind == LedgerEventKind.REDEEM))
        ).scalars().all()
        assert len(deductions) == 1


@pytest.mark.asyncio
async def test_concurrent_approvals_of_one_request_deduct_once(
    file_session_factory, create_account, create_reward
) -> None:
    account = await create_account(file_session_factory, "twice.com", points=100)
    reward = await create_reward(file_session_factory, "Americano", 30)

    async with file_session_factory() as session:
        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        await session.commit()
        redemption_id = redemption.id

    outcomes = await asyncio.gather(
        _settle_in_own_session(file_session_factory, redemption_id),
        _settle_in_own_session(file_session_factory, redemption_id),
    )

    assert sorted(outcomes) == ["AlreadyProcessedError", "approved"]
    async with file_session_factory() as session:
        assert await PointsLedger(session).get_balance(account.id) == 70
        assert len(await _redeem_events(session, redemption_id)) == 1

@pytest.mark.asyncio
async def test_reject_expires_without_touching_balance(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "reject@example.com", points=120)
    reward = await create_reward(session_factory, "Scone", 60)

    async with session_factory() as session:
        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        await session.commit()
        redemption_id = redemption.id

        settlement = SettlementService(session)
        result = await settlement.reject(redemption.id, reason="Out of scones today")
        await session.commit()
        assert result.ledger_event is None
        assert result.redemption.status == RedemptionStatus.EXPIRED
        assert result.redemption.rejection_reason == "Out of scones today"
        assert result.redemption.resolved_at is not None

        with pytest.raises(AlreadyProcessedError):
            await settlement.reject(redemption.id)
        with pytest.raises(AlreadyProcessedError):
            await settlement.approve(redemption.id)
        await session.rollback()

        assert await PointsLedger(session).get_balance(account.id) == 120
        assert await _redeem_events(session, redemption_id) == []


@pytest.mark.asyncio
async def test_request_preconditions(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "gates@example.com", points=300)
    gold_only = await create_reward(session_factory, "Bean Bag", 100, membership_required=MembershipTier.GOLD)
    retired = await create_reward(session_factory, "Retired Mug", 50, active=False)
    sold_out = await create_reward(session_factory, "Tote", 50, inventory=0)
    pricey = await create_reward(session_factory, "Grinder", 500)

    async with session_factory() as session:
        service = RedemptionService(session)
        with pytest.raises(TierGateNotMetError):
            await service.request_redemption(account.id, gold_only.id)
        with pytest.raises(RewardUnavailableError):
            await service.request_redemption(account.id, retired.id)
        with pytest.raises(RewardUnavailableError):
            await service.request_redemption(account.id, sold_out.id)
        with pytest.raises(InsufficientBalanceError):
            await service.request_redemption(account.id, pricey.id)
        with pytest.raises(NotFoundError):
            await service.request_redemption(account.id, account.id)

        pending = (await session.execute(select(RedemptionRequest))).scalars().all()
        assert pending == []


@pytest.mark.asyncio
async def test_duplicate_pending_request_policy(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "dupes@example.com", points=300)
    reward = await create_reward(session_factory, "Cortado", 100)

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.request_redemption(account.id, reward.id)
        with pytest.raises(DuplicateRedemptionError):
            await service.request_redemption(account.id, reward.id)

        permissive = RedemptionService(session, block_duplicate_pending=False)
        second = await permissive.request_redemption(account.id, reward.id)
        await session.commit()
        assert second.status == RedemptionStatus.PENDING


@pytest.mark.asyncio
async def test_requests_do_not_hold_points(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "deferred@example.com", points=100)
    muffin = await create_reward(session_factory, "Muffin", 70)
    bagel = await create_reward(session_factory, "Bagel", 70)

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.request_redemption(account.id, muffin.id)
        await service.request_redemption(account.id, bagel.id)
        await session.commit()

        redemptions, _ = await service.list_account_redemptions(account.id, statuses=[RedemptionStatus.PENDING])
        assert len(redemptions) == 2
        assert await PointsLedger(session).get_balance(account.id) == 100


@pytest.mark.asyncio
async def test_approval_consumes_limited_inventory(session_factory, create_account, create_reward) -> None:
    first_member = await create_account(session_factory, "stock-a@example.com", points=100)
    second_member = await create_account(session_factory, "stock-b@example.com", points=100)
    reward = await create_reward(session_factory, "Limited Mug", 40, inventory=1)

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.request_redemption(first_member.id, reward.id)
        second = await service.request_redemption(second_member.id, reward.id)
        await session.commit()

        settlement = SettlementService(session)
        await settlement.approve(first.id)
        await session.commit()

        with pytest.raises(RewardUnavailableError):
            await settlement.approve(second.id)
        await session.commit()

    async with session_factory() as session:
        stored_reward = await session.get(Reward, reward.id)
        assert stored_reward.inventory == 0
        stored_second = await session.get(RedemptionRequest, second.id)
        assert stored_second.status == RedemptionStatus.PENDING
        assert stored_second.failure_reason == "reward_unavailable"
        assert await PointsLedger(session).get_balance(second_member.id) == 100


@pytest.mark.asyncio
async def test_approval_records_audit_note_and_notifications(
    session_factory, create_account, create_reward
) -> None:
    account = await create_account(session_factory, "audit@example.com", points=90)
    reward = await create_reward(session_factory, "Flat White", 45)

    async with session_factory() as session:
        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        result = await SettlementService(session).approve(redemption.id, actor="barista-7")
        await session.commit()
        assert result.audit_note_recorded is True

        notes = (await session.execute(select(LedgerAuditNote))).scalars().all()
        assert len(notes) == 1
        assert notes[0].actor == "barista-7"
        assert notes[0].ledger_event_id == result.ledger_event.id
        assert notes[0].redemption_id == redemption.id

        notifications = (
            await session.execute(select(Notification).where(Notification.account_id == account.id))
        ).scalars().all()
        assert [item.kind for item in notifications] == [NotificationKindEnum.REDEMPTION] * 2


@pytest.mark.asyncio
async def test_failed_audit_note_does_not_undo_the_deduction(
    session_factory, create_account, create_reward, monkeypatch
) -> None:
    account = await create_account(session_factory, "noaudit@example.com", points=90)
    reward = await create_reward(session_factory, "Macchiato", 60)
    original_init = LedgerAuditNote.__init__

    def init_without_note(self, **kwargs):
        kwargs["note"] = None  # violates NOT NULL on note
        original_init(self, **kwargs)

    monkeypatch.setattr(LedgerAuditNote, "__init__", init_without_note)

    async with session_factory() as session:
        redemption = await RedemptionService(session).request_redemption(account.id, reward.id)
        await session.commit()
        redemption_id = redemption.id

        result = await SettlementService(session).approve(redemption_id, actor="barista-9")
        await session.commit()

        assert result.audit_note_recorded is False
        assert result.redemption.status == RedemptionStatus.REDEEMED
        assert result.ledger_event.points == 60

    async with session_factory() as session:
        assert await PointsLedger(session).get_balance(account.id) == 30
        assert len(await _redeem_events(session, redemption_id)) == 1
        assert (await session.execute(select(LedgerAuditNote))).scalars().all() == []
        stored = await session.get(RedemptionRequest, redemption_id)
        assert stored.status == RedemptionStatus.REDEEMED


@pytest.mark.asyncio
async def test_list_pending_is_oldest_first(session_factory, create_account, create_reward) -> None:
    account = await create_account(session_factory, "queue@example.com", points=500)
    americano = await create_reward(session_factory, "Americano", 20)
    chai = await create_reward(session_factory, "Chai", 25)

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.request_redemption(account.id, americano.id)
        second = await service.request_redemption(account.id, chai.id)
        await session.commit()

        pending = await SettlementService(session).list_pending()
        assert [item.id for item in pending] == [first.id, second.id]
