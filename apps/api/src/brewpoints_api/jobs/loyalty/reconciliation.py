"""Nightly job comparing stored balances with the ledger."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.models.loyalty import LoyaltyAccount
from brewpoints_api.services.loyalty import PointsLedger


# meta: job: loyalty-ledger-reconciliation

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def reconcile_ledgers(*, session_factory: SessionFactory) -> Dict[str, Any]:
    """Report accounts whose stored balance drifted from their event sum.

    Drift is reported only; corrections go through an adjustment event.
    """

    maybe_session = session_factory()
    session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        result = await managed_session.execute(select(LoyaltyAccount.id).order_by(LoyaltyAccount.created_at))
        account_ids = list(result.scalars().all())

        ledger = PointsLedger(managed_session)
        drifted: List[Dict[str, Any]] = []
        for account_id in account_ids:
            report = await ledger.reconcile(account_id)
            if report.is_consistent:
                continue
            drifted.append(
                {
                    "account_id": str(account_id),
                    "stored_balance": report.stored_balance,
                    "ledger_balance": report.ledger_balance,
                    "drift": report.drift,
                }
            )
            logger.error(
                "Loyalty balance drift detected",
                account_id=str(account_id),
                stored_balance=report.stored_balance,
                ledger_balance=report.ledger_balance,
            )

        summary = {
            "accounts_checked": len(account_ids),
            "drifted": drifted,
        }
        logger.bind(summary={"accounts_checked": len(account_ids), "drifted": len(drifted)}).info(
            "Loyalty ledger reconciliation finished"
        )
        return summary


__all__ = ["reconcile_ledgers"]
