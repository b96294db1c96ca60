"""Resolution of the operator-configured tier thresholds."""

from __future__ import annotations

from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from brewpoints_api.core.settings import settings
from brewpoints_api.models.loyalty import LoyaltySetting

from .tiers import TierThresholds


RANK_THRESHOLDS_KEY = "rank_thresholds"


def default_thresholds() -> TierThresholds:
    return TierThresholds(
        silver_at=settings.loyalty_silver_threshold,
        gold_at=settings.loyalty_gold_threshold,
    )


def _parse_thresholds(value: Any) -> TierThresholds | None:
    if not isinstance(value, dict):
        return None
    try:
        return TierThresholds(silver_at=int(value["silver_at"]), gold_at=int(value["gold_at"]))
    except (KeyError, TypeError, ValueError):
        return None


class TierConfigService:
    """Loads and persists the tier thresholds passed into the calculator."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_thresholds(self) -> TierThresholds:
        """Return the stored override, falling back to process settings."""

        row = await self._db.get(LoyaltySetting, RANK_THRESHOLDS_KEY)
        if row is None:
            return default_thresholds()
        parsed = _parse_thresholds(row.value)
        if parsed is None:
            logger.warning("Ignoring malformed tier threshold override", value=row.value)
            return default_thresholds()
        return parsed

    async def update_thresholds(self, thresholds: TierThresholds) -> TierThresholds:
        result = await self._db.execute(
            select(LoyaltySetting).where(LoyaltySetting.key == RANK_THRESHOLDS_KEY)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = LoyaltySetting(key=RANK_THRESHOLDS_KEY, value=thresholds.as_dict())
            self._db.add(row)
        else:
            row.value = thresholds.as_dict()
        await self._db.flush()
        logger.info("Updated tier thresholds", **thresholds.as_dict())
        return thresholds


__all__ = ["RANK_THRESHOLDS_KEY", "TierConfigService", "default_thresholds"]
