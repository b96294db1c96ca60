"""Pure membership tier calculations."""

from __future__ import annotations

from dataclasses import dataclass

from brewpoints_api.models.loyalty import MembershipTier


_TIER_RANK: dict[MembershipTier, int] = {
    MembershipTier.BRONZE: 0,
    MembershipTier.SILVER: 1,
    MembershipTier.GOLD: 2,
}


@dataclass(frozen=True, slots=True)
class TierThresholds:
    """Inclusive lower bounds for the silver and gold tiers."""

    silver_at: int = 200
    gold_at: int = 550

    def __post_init__(self) -> None:
        if isinstance(self.silver_at, bool) or isinstance(self.gold_at, bool):
            raise ValueError("Tier thresholds must be integers")
        if not 0 < self.silver_at < self.gold_at:
            raise ValueError("Tier thresholds must satisfy 0 < silver_at < gold_at")

    def as_dict(self) -> dict[str, int]:
        return {"silver_at": self.silver_at, "gold_at": self.gold_at}


@dataclass(frozen=True, slots=True)
class DowngradeCheck:
    would_downgrade: bool
    current_tier: MembershipTier
    new_tier: MembershipTier


@dataclass(frozen=True, slots=True)
class TierProgress:
    """Distance from a balance to the next tier boundary."""

    tier: MembershipTier
    next_tier: MembershipTier | None
    points_to_next_tier: int | None


def tier_of(points: int, thresholds: TierThresholds) -> MembershipTier:
    """Map a point total to its tier; a balance exactly on a threshold gets the higher tier."""

    if points >= thresholds.gold_at:
        return MembershipTier.GOLD
    if points >= thresholds.silver_at:
        return MembershipTier.SILVER
    return MembershipTier.BRONZE


def would_downgrade(current_points: int, points_to_redeem: int, thresholds: TierThresholds) -> DowngradeCheck:
    """Report whether spending ``points_to_redeem`` would drop the account a tier.

    Advisory only; nothing is blocked on the result.
    """

    current_tier = tier_of(current_points, thresholds)
    new_tier = tier_of(max(0, current_points - points_to_redeem), thresholds)
    return DowngradeCheck(
        would_downgrade=current_tier != new_tier,
        current_tier=current_tier,
        new_tier=new_tier,
    )


def tier_rank(tier: MembershipTier | str) -> int:
    return _TIER_RANK[MembershipTier(tier)]


def meets_tier_gate(tier: MembershipTier | str, required: MembershipTier | str | None) -> bool:
    """Return True when ``tier`` is at or above the ``required`` gate."""

    if required is None:
        return True
    return tier_rank(tier) >= tier_rank(required)


def tier_progress(points: int, thresholds: TierThresholds) -> TierProgress:
    tier = tier_of(points, thresholds)
    if tier == MembershipTier.BRONZE:
        return TierProgress(tier, MembershipTier.SILVER, thresholds.silver_at - points)
    if tier == MembershipTier.SILVER:
        return TierProgress(tier, MembershipTier.GOLD, thresholds.gold_at - points)
    return TierProgress(tier, None, None)


__all__ = [
    "DowngradeCheck",
    "TierProgress",
    "TierThresholds",
    "meets_tier_gate",
    "tier_of",
    "tier_progress",
    "tier_rank",
    "would_downgrade",
]
