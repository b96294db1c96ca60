import pytest

from brewpoints_api.models.loyalty import MembershipTier
from brewpoints_api.services.loyalty import (
    TierThresholds,
    meets_tier_gate,
    tier_of,
    tier_progress,
    would_downgrade,
)


DEFAULTS = TierThresholds()


@pytest.mark.parametrize(
    ("points", "expected"),
    [
        (0, MembershipTier.BRONZE),
        (199, MembershipTier.BRONZE),
        (200, MembershipTier.SILVER),
        (549, MembershipTier.SILVER),
        (550, MembershipTier.GOLD),
        (10_000, MembershipTier.GOLD),
    ],
)
def test_tier_boundaries_use_inclusive_lower_bounds(points: int, expected: MembershipTier) -> None:
    assert tier_of(points, DEFAULTS) == expected


def test_custom_thresholds_are_passed_explicitly() -> None:
    thresholds = TierThresholds(silver_at=50, gold_at=100)

    assert tier_of(49, thresholds) == MembershipTier.BRONZE
    assert tier_of(50, thresholds) == MembershipTier.SILVER
    assert tier_of(100, thresholds) == MembershipTier.GOLD
    # Defaults are untouched by another configuration.
    assert tier_of(100, DEFAULTS) == MembershipTier.BRONZE


@pytest.mark.parametrize(("silver", "gold"), [(0, 100), (300, 300), (400, 200), (-5, 10)])
def test_thresholds_reject_invalid_ordering(silver: int, gold: int) -> None:
    with pytest.raises(ValueError):
        TierThresholds(silver_at=silver, gold_at=gold)


def test_downgrade_check_reports_gold_to_silver() -> None:
    check = would_downgrade(600, 100, DEFAULTS)

    assert check.would_downgrade is True
    assert check.current_tier == MembershipTier.GOLD
    assert check.new_tier == MembershipTier.SILVER


def test_downgrade_check_within_same_tier() -> None:
    check = would_downgrade(300, 50, DEFAULTS)

    assert check.would_downgrade is False
    assert check.current_tier == check.new_tier == MembershipTier.SILVER


def test_downgrade_check_never_goes_below_zero() -> None:
    check = would_downgrade(150, 500, DEFAULTS)

    assert check.new_tier == MembershipTier.BRONZE
    assert check.would_downgrade is False


def test_tier_gate_ordering() -> None:
    assert meets_tier_gate(MembershipTier.BRONZE, None)
    assert meets_tier_gate(MembershipTier.GOLD, MembershipTier.SILVER)
    assert meets_tier_gate("silver", "silver")
    assert not meets_tier_gate(MembershipTier.BRONZE, MembershipTier.SILVER)
    assert not meets_tier_gate(MembershipTier.SILVER, MembershipTier.GOLD)


def test_tier_progress_points_to_next_tier() -> None:
    bronze = tier_progress(120, DEFAULTS)
    assert bronze.next_tier == MembershipTier.SILVER
    assert bronze.points_to_next_tier == 80

    silver = tier_progress(500, DEFAULTS)
    assert silver.next_tier == MembershipTier.GOLD
    assert silver.points_to_next_tier == 50

    gold = tier_progress(900, DEFAULTS)
    assert gold.next_tier is None
    assert gold.points_to_next_tier is None
