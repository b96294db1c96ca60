"""Loyalty job exports."""

from .birthday import award_birthday_bonuses  # noqa: F401
from .reconciliation import reconcile_ledgers  # noqa: F401

__all__ = [
    "award_birthday_bonuses",
    "reconcile_ledgers",
]
