from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    ledger: Dict[str, int]
    settlements: Dict[str, int]
    compensations: Dict[str, int]
    referrals: Dict[str, int]
    goals: Dict[str, int]
    notifications: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": dict(self.ledger),
            "settlements": dict(self.settlements),
            "compensations": dict(self.compensations),
            "referrals": dict(self.referrals),
            "goals": dict(self.goals),
            "notifications": dict(self.notifications),
        }


class LoyaltyObservabilityStore:
    """Collect ledger and settlement telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger: Dict[str, int] = defaultdict(int)
        self._settlements: Dict[str, int] = defaultdict(int)
        self._compensations: Dict[str, int] = defaultdict(int)
        self._referrals: Dict[str, int] = defaultdict(int)
        self._goals: Dict[str, int] = defaultdict(int)
        self._notifications: Dict[str, int] = defaultdict(int)

    def record_ledger_event(self, kind: str, points: int) -> None:
        with self._lock:
            self._ledger[f"events:{kind}"] += 1
            self._ledger[f"points:{kind}"] += abs(points)

    def record_cas_retry(self) -> None:
        with self._lock:
            self._ledger["cas_retries"] += 1

    def record_settlement(self, outcome: str) -> None:
        with self._lock:
            self._settlements[outcome] += 1

    def record_compensation(self, reason: str) -> None:
        with self._lock:
            self._compensations["total"] += 1
            self._compensations[f"reason:{reason}"] += 1

    def record_referral_event(self, event: str) -> None:
        with self._lock:
            self._referrals[event] += 1

    def record_goal_event(self, event: str) -> None:
        with self._lock:
            self._goals[event] += 1

    def record_notification(self, outcome: str) -> None:
        with self._lock:
            self._notifications[outcome] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                ledger=dict(self._ledger),
                settlements=dict(self._settlements),
                compensations=dict(self._compensations),
                referrals=dict(self._referrals),
                goals=dict(self._goals),
                notifications=dict(self._notifications),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger.clear()
            self._settlements.clear()
            self._compensations.clear()
            self._referrals.clear()
            self._goals.clear()
            self._notifications.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
