"""Typed failures raised by the loyalty core."""

from __future__ import annotations

from uuid import UUID


class LoyaltyError(RuntimeError):
    """Base exception for loyalty ledger and workflow failures."""

    code = "loyalty_error"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " "))
        self.message = message or self.code.replace("_", " ")

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidAmountError(LoyaltyError):
    """Raised when a point amount is not a usable integer for the operation."""

    code = "invalid_amount"
    status_code = 422


class InsufficientBalanceError(LoyaltyError):
    """Raised when a deduction would drive the balance negative."""

    code = "insufficient_balance"
    status_code = 409

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(f"Balance of {balance} points cannot cover {requested} points")
        self.balance = balance
        self.requested = requested


class NotFoundError(LoyaltyError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier: UUID | str) -> None:
        super().__init__(f"{entity} {identifier} not found")
        self.entity = entity
        self.identifier = identifier


class AlreadyProcessedError(LoyaltyError):
    """Raised when a redemption has already left the pending state."""

    code = "already_processed"
    status_code = 409

    def __init__(self, status: str) -> None:
        super().__init__(f"Redemption already {status}")
        self.status = status


class TierGateNotMetError(LoyaltyError):
    code = "tier_gate_not_met"
    status_code = 403

    def __init__(self, tier: str, required: str) -> None:
        super().__init__(f"Reward requires {required} membership; account is {tier}")
        self.tier = tier
        self.required = required


class DuplicateReferralError(LoyaltyError):
    code = "duplicate_referral"
    status_code = 409


class InvalidReferralError(LoyaltyError):
    code = "invalid_referral"
    status_code = 422


class GoalExpiredOrInactiveError(LoyaltyError):
    code = "goal_expired_or_inactive"
    status_code = 409


class RewardUnavailableError(LoyaltyError):
    """Raised when a reward is inactive or out of inventory."""

    code = "reward_unavailable"
    status_code = 409


class DuplicateRedemptionError(LoyaltyError):
    code = "duplicate_redemption"
    status_code = 409


class BalanceConflictError(LoyaltyError):
    """Raised when the balance kept changing underneath a compare-and-set write."""

    code = "balance_conflict"
    status_code = 409


class PartialFailureError(LoyaltyError):
    """Raised when points left the account but the follow-up write did not land.

    Callers must not retry blindly; the deduction is already recorded under
    ``ledger_event_id``.
    """

    code = "partial_failure"
    status_code = 500

    def __init__(self, message: str, *, ledger_event_id: UUID | None, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.ledger_event_id = ledger_event_id
        self.cause = cause


__all__ = [
    "AlreadyProcessedError",
    "BalanceConflictError",
    "DuplicateRedemptionError",
    "DuplicateReferralError",
    "GoalExpiredOrInactiveError",
    "InsufficientBalanceError",
    "InvalidAmountError",
    "InvalidReferralError",
    "LoyaltyError",
    "NotFoundError",
    "PartialFailureError",
    "RewardUnavailableError",
    "TierGateNotMetError",
]
