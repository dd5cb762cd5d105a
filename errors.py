from typing import Any, Optional


class IkpaError(ValueError):
    code = "IKPA_ERROR"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class NoBudgetFound(IkpaError):
    code = "GPS_NO_BUDGET_FOUND"
    status_code = 404

    def __init__(self, category: str, available: Optional[list[str]] = None) -> None:
        available = available or []
        message = f"No budget found for category '{category}'"
        if available:
            message += f". Available categories: {', '.join(available)}"
        super().__init__(
            message, {"category": category, "available_categories": available}
        )


class AmbiguousBudgetCategory(IkpaError):
    code = "GPS_AMBIGUOUS_CATEGORY"
    status_code = 400


class NoActiveGoal(IkpaError):
    code = "GPS_NO_ACTIVE_GOAL"
    status_code = 422

    def __init__(self, user_id: int) -> None:
        super().__init__(
            "No active goal found. Create a goal to see its probability.",
            {"user_id": user_id},
        )


class GoalNotFound(IkpaError):
    code = "GOAL_NOT_FOUND"
    status_code = 404


class BannedWordViolation(IkpaError):
    code = "GPS_BANNED_WORD"
    status_code = 500

    def __init__(self, word: str, text: str) -> None:
        super().__init__(
            f"Generated message contains banned word '{word}'",
            {"word": word, "text": text[:200]},
        )


class SimulationCalculationError(IkpaError):
    code = "FINANCE_SIMULATION_FAILED"
    status_code = 500


class SubscriptionNotFound(IkpaError):
    code = "SHARK_SUBSCRIPTION_NOT_FOUND"
    status_code = 404

    def __init__(self, subscription_id: int) -> None:
        super().__init__(
            f"Subscription {subscription_id} not found",
            {"subscription_id": subscription_id},
        )


class InsufficientExpenseData(IkpaError):
    code = "SHARK_INSUFFICIENT_DATA"
    status_code = 422

    def __init__(self, required: int) -> None:
        super().__init__(
            f"At least {required} recurring expenses are needed to audit subscriptions",
            {"required": required},
        )


class AuditOperationFailed(IkpaError):
    code = "SHARK_AUDIT_FAILED"
    status_code = 500


class SubscriptionCancellationError(IkpaError):
    code = "SHARK_CANCELLATION_FAILED"
    status_code = 422


class InvalidSwipeAction(IkpaError):
    code = "SHARK_INVALID_SWIPE"
    status_code = 400


class DuplicateSwipeDecision(IkpaError):
    code = "SHARK_DUPLICATE_DECISION"
    status_code = 409

    def __init__(self, subscription_id: int) -> None:
        super().__init__(
            f"A decision for subscription {subscription_id} was recorded moments ago",
            {"subscription_id": subscription_id},
        )


class CommitmentNotFound(IkpaError):
    code = "COMMITMENT_NOT_FOUND"
    status_code = 404


class InvalidStake(IkpaError):
    code = "COMMITMENT_INVALID_STAKE"
    status_code = 400


class ContractNotFailed(IkpaError):
    code = "COMMITMENT_NOT_FAILED"
    status_code = 422


class FamilySupportNotFound(IkpaError):
    code = "UBUNTU_SUPPORT_NOT_FOUND"
    status_code = 404


class StoryCardNotFound(IkpaError):
    code = "STORY_CARD_NOT_FOUND"
    status_code = 404


class ShareTokenInvalid(IkpaError):
    code = "STORY_CARD_INVALID_SHARE"
    status_code = 404


class ImportValidationError(IkpaError):
    code = "IMPORT_VALIDATION_FAILED"
    status_code = 400


class LLMUnavailable(IkpaError):
    code = "AI_SERVICE_UNAVAILABLE"
    status_code = 503


class LLMRequestFailed(IkpaError):
    code = "AI_REQUEST_FAILED"
    status_code = 502


class RebalanceNotAllowed(IkpaError):
    code = "GPS_REBALANCE_NOT_ALLOWED"
    status_code = 422


class StoryCardLimitExceeded(IkpaError):
    code = "STORY_CARD_LIMIT_EXCEEDED"
    status_code = 429


class RecordNotFound(IkpaError):
    code = "RESOURCE_NOT_FOUND"
    status_code = 404


class BudgetAlreadyExists(IkpaError):
    code = "BUDGET_ALREADY_EXISTS"
    status_code = 409


class CommitmentAlreadyResolved(IkpaError):
    code = "COMMITMENT_ALREADY_RESOLVED"
    status_code = 409
