from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error kinds surfaced by the draw pipeline and the push medal ledger."""

    # validation (nothing charged)
    GACHA_NOT_FOUND = "GACHA_NOT_FOUND"
    GACHA_INACTIVE = "GACHA_INACTIVE"
    MAX_DRAWS_REACHED = "MAX_DRAWS_REACHED"
    INVALID_DRAW_COUNT = "INVALID_DRAW_COUNT"
    IDEMPOTENCY_KEY_REUSED = "IDEMPOTENCY_KEY_REUSED"

    # draw algorithm
    INVALID_DROP_RATE = "INVALID_DROP_RATE"
    INVALID_DROP_RATE_CONFIGURATION = "INVALID_DROP_RATE_CONFIGURATION"
    EMPTY_ITEM_POOL = "EMPTY_ITEM_POOL"
    NO_ITEMS_AVAILABLE = "NO_ITEMS_AVAILABLE"
    NO_AVAILABLE_ITEMS_FOR_DRAW = "NO_AVAILABLE_ITEMS_FOR_DRAW"

    # saga steps
    PAYMENT_FAILED = "PAYMENT_FAILED"
    DRAW_PERSISTENCE_FAILED = "DRAW_PERSISTENCE_FAILED"
    REWARD_GRANT_FAILED = "REWARD_GRANT_FAILED"
    LEDGER_CREDIT_FAILED = "LEDGER_CREDIT_FAILED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"

    # ledger
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_TRANSFER = "INVALID_TRANSFER"
    LEDGER_TRANSFER_FAILED = "LEDGER_TRANSFER_FAILED"
    LEDGER_TRANSACTION_FAILED = "LEDGER_TRANSACTION_FAILED"


class ChargeOutcome(str, Enum):
    """What happened to the user's money when a draw failed."""

    NOT_CHARGED = "NOT_CHARGED"
    REFUNDED = "REFUNDED"
    CONTACT_SUPPORT = "CONTACT_SUPPORT"


class GachaServiceError(Exception):
    """Base exception for service layer errors"""

    kind: ErrorKind

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        charge_outcome: ChargeOutcome = ChargeOutcome.NOT_CHARGED,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.charge_outcome = charge_outcome

    def __str__(self) -> str:  # Ensure str(e) returns the human message
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.kind.value,
            "message": self.message,
            "details": self.details,
            "charge_outcome": self.charge_outcome.value,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class GachaNotFound(GachaServiceError):
    kind = ErrorKind.GACHA_NOT_FOUND

    def __init__(self, gacha_id: str):
        super().__init__(
            f"Gacha with ID {gacha_id} not found", details={"gacha_id": gacha_id}
        )


class GachaInactive(GachaServiceError):
    kind = ErrorKind.GACHA_INACTIVE

    def __init__(self, gacha_id: str, reason: str = "not active"):
        super().__init__(
            f"Gacha {gacha_id} is {reason}",
            details={"gacha_id": gacha_id, "reason": reason},
        )


class MaxDrawsReached(GachaServiceError):
    kind = ErrorKind.MAX_DRAWS_REACHED

    def __init__(self, gacha_id: str, max_draws: int):
        super().__init__(
            f"Gacha {gacha_id} has reached maximum draws limit of {max_draws}",
            details={"gacha_id": gacha_id, "max_draws": max_draws},
        )


class InvalidDrawCount(GachaServiceError):
    kind = ErrorKind.INVALID_DRAW_COUNT

    def __init__(self, draw_count: int, max_draw_count: int):
        super().__init__(
            f"Draw count must be between 1 and {max_draw_count}, got {draw_count}",
            details={"draw_count": draw_count, "max_draw_count": max_draw_count},
        )


class IdempotencyKeyReused(GachaServiceError):
    kind = ErrorKind.IDEMPOTENCY_KEY_REUSED

    def __init__(self, idempotency_key: str, original_request: Optional[Dict[str, Any]]):
        super().__init__(
            f"Idempotency key {idempotency_key} was already used for a different draw",
            details={"idempotency_key": idempotency_key, "original_request": original_request},
        )


# ---------------------------------------------------------------------------
# Draw algorithm
# ---------------------------------------------------------------------------


class InvalidDropRate(GachaServiceError):
    kind = ErrorKind.INVALID_DROP_RATE

    def __init__(self, item_id: str, drop_rate: float):
        super().__init__(
            f"Invalid drop rate {drop_rate} for item {item_id}",
            details={"item_id": item_id, "drop_rate": drop_rate},
        )


class InvalidDropRateConfiguration(GachaServiceError):
    kind = ErrorKind.INVALID_DROP_RATE_CONFIGURATION

    def __init__(self, message: str = "Sum of drop rates must be positive"):
        super().__init__(f"Invalid drop rate configuration: {message}")


class EmptyItemPool(GachaServiceError):
    kind = ErrorKind.EMPTY_ITEM_POOL

    def __init__(self):
        super().__init__("No items provided")


class NoItemsAvailable(GachaServiceError):
    kind = ErrorKind.NO_ITEMS_AVAILABLE

    def __init__(self):
        super().__init__("No items available for selection")


class NoAvailableItemsForDraw(GachaServiceError):
    kind = ErrorKind.NO_AVAILABLE_ITEMS_FOR_DRAW

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("No available items for draw", details=details)


# ---------------------------------------------------------------------------
# Saga steps
# ---------------------------------------------------------------------------


class PaymentFailed(GachaServiceError):
    kind = ErrorKind.PAYMENT_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Payment failed: {message}", details=details)


class DrawPersistenceFailed(GachaServiceError):
    kind = ErrorKind.DRAW_PERSISTENCE_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Failed to persist draw: {message}", details=details)


class RewardGrantFailed(GachaServiceError):
    kind = ErrorKind.REWARD_GRANT_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Reward grant failed: {message}", details=details)


class LedgerCreditFailed(GachaServiceError):
    kind = ErrorKind.LEDGER_CREDIT_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Push medal credit failed: {message}", details=details)


class CompensationFailed(GachaServiceError):
    """Refund or rollback after a failed step did not complete: real money at stake."""

    kind = ErrorKind.COMPENSATION_FAILED

    def __init__(
        self,
        original: GachaServiceError,
        failed_steps: Dict[str, str],
        details: Optional[Dict[str, Any]] = None,
    ):
        merged = dict(details or {})
        merged["original_error"] = original.kind.value
        merged["failed_steps"] = failed_steps
        super().__init__(
            "Draw failed and could not be fully rolled back; please contact support",
            details=merged,
            charge_outcome=ChargeOutcome.CONTACT_SUPPORT,
        )
        self.original = original
        self.failed_steps = failed_steps


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class InsufficientBalance(GachaServiceError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, requested: int, available: int):
        super().__init__(
            f"Insufficient push medal balance. Requested: {requested}, Available: {available}",
            details={"requested": requested, "available": available},
        )


class InvalidAmount(GachaServiceError):
    kind = ErrorKind.INVALID_AMOUNT

    def __init__(self, amount: int, message: Optional[str] = None):
        super().__init__(
            message or f"Invalid push medal amount: {amount}",
            details={"amount": amount},
        )


class InvalidTransfer(GachaServiceError):
    kind = ErrorKind.INVALID_TRANSFER

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Invalid transfer: {message}", details=details)


class LedgerTransferFailed(GachaServiceError):
    kind = ErrorKind.LEDGER_TRANSFER_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Push medal transfer failed: {message}", details=details)


class LedgerTransactionFailed(GachaServiceError):
    kind = ErrorKind.LEDGER_TRANSACTION_FAILED

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"Push medal transaction failed: {message}", details=details)
