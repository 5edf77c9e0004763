"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Auth/Actor
  4xxx: Order lifecycle
  6xxx: Payment
  9xxx: System

`retryable` marks outcomes the caller may retry with a fresh read
(ConcurrentModificationError) or the same idempotency key
(PaymentPortTimeoutError). Everything else is a final answer.
"""


class AppError(Exception):
    """Base application error."""

    retryable: bool = False

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- 1xxx: Auth/Actor ---

class InvalidCredentialsError(AppError):
    def __init__(self) -> None:
        super().__init__(1003, "Invalid or expired token", 401)


class UnauthorizedError(AppError):
    def __init__(self, actor_id: str, action: str) -> None:
        super().__init__(1006, f"Actor {actor_id} is not allowed to {action}", 403)


# --- 4xxx: Order ---

class InvalidOrderError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4001, f"Invalid order: {detail}", 422)


class OrderNotFoundError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(4004, f"Order not found: {order_id}", 404)


class InvalidTransitionError(AppError):
    _code = 4010
    _label = "transition"

    def __init__(self, from_status: str, to_status: str, detail: str = "") -> None:
        self.from_status = from_status
        self.to_status = to_status
        message = f"Invalid {self._label} {from_status} -> {to_status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(self._code, message, 409)


class InvalidPaymentTransitionError(InvalidTransitionError):
    _code = 4011
    _label = "payment transition"


class ConcurrentModificationError(AppError):
    retryable = True

    def __init__(self, order_id: str, expected_version: int) -> None:
        super().__init__(
            4012,
            f"Order {order_id} was modified concurrently (expected version {expected_version})",
            409,
        )


class DisputeNotFoundError(AppError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(4013, f"Dispute not found: {dispute_id}", 404)


class DisputeAlreadyOpenError(AppError):
    def __init__(self, order_id: str) -> None:
        super().__init__(4014, f"Order {order_id} already has an open dispute", 409)


class ReviewAlreadyExistsError(AppError):
    def __init__(self, order_id: str, reviewer_id: str) -> None:
        super().__init__(
            4015, f"Reviewer {reviewer_id} already reviewed order {order_id}", 409
        )


class ReviewNotAllowedError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(4016, f"Review not allowed: {detail}", 422)


# --- 6xxx: Payment ---

class PaymentFailedError(AppError):
    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(6001, f"Payment failed for order {order_id}: {reason}", 402)


class PaymentPortTimeoutError(AppError):
    retryable = True

    def __init__(self, order_id: str, operation: str) -> None:
        super().__init__(
            6002,
            f"Payment {operation} for order {order_id} timed out; outcome pending, retry later",
            504,
        )


class PaymentAmountMismatchError(AppError):
    def __init__(self, detail: str) -> None:
        super().__init__(6003, f"Payment amount mismatch: {detail}", 422)


class WebhookSignatureError(AppError):
    def __init__(self, detail: str = "Invalid webhook signature") -> None:
        super().__init__(6004, detail, 400)


# --- 9xxx: System ---

class InternalError(AppError):
    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(9002, detail, 500)


class PersistenceUnavailableError(AppError):
    def __init__(self, detail: str = "Order store unavailable") -> None:
        super().__init__(9003, detail, 503)
