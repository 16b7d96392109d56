"""Typed failures raised by the credit ledger services.

Every error carries an HTTP status, a stable ``code`` for clients and a
``context`` dict with the structured detail needed to render a precise
message (remaining attempts, cooldown left, current balance, ...).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import status


class CreditError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "credit_error"
    retryable: bool = False

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_context(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for key, value in self.context.items():
            payload[key] = value.isoformat() if isinstance(value, datetime) else value
        if self.retryable:
            payload["retryable"] = True
        return payload


class NotFound(CreditError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, resource: str, **context: Any) -> None:
        super().__init__(f"{resource} not found", resource=resource, **context)


class PackageNotFound(NotFound):
    code = "package_not_found"

    def __init__(self, package_id: int) -> None:
        super().__init__("Credit package", package_id=package_id)


class InsufficientBalance(CreditError):
    status_code = status.HTTP_409_CONFLICT
    code = "insufficient_balance"

    def __init__(self, wallet_type: str, balance: int, requested: int) -> None:
        super().__init__(
            "Insufficient balance",
            wallet_type=wallet_type,
            balance=balance,
            requested=requested,
        )


class InvalidAmount(CreditError):
    code = "invalid_amount"


class InvalidTransition(CreditError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class NotOwner(InvalidTransition):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_owner"

    def __init__(self, request_id: int) -> None:
        super().__init__("Top-up request belongs to another user", request_id=request_id, reason="NotOwner")


class AlreadyResolved(InvalidTransition):
    code = "already_resolved"

    def __init__(self, request_id: int, current_status: str) -> None:
        super().__init__(
            f"Top-up request is already {current_status.lower()}",
            request_id=request_id,
            status=current_status,
            reason="AlreadyResolved",
        )


class PendingRequestExists(CreditError):
    status_code = status.HTTP_409_CONFLICT
    code = "pending_request_exists"

    def __init__(self, request_id: int | None) -> None:
        super().__init__("A pending top-up request already exists", pending_request_id=request_id)


class PaymentMethodUnavailable(CreditError):
    code = "payment_method_unavailable"

    def __init__(self, method: str) -> None:
        super().__init__("Payment method is not available", payment_method=method)


class RedemptionNotYetAvailable(CreditError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "redemption_not_available"

    def __init__(self, available_at: datetime, retry_after_seconds: int) -> None:
        super().__init__(
            "Free credits are not available yet",
            available_at=available_at,
            retry_after_seconds=retry_after_seconds,
        )


class Unauthorized(CreditError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "unauthorized"

    def __init__(self, capability: str) -> None:
        super().__init__("Missing required capability", capability=capability)


class Expired(CreditError):
    status_code = status.HTTP_410_GONE
    code = "otp_expired"

    def __init__(self) -> None:
        super().__init__("Verification code has expired")


class AttemptsExhausted(CreditError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "otp_attempts_exhausted"

    def __init__(self, max_attempts: int) -> None:
        super().__init__("Too many failed attempts, request a new code", max_attempts=max_attempts)


class InvalidCode(CreditError):
    code = "otp_invalid_code"

    def __init__(self, remaining_attempts: int) -> None:
        super().__init__("Invalid verification code", remaining_attempts=remaining_attempts)


class OtpCooldown(CreditError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "otp_cooldown"

    def __init__(self, wait_seconds: int) -> None:
        super().__init__("Please wait before requesting a new code", wait_seconds=wait_seconds)


class VerificationRequired(CreditError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "verification_required"

    def __init__(self, email: str, purpose: str) -> None:
        super().__init__("Email verification required", email=email, purpose=purpose)


class AccountExists(CreditError):
    status_code = status.HTTP_409_CONFLICT
    code = "account_exists"

    def __init__(self, email: str) -> None:
        super().__init__("An account with this email already exists", email=email)


class StorageFailure(CreditError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "storage_failure"
    retryable = True

    def __init__(self, operation: str) -> None:
        super().__init__("Storage failure, the operation was rolled back", operation=operation)


class ReasonRequired(CreditError):
    code = "reason_required"

    def __init__(self) -> None:
        super().__init__("A rejection reason is required")
