"""
Payment-specific exceptions for escrow, webhook and payout operations.

Exception Hierarchy:
    PaymentError (base for payment domain)
    ├── PaymentNotFoundError - Payment entity lookup failures
    ├── PaymentValidationError - Amount, fee or reference validation failures
    ├── AuthenticationError - Webhook signature missing or invalid (terminal)
    ├── MalformedWebhookError - Webhook body cannot be parsed (terminal)
    ├── OrphanEvent - Webhook references no known ledger entry
    └── GatewayError - Base for all payment gateway failures
        ├── TransientGatewayError - Network/timeout/429/5xx (retry with backoff)
        └── PermanentGatewayError - Rejected request (do not retry)
            └── InvalidPayoutDestinationError - Bad bank code/account/name

    StateConflict - Illegal escrow transition (inherits ConflictError)
    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock held elsewhere

Usage:
    from payments.exceptions import StateConflict, TransientGatewayError

    try:
        gateway.execute_transfer(...)
    except TransientGatewayError:
        time.sleep(backoff_delay(attempt))
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError, ConflictError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """
    Raised when a payment entity cannot be found.

    Example:
        entry = EscrowEntry.objects.filter(id=entry_id).first()
        if not entry:
            raise PaymentNotFoundError(
                f"EscrowEntry {entry_id} not found",
                details={"escrow_entry_id": str(entry_id)},
            )
    """

    default_error_code: str = "PAYMENT_NOT_FOUND"


class PaymentValidationError(PaymentError):
    """
    Raised when payment validation fails.

    Use for:
    - Amount outside the configured bounds
    - Fee percentage outside [0, 1)
    - Invalid reference prefixes
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"


# =============================================================================
# Webhook Exceptions
# =============================================================================


class AuthenticationError(PaymentError):
    """
    Raised when a webhook signature is missing or does not match.

    Terminal: the delivery is answered with 400 and never retried.
    Logged on the payments.security logger as a security event.
    """

    default_error_code: str = "WEBHOOK_AUTHENTICATION_FAILED"


class MalformedWebhookError(PaymentError):
    """
    Raised when an authenticated webhook body is not a usable envelope.

    Terminal: redelivering the same bytes cannot succeed.
    """

    default_error_code: str = "MALFORMED_WEBHOOK"


class OrphanEvent(PaymentError):
    """
    Raised when a gateway event references no known ledger entry.

    The event may have arrived before the entry was created (the gateway
    can call back before the initialize response is stored), or it may
    point at a data-integrity problem. Ingestion records it as processed
    with an error note and flags it for investigation rather than failing.
    """

    default_error_code: str = "ORPHAN_EVENT"


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(PaymentError):
    """
    Base exception for payment gateway failures.

    Use is_retryable to decide retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry

    Attributes:
        status_code: HTTP status returned by the gateway, if any
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code


class TransientGatewayError(GatewayError):
    """
    Network failure, timeout, rate limit or 5xx from the gateway.

    IMPORTANT: The operation may have succeeded on the gateway's side.
    Retries must reuse the same idempotency key / reference.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


class PermanentGatewayError(GatewayError):
    """
    The gateway rejected the request (invalid recipient, insufficient
    balance, unknown transaction). Retrying the same request cannot succeed;
    payouts move straight to FAILED and need manual intervention.
    """

    default_error_code: str = "GATEWAY_REJECTED"
    is_retryable: bool = False


class InvalidPayoutDestinationError(PermanentGatewayError):
    """
    The provider's bank details cannot receive a transfer.

    Raised for an unknown bank, missing account details, or when the
    gateway rejects recipient creation. The provider must update their
    bank details before the payout is re-queued.
    """

    default_error_code: str = "INVALID_PAYOUT_DESTINATION"


# =============================================================================
# Concurrency & State Exceptions
# =============================================================================


class StateConflict(ConflictError):
    """
    Raised when an escrow ledger transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed. The entry is never mutated
    when this is raised.

    Attributes:
        details: Contains escrow_entry_id, current_state and event
    """

    default_error_code: str = "STATE_CONFLICT"


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects concurrent modification.

    The record was modified by another process between read and update.
    The caller should retry with fresh data or abort.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"


class LockAcquisitionError(PaymentError):
    """
    Raised when a distributed lock cannot be acquired.

    Periodic jobs treat this as "another run is in progress" and skip.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    # Webhooks
    "AuthenticationError",
    "MalformedWebhookError",
    "OrphanEvent",
    # Gateway
    "GatewayError",
    "TransientGatewayError",
    "PermanentGatewayError",
    "InvalidPayoutDestinationError",
    # Concurrency & state
    "StateConflict",
    "StaleRecordError",
    "LockAcquisitionError",
]
