"""
Paystack API adapter for payment operations.

This module provides the PaystackAdapter class which encapsulates all
Paystack API interactions. All gateway calls should go through this
adapter to ensure consistent error handling, timeouts, idempotency,
and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency support: transfers use the idempotency key as reference
- Injectable httpx transport for tests

Configuration (via settings):
- PAYSTACK_SECRET_KEY: Paystack API secret key
- PAYSTACK_BASE_URL: API base URL (default: https://api.paystack.co)
- PAYSTACK_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Error Mapping:
    Timeout / transport failure / 429 / 5xx -> TransientGatewayError
    Other 4xx or body "status": false      -> PermanentGatewayError
    4xx while creating a recipient         -> InvalidPayoutDestinationError

Usage:
    from payments.adapters import PaystackAdapter, IdempotencyKeyGenerator

    gateway = PaystackAdapter.from_settings()
    charge = gateway.initialize_charge(
        amount=50000,
        currency="ZAR",
        reference="CS_1718000000000_K3J9XQ2M7A1B",
        email="client@example.com",
        metadata={"booking_id": str(booking.id)},
    )

    key = IdempotencyKeyGenerator.generate("po", booking.id, attempt=1)
    gateway.execute_transfer(recipient_code, 45000, key, "Payout", "ZAR")
"""

from __future__ import annotations

import hashlib
import logging
import random
import time
import uuid
from typing import TYPE_CHECKING

import httpx
from django.conf import settings

from payments.adapters.base import (
    ChargeInitialization,
    ChargeVerification,
    RefundResult,
    TransferResult,
    TransferVerification,
)
from payments.exceptions import (
    InvalidPayoutDestinationError,
    PermanentGatewayError,
    TransientGatewayError,
)

if TYPE_CHECKING:
    from typing import Any

DEFAULT_BASE_URL = "https://api.paystack.co"

# Paystack transfer references: lowercase alphanumerics, '-' and '_', 16-50 chars
MAX_IDEMPOTENCY_KEY_LENGTH = 50


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for gateway transfer references.

    Format: "{operation}_{entity_hex}_{attempt}_{hash}"

    The key is a deterministic function of its inputs, so a worker that
    crashes and retries computes the same key. The hash component ties
    keys to this deployment's SECRET_KEY.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="po",
            entity_id=booking.id,
            attempt=2,
        )
        # Result: "po_550e8400e29b41d4a716446655440000_2_a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Short operation tag (e.g., 'po' for payout)
            entity_id: The domain entity ID
            attempt: Episode or attempt number

        Returns:
            Lowercase key of at most 50 characters
        """
        entity_str = str(entity_id)
        try:
            entity_part = uuid.UUID(entity_str).hex
        except ValueError:
            entity_part = "".join(ch for ch in entity_str.lower() if ch.isalnum())

        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        prefix = f"{operation.lower()}_"
        suffix = f"_{attempt}_{short_hash}"
        room = MAX_IDEMPOTENCY_KEY_LENGTH - len(prefix) - len(suffix)
        return f"{prefix}{entity_part[:room]}{suffix}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 30.0) -> float:
    """
    Calculate exponential backoff delay with jitter.

    Jitter prevents thundering herd when multiple workers retry simultaneously.

    Args:
        attempt: Current attempt number (0-indexed)
        base: Base delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds before jitter (default: 30.0)

    Returns:
        Delay in seconds with jitter (0-25% of calculated delay)

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 1: 2.0 - 2.5 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    # Add jitter (0-25% of delay)
    jitter = delay * random.uniform(0, 0.25)
    return delay + jitter


# =============================================================================
# Paystack Adapter
# =============================================================================


class PaystackAdapter:
    """
    Adapter for Paystack API operations.

    One httpx.Client per adapter instance. Safe to share within a Celery
    worker process; call close() (or use as a context manager) when done.

    Usage:
        with PaystackAdapter.from_settings() as gateway:
            verification = gateway.verify_charge(reference)
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, transport: httpx.BaseTransport | None = None) -> PaystackAdapter:
        """Build an adapter from Django settings."""
        return cls(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_BASE_URL,
            timeout=float(settings.PAYSTACK_API_TIMEOUT_SECONDS),
            transport=transport,
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PaystackAdapter:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Charges
    # =========================================================================

    def initialize_charge(
        self,
        amount: int,
        currency: str,
        reference: str,
        email: str,
        metadata: dict[str, Any] | None = None,
        callback_url: str | None = None,
    ) -> ChargeInitialization:
        """
        Initialize a hosted-checkout charge.

        Raises:
            TransientGatewayError: Gateway unreachable or overloaded
            PermanentGatewayError: Request rejected
        """
        payload: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "email": email,
            "metadata": metadata or {},
        }
        if callback_url:
            payload["callback_url"] = callback_url

        data = self._request(
            "POST",
            "/transaction/initialize",
            operation="initialize_charge",
            json=payload,
            log_context={"reference": reference, "amount": amount},
        )
        return ChargeInitialization(
            authorization_url=data.get("authorization_url", ""),
            access_code=data.get("access_code", ""),
            reference=data.get("reference", reference),
        )

    def verify_charge(self, reference: str) -> ChargeVerification:
        """Fetch the gateway's view of a charge."""
        data = self._request(
            "GET",
            f"/transaction/verify/{reference}",
            operation="verify_charge",
            log_context={"reference": reference},
        )
        return ChargeVerification(
            reference=data.get("reference", reference),
            status=data.get("status", ""),
            amount=int(data.get("amount") or 0),
            currency=data.get("currency", ""),
            raw_response=data,
        )

    # =========================================================================
    # Transfers
    # =========================================================================

    def create_transfer_recipient(
        self,
        bank_code: str,
        account_number: str,
        account_name: str,
        currency: str,
    ) -> str:
        """
        Register a bank account as a transfer recipient.

        Returns:
            Recipient code (RCP_xxx)

        Raises:
            InvalidPayoutDestinationError: Gateway rejected the bank details
            TransientGatewayError: Gateway unreachable or overloaded
        """
        data = self._request(
            "POST",
            "/transferrecipient",
            operation="create_transfer_recipient",
            json={
                "type": "basa",
                "name": account_name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": currency,
            },
            log_context={"bank_code": bank_code},
            rejection_error=InvalidPayoutDestinationError,
        )
        recipient_code = data.get("recipient_code")
        if not recipient_code:
            raise InvalidPayoutDestinationError(
                "Gateway returned no recipient code",
                details={"bank_code": bank_code},
            )
        return recipient_code

    def execute_transfer(
        self,
        recipient_code: str,
        amount: int,
        idempotency_key: str,
        reason: str,
        currency: str,
    ) -> TransferResult:
        """
        Request a transfer from the platform balance.

        The idempotency key is sent as the transfer reference; the gateway
        rejects a second transfer with the same reference, so retries after
        a dropped response cannot pay twice.
        """
        data = self._request(
            "POST",
            "/transfer",
            operation="execute_transfer",
            json={
                "source": "balance",
                "amount": amount,
                "recipient": recipient_code,
                "reason": reason,
                "reference": idempotency_key,
                "currency": currency,
            },
            log_context={"idempotency_key": idempotency_key, "amount": amount},
        )
        return TransferResult(
            transfer_code=data.get("transfer_code", ""),
            reference=data.get("reference", idempotency_key),
            status=data.get("status", ""),
            raw_response=data,
        )

    def verify_transfer(self, reference: str) -> TransferVerification:
        """Fetch the gateway's view of a transfer by reference."""
        data = self._request(
            "GET",
            f"/transfer/verify/{reference}",
            operation="verify_transfer",
            log_context={"reference": reference},
        )
        return TransferVerification(
            reference=data.get("reference", reference),
            status=data.get("status", ""),
            transfer_code=data.get("transfer_code"),
            raw_response=data,
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    def refund(self, charge_reference: str, amount: int | None = None) -> RefundResult:
        """
        Refund a charge, fully or partially.

        Args:
            charge_reference: Reference of the charge to refund
            amount: Minor units to refund (None for the full charge)
        """
        payload: dict[str, Any] = {"transaction": charge_reference}
        if amount is not None:
            payload["amount"] = amount

        data = self._request(
            "POST",
            "/refund",
            operation="refund",
            json=payload,
            log_context={"reference": charge_reference, "amount": amount},
        )
        return RefundResult(
            refund_id=str(data.get("id", "")),
            status=data.get("status", ""),
            amount=int(data.get("amount") or amount or 0),
            raw_response=data,
        )

    # =========================================================================
    # Transport
    # =========================================================================

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        json: dict[str, Any] | None = None,
        log_context: dict[str, Any] | None = None,
        rejection_error: type[PermanentGatewayError] = PermanentGatewayError,
    ) -> dict[str, Any]:
        """
        Send a request and return the envelope's "data" object.

        Raises:
            TransientGatewayError: Timeout, transport failure, 429 or 5xx
            PermanentGatewayError (or rejection_error): Any other rejection
        """
        logger = self.get_logger()
        context = {"operation": operation, **(log_context or {})}

        if not self.secret_key:
            raise PermanentGatewayError(
                "Payment gateway credentials are not configured",
                error_code="GATEWAY_NOT_CONFIGURED",
            )

        start_time = time.time()
        logger.info("Starting Paystack operation", extra=context)

        try:
            response = self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            logger.warning(
                "Paystack request timed out",
                extra={**context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise TransientGatewayError(
                f"Paystack {operation} timed out",
                error_code="GATEWAY_TIMEOUT",
            ) from e
        except httpx.TransportError as e:
            logger.warning(
                f"Paystack transport error: {e}",
                extra={**context, "duration_ms": (time.time() - start_time) * 1000},
            )
            raise TransientGatewayError(
                f"Paystack {operation} failed: {e}",
                error_code="GATEWAY_UNAVAILABLE",
            ) from e

        duration_ms = (time.time() - start_time) * 1000
        body = self._parse_body(response)
        message = body.get("message") or response.reason_phrase

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(
                "Paystack temporarily unavailable",
                extra={**context, "status_code": response.status_code, "duration_ms": duration_ms},
            )
            raise TransientGatewayError(
                f"Paystack {operation} unavailable: {message}",
                error_code="GATEWAY_RATE_LIMITED" if response.status_code == 429 else None,
                status_code=response.status_code,
            )

        if response.status_code >= 400 or body.get("status") is False:
            logger.error(
                f"Paystack rejected {operation}: {message}",
                extra={**context, "status_code": response.status_code, "duration_ms": duration_ms},
            )
            raise rejection_error(
                f"Paystack rejected {operation}: {message}",
                status_code=response.status_code,
            )

        logger.info(
            "Paystack operation completed",
            extra={**context, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        data = body.get("data")
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _parse_body(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
