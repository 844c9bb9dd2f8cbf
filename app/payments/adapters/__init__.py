"""
Payment adapters for external services.

This module provides the gateway interface used by the escrow services
and its Paystack implementation. All external payment API calls should go
through these adapters to ensure consistent error handling, timeouts,
idempotency, and observability.

Usage:
    from payments.adapters import PaystackAdapter

    gateway = PaystackAdapter.from_settings()
    verification = gateway.verify_charge("CS_1718000000000_K3J9XQ2M7A1B")
"""

from payments.adapters.base import (
    ChargeInitialization,
    ChargeVerification,
    GatewayOwnerMixin,
    PaymentGateway,
    RefundResult,
    TransferResult,
    TransferVerification,
)
from payments.adapters.paystack_adapter import (
    IdempotencyKeyGenerator,
    PaystackAdapter,
    backoff_delay,
)

__all__ = [
    "ChargeInitialization",
    "ChargeVerification",
    "GatewayOwnerMixin",
    "IdempotencyKeyGenerator",
    "PaymentGateway",
    "PaystackAdapter",
    "RefundResult",
    "TransferResult",
    "TransferVerification",
    "backoff_delay",
]
