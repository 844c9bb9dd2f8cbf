"""
Payment gateway interface and result types.

The escrow services depend only on the PaymentGateway protocol below.
PaystackAdapter is the production implementation; tests substitute a
Mock(spec=PaymentGateway) or an adapter over httpx.MockTransport.

All amounts are integers in minor units.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class ChargeInitialization:
    """
    Result of initializing a hosted-checkout charge.

    Attributes:
        authorization_url: URL the client is redirected to
        access_code: Gateway access code for inline checkout
        reference: Charge reference (echoes the one sent)
    """

    authorization_url: str
    access_code: str
    reference: str


@dataclass
class ChargeVerification:
    """
    Gateway view of a charge.

    Attributes:
        reference: Charge reference
        status: Gateway status ('success', 'failed', 'abandoned', ...)
        amount: Amount charged in minor units
        currency: Currency code
    """

    reference: str
    status: str
    amount: int
    currency: str
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass
class TransferResult:
    """
    Result of requesting a transfer.

    Attributes:
        transfer_code: Gateway transfer code (TRF_xxx)
        reference: Transfer reference (the idempotency key)
        status: Immediate status ('pending', 'success', 'failed', 'otp', ...)
    """

    transfer_code: str
    reference: str
    status: str
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferVerification:
    """
    Gateway view of a transfer.

    Attributes:
        reference: Transfer reference (the idempotency key)
        status: 'success', 'failed', 'reversed', 'pending', ...
        transfer_code: Gateway transfer code
    """

    reference: str
    status: str
    transfer_code: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result of a refund request.

    Attributes:
        refund_id: Gateway refund identifier
        status: Refund status ('pending', 'processed', ...)
        amount: Refunded amount in minor units
    """

    refund_id: str
    status: str
    amount: int
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Gateway Protocol
# =============================================================================


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Operations the escrow lifecycle needs from a payment gateway.

    Implementations raise TransientGatewayError for failures worth
    retrying and PermanentGatewayError for rejected requests.
    """

    def initialize_charge(
        self,
        amount: int,
        currency: str,
        reference: str,
        email: str,
        metadata: dict[str, Any] | None = None,
        callback_url: str | None = None,
    ) -> ChargeInitialization: ...

    def verify_charge(self, reference: str) -> ChargeVerification: ...

    def create_transfer_recipient(
        self,
        bank_code: str,
        account_number: str,
        account_name: str,
        currency: str,
    ) -> str: ...

    def execute_transfer(
        self,
        recipient_code: str,
        amount: int,
        idempotency_key: str,
        reason: str,
        currency: str,
    ) -> TransferResult: ...

    def verify_transfer(self, reference: str) -> TransferVerification: ...

    def refund(self, charge_reference: str, amount: int | None = None) -> RefundResult: ...

    def close(self) -> None: ...


class GatewayOwnerMixin:
    """
    Closes a gateway a service built for itself.

    Services that create their own adapter set _owned_gateway; injected
    gateways belong to the caller and are left open.

    Usage:
        with ReconciliationService() as service:
            service.run_sweep()
    """

    _owned_gateway: PaymentGateway | None = None

    def close(self) -> None:
        if self._owned_gateway is not None:
            self._owned_gateway.close()
            self._owned_gateway = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
