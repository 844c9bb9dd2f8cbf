"""
Fee breakdown and charge reference helpers.

All amounts are integers in the currency's minor unit (cents). The
platform fee is rounded half-up to a whole minor unit and the provider
receives the remainder, so the split always sums to the total.

Usage:
    from payments.pricing import calculate_breakdown, generate_reference

    breakdown = calculate_breakdown(1000)
    # PaymentBreakdown(total_amount=1000, platform_fee=100, provider_payout=900)

    reference = generate_reference("CS")
    # "CS_1718000000000_K3J9XQ2M7A1B"
"""

from __future__ import annotations

import logging
import secrets
import string
import threading
import time
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.conf import settings

from payments.exceptions import PaymentValidationError

logger = logging.getLogger(__name__)

REFERENCE_SUFFIX_LENGTH = 12
_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits

_reference_lock = threading.Lock()
_last_reference_millis = 0


@dataclass(frozen=True)
class PaymentBreakdown:
    """
    How a charge splits between platform and provider.

    Attributes:
        total_amount: Amount charged to the client
        platform_fee: Platform share
        provider_payout: Provider share (total_amount - platform_fee)
    """

    total_amount: int
    platform_fee: int
    provider_payout: int

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _fee_percentage(value) -> Decimal:
    try:
        percentage = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise PaymentValidationError(
            f"Invalid platform fee percentage: {value!r}",
            details={"fee_percentage": str(value)},
        ) from e

    if not Decimal("0") <= percentage < Decimal("1"):
        raise PaymentValidationError(
            "Platform fee percentage must be in [0, 1)",
            details={"fee_percentage": str(value)},
        )
    return percentage


def calculate_breakdown(total_amount: int, fee_percentage=None) -> PaymentBreakdown:
    """
    Split a total into platform fee and provider payout.

    Args:
        total_amount: Positive integer amount in minor units
        fee_percentage: Decimal fraction (defaults to PLATFORM_FEE_PERCENTAGE)

    Returns:
        PaymentBreakdown whose parts sum to total_amount

    Raises:
        PaymentValidationError: Non-positive total or percentage outside [0, 1)
    """
    if isinstance(total_amount, bool) or not isinstance(total_amount, int) or total_amount <= 0:
        raise PaymentValidationError(
            "Total amount must be a positive integer in minor units",
            details={"total_amount": total_amount},
        )

    if fee_percentage is None:
        fee_percentage = settings.PLATFORM_FEE_PERCENTAGE
    percentage = _fee_percentage(fee_percentage)

    platform_fee = int(
        (Decimal(total_amount) * percentage).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    )
    return PaymentBreakdown(
        total_amount=total_amount,
        platform_fee=platform_fee,
        provider_payout=total_amount - platform_fee,
    )


def validate_amount(amount: int) -> None:
    """
    Check an amount against the configured charge bounds.

    Raises:
        PaymentValidationError: If amount is outside
            PAYMENT_MIN_AMOUNT..PAYMENT_MAX_AMOUNT
    """
    minimum = settings.PAYMENT_MIN_AMOUNT
    maximum = settings.PAYMENT_MAX_AMOUNT
    if amount < minimum or amount > maximum:
        raise PaymentValidationError(
            f"Amount must be between {minimum} and {maximum} minor units",
            details={"amount": amount, "min": minimum, "max": maximum},
        )


def _next_reference_millis() -> int:
    """Epoch milliseconds, strictly increasing within this process."""
    global _last_reference_millis
    with _reference_lock:
        now = int(time.time() * 1000)
        if now <= _last_reference_millis:
            now = _last_reference_millis + 1
        _last_reference_millis = now
        return now


def generate_reference(prefix: str = "CS") -> str:
    """
    Generate a unique gateway reference.

    Format: "{PREFIX}_{epoch millis}_{random}", upper-cased. The timestamp
    component never repeats within a process, so two consecutive
    references always differ.

    Args:
        prefix: Letters identifying the reference kind ("CS" for charges)

    Raises:
        PaymentValidationError: If prefix is not alphabetic
    """
    if not prefix or not prefix.isalpha() or not prefix.isascii():
        raise PaymentValidationError(
            "Reference prefix must be non-empty ASCII letters",
            details={"prefix": prefix},
        )

    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    reference = f"{prefix.upper()}_{_next_reference_millis()}_{suffix}"

    logger.debug("Generated payment reference", extra={"reference": reference})
    return reference
