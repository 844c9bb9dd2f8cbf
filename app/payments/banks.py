"""
South African bank name to gateway bank code mapping.

Providers enter their bank by name during onboarding; transfer recipients
need the gateway's bank code. An explicit code always wins over the table.
"""

from __future__ import annotations

from payments.exceptions import InvalidPayoutDestinationError

BANK_CODES: dict[str, str] = {
    "standard bank": "051",
    "fnb": "250655",
    "first national bank": "250655",
    "absa": "632005",
    "nedbank": "198765",
    "capitec": "470010",
    "capitec bank": "470010",
    "investec": "580105",
    "bidvest": "462005",
    "bidvest bank": "462005",
    "african bank": "430000",
    "tymebank": "678910",
    "tyme bank": "678910",
    "discovery": "679000",
    "discovery bank": "679000",
}


def _normalize(bank_name: str) -> str:
    return " ".join(bank_name.lower().split())


def resolve_bank_code(bank_name: str | None = None, bank_code: str | None = None) -> str:
    """
    Resolve the gateway bank code for a payout destination.

    Args:
        bank_name: Bank name as entered by the provider
        bank_code: Explicit gateway bank code, if already known

    Returns:
        The explicit code when given, else the code mapped from bank_name

    Raises:
        InvalidPayoutDestinationError: Neither a code nor a known bank name
    """
    if bank_code and bank_code.strip():
        return bank_code.strip()

    if bank_name:
        code = BANK_CODES.get(_normalize(bank_name))
        if code:
            return code

    raise InvalidPayoutDestinationError(
        f"Unknown bank: {bank_name!r}",
        details={"bank_name": bank_name},
    )
