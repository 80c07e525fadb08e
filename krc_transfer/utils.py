"""
Utility functions for the KRC transfer SDK.
"""
from decimal import Decimal, InvalidOperation
from typing import Union

# 1 KAS = 100_000_000 sompi
SOMPI_PER_KAS = 100_000_000


def kaspa_to_sompi(amount: Union[str, int, Decimal]) -> int:
    """
    Convert a KAS amount to sompi.

    Args:
        amount: Amount in KAS, e.g. "0.0001" or 5

    Returns:
        Integer amount in sompi

    Raises:
        ValueError: If the amount is not a number, is negative, or has
            more precision than one sompi
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid KAS amount: {amount!r}")

    if value < 0:
        raise ValueError(f"KAS amount must not be negative: {amount!r}")

    sompi = value * SOMPI_PER_KAS
    if sompi != sompi.to_integral_value():
        raise ValueError(f"KAS amount has more than 8 decimal places: {amount!r}")
    return int(sompi)


def sompi_to_kaspa(sompi: int) -> str:
    """Format a sompi amount as a KAS string with 8 decimal places."""
    return f"{Decimal(sompi) / SOMPI_PER_KAS:.8f}"
