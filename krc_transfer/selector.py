"""
UTXO selection for commit funding.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .exceptions import InsufficientFundsError
from .models import UtxoEntry
from .utils import sompi_to_kaspa

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UtxoSelection:
    """
    Selected funding input.

    Attributes:
        entry: The chosen UTXO
        usable_amount: Value available for the transfer after reserving
            fees when the entry is the treasury's only UTXO
        sole_entry: Whether the candidate set had exactly one entry
    """
    entry: UtxoEntry
    usable_amount: int
    sole_entry: bool


def find_suitable_utxo(
    entries: Sequence[UtxoEntry],
    preferred_min: int,
    absolute_min: int,
) -> Optional[UtxoEntry]:
    """
    Return the first entry worth at least ``preferred_min``, else the first
    worth at least ``absolute_min``, else None.

    First match, not largest value: identical input always yields the
    same entry.
    """
    for entry in entries:
        if entry.amount >= preferred_min:
            return entry
    for entry in entries:
        if entry.amount >= absolute_min:
            return entry
    return None


def select_utxo(
    entries: Sequence[UtxoEntry],
    preferred_min: int,
    absolute_min: int,
    fixed_fee: int,
    fee_multiplier: int = 3,
) -> UtxoSelection:
    """
    Select the funding input for a commit transaction.

    If the treasury holds a single UTXO, ``fee_multiplier`` times the fixed
    fee is reserved from its usable amount, since no other input can pay
    the commit, reveal and residual fees.

    Raises:
        InsufficientFundsError: If no entry meets ``absolute_min``
    """
    total = sum(e.amount for e in entries)
    selected = find_suitable_utxo(entries, preferred_min, absolute_min)
    if selected is None:
        raise InsufficientFundsError(
            f"No suitable UTXO found. Each transfer requires at least {sompi_to_kaspa(absolute_min)} KAS. "
            f"Total balance: {sompi_to_kaspa(total)} KAS",
            required=absolute_min,
            available=total,
        )

    sole_entry = len(entries) == 1
    usable = selected.amount
    if sole_entry:
        usable -= fee_multiplier * fixed_fee

    logger.debug(f"Selected UTXO {selected.outpoint} with usable amount {usable} sompi")
    return UtxoSelection(entry=selected, usable_amount=usable, sole_entry=sole_entry)
