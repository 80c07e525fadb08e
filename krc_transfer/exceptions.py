"""
Exceptions for the KRC transfer SDK.
"""
from typing import Optional


class TransferError(Exception):
    """Base exception for all transfer-related errors."""
    pass


class InsufficientFundsError(TransferError):
    """Raised when no treasury UTXO meets the absolute minimum amount."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        self.required = required
        self.available = available
        super().__init__(message)


class SubscriptionError(TransferError):
    """Raised when the UTXO-changed subscription cannot be established."""
    pass


class SubmissionError(TransferError):
    """Raised when a transaction cannot be assembled, signed or submitted."""
    pass


class ConfirmationTimeoutError(TransferError):
    """Raised when a submitted transaction did not mature before its deadline."""

    def __init__(self, message: str, phase: Optional[str] = None):
        self.phase = phase
        super().__init__(message)


class AcceptanceUnconfirmed(TransferError):
    """
    The reveal matured but its output is not yet visible at the receiving
    address. Reported as pending, never as a failure.
    """
    pass


class BookkeepingError(TransferError):
    """Raised by persistence collaborators; always caught at the call site."""
    pass


class EnvelopeError(TransferError):
    """Raised for invalid payloads, scripts or unexpected script-hash state."""
    pass


class LedgerError(TransferError):
    """Transport or protocol error reported by a ledger client."""

    def __init__(self, message: str, code: int = -1):
        self.code = code
        super().__init__(message)


class InvalidTransitionError(TransferError):
    """Raised on an illegal transfer state-machine transition."""
    pass


class InputFileError(TransferError):
    """Raised when a batch input file cannot be parsed or validated."""

    def __init__(self, message: str, index: Optional[int] = None):
        self.index = index
        super().__init__(message)
