"""
KRC Transfer SDK - commit-reveal token transfers on the Kaspa ledger.
"""
from .version import __version__
from .client import TransferClient
from .config import NetworkConfig, TransferSettings
from .models import (
    FungibleTransferRequest,
    NftTransferRequest,
    ProtocolTag,
    TransferResult,
    UtxoChangedEvent,
    UtxoEntry,
)
from .state import TransferState
from .keys import TreasuryIdentity, load_treasury
from .orchestrator import TransferOrchestrator
from .batch import BatchReport, BatchRunner
from .bookkeeping import Bookkeeper, JsonFileBookkeeper, NullBookkeeper
from .inputs import load_transfer_file
from .exceptions import (
    TransferError,
    InsufficientFundsError,
    SubscriptionError,
    SubmissionError,
    ConfirmationTimeoutError,
    AcceptanceUnconfirmed,
    BookkeepingError,
    EnvelopeError,
    LedgerError,
    InvalidTransitionError,
    InputFileError,
)

__all__ = [
    "TransferClient",
    "NetworkConfig",
    "TransferSettings",
    "FungibleTransferRequest",
    "NftTransferRequest",
    "ProtocolTag",
    "TransferResult",
    "UtxoChangedEvent",
    "UtxoEntry",
    "TransferState",
    "TreasuryIdentity",
    "load_treasury",
    "TransferOrchestrator",
    "BatchReport",
    "BatchRunner",
    "Bookkeeper",
    "JsonFileBookkeeper",
    "NullBookkeeper",
    "load_transfer_file",
    "TransferError",
    "InsufficientFundsError",
    "SubscriptionError",
    "SubmissionError",
    "ConfirmationTimeoutError",
    "AcceptanceUnconfirmed",
    "BookkeepingError",
    "EnvelopeError",
    "LedgerError",
    "InvalidTransitionError",
    "InputFileError",
    "__version__",
]
