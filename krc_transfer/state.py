"""
Transfer state machine.

    Init -> UtxoSelected -> CommitSubmitted -> CommitConfirmed
         -> RevealSubmitted -> RevealConfirmed -> Verified

TimedOut and Failed are absorbing. Every non-terminal state may fall into
Failed; only the two waiting states may fall into TimedOut.
"""
import logging
from enum import Enum
from typing import List, Optional

from .exceptions import InvalidTransitionError


class TransferState(str, Enum):
    """States of a single commit-reveal transfer."""
    INIT = "Init"
    UTXO_SELECTED = "UtxoSelected"
    COMMIT_SUBMITTED = "CommitSubmitted"
    COMMIT_CONFIRMED = "CommitConfirmed"
    REVEAL_SUBMITTED = "RevealSubmitted"
    REVEAL_CONFIRMED = "RevealConfirmed"
    VERIFIED = "Verified"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"


TERMINAL_STATES = frozenset({TransferState.VERIFIED, TransferState.TIMED_OUT, TransferState.FAILED})

ALLOWED = {
    TransferState.INIT: {TransferState.UTXO_SELECTED, TransferState.FAILED},
    TransferState.UTXO_SELECTED: {TransferState.COMMIT_SUBMITTED, TransferState.FAILED},
    TransferState.COMMIT_SUBMITTED: {TransferState.COMMIT_CONFIRMED, TransferState.TIMED_OUT, TransferState.FAILED},
    TransferState.COMMIT_CONFIRMED: {TransferState.REVEAL_SUBMITTED, TransferState.FAILED},
    TransferState.REVEAL_SUBMITTED: {TransferState.REVEAL_CONFIRMED, TransferState.TIMED_OUT, TransferState.FAILED},
    TransferState.REVEAL_CONFIRMED: {TransferState.VERIFIED, TransferState.FAILED},
    TransferState.VERIFIED: set(),
    TransferState.TIMED_OUT: set(),
    TransferState.FAILED: set(),
}


def assert_transition(old: TransferState, new: TransferState) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransitionError(f"Illegal transfer transition: {old.value} -> {new.value}")


class TransferStateMachine:
    """
    Finite-state record of one in-flight transfer.

    Owned by exactly one orchestrator run and discarded once terminal.
    """

    def __init__(self, label: str = "", logger: Optional[logging.Logger] = None):
        self.label = label
        self.logger = logger or logging.getLogger(__name__)
        self.state = TransferState.INIT
        self.history: List[TransferState] = [TransferState.INIT]
        self.reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, new: TransferState, reason: Optional[str] = None) -> TransferState:
        """
        Move to ``new``.

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        assert_transition(self.state, new)
        self.logger.debug(f"{self.label}: {self.state.value} -> {new.value}")
        self.state = new
        self.history.append(new)
        if reason:
            self.reason = reason
        return new

    def fail(self, reason: str) -> TransferState:
        return self.advance(TransferState.FAILED, reason)

    def time_out(self, reason: str) -> TransferState:
        return self.advance(TransferState.TIMED_OUT, reason)
