"""
Ledger client interface.

The transfer core talks to the Kaspa node through this abstraction; wire
encoding, connection management and Schnorr signing live in the concrete
implementation.
"""
from abc import ABC, abstractmethod
from typing import Callable, List, Protocol, Sequence

from ..models import PaymentOutput, PendingTransaction, UtxoChangedEvent, UtxoEntry

UtxoListener = Callable[[UtxoChangedEvent], None]


class BalanceSource(Protocol):
    """What the poll signal needs: balance and transaction count by address."""

    def get_balance(self, address: str) -> int:
        ...

    def get_transaction_count(self, address: str) -> int:
        ...


class LedgerClient(ABC):
    """
    Abstract base class for ledger client implementations.

    Implementations raise LedgerError for transport failures and deliver
    UTXO-changed notifications as validated UtxoChangedEvent objects,
    possibly from another thread.
    """

    @abstractmethod
    def subscribe_utxos_changed(self, addresses: Sequence[str]) -> None:
        """
        Subscribe to UTXO-changed notifications for addresses.

        Raises:
            LedgerError: If the subscription request fails
        """
        pass

    @abstractmethod
    def unsubscribe_utxos_changed(self, addresses: Sequence[str]) -> None:
        pass

    @abstractmethod
    def add_listener(self, callback: UtxoListener) -> None:
        """Register a callback for UTXO-changed notifications."""
        pass

    @abstractmethod
    def remove_listener(self, callback: UtxoListener) -> None:
        pass

    @abstractmethod
    def reconnect(self) -> None:
        """
        Drop and re-establish the node connection.

        Raises:
            LedgerError: If the connection cannot be re-established
        """
        pass

    @abstractmethod
    def get_utxos_by_addresses(self, addresses: Sequence[str]) -> List[UtxoEntry]:
        """Fetch the current UTXO entries of addresses, in ledger order."""
        pass

    @abstractmethod
    def get_balance(self, address: str) -> int:
        """Spendable balance of an address in sompi."""
        pass

    @abstractmethod
    def get_transaction_count(self, address: str) -> int:
        """Number of transactions that touched an address."""
        pass

    @abstractmethod
    def create_transactions(
        self,
        priority_entries: Sequence[UtxoEntry],
        entries: Sequence[UtxoEntry],
        outputs: Sequence[PaymentOutput],
        change_address: str,
        priority_fee: int,
    ) -> List[PendingTransaction]:
        """
        Build fee-paying transactions.

        ``priority_entries`` are always consumed; ``entries`` only as far as
        needed to cover outputs and fees. Remaining value goes to
        ``change_address``.

        Raises:
            LedgerError: If the inputs cannot cover outputs and fees
        """
        pass

    @abstractmethod
    def sign_transaction(
        self,
        transaction: PendingTransaction,
        private_keys: Sequence[str],
        check_fully_signed: bool = True,
    ) -> None:
        """
        Sign every input the keys can sign.

        With ``check_fully_signed=False`` inputs the keys cannot sign
        (e.g. script-hash inputs) are left with an empty signature script.
        """
        pass

    @abstractmethod
    def create_input_signature(self, transaction: PendingTransaction, input_index: int, private_key: str) -> bytes:
        """Signature push (opcode, signature, sighash type) for one input."""
        pass

    @abstractmethod
    def fill_input(self, transaction: PendingTransaction, input_index: int, signature_script: bytes) -> None:
        """Set the unlock script of one input."""
        pass

    @abstractmethod
    def submit_transaction(self, transaction: PendingTransaction) -> str:
        """
        Submit a signed transaction.

        Returns:
            Transaction id

        Raises:
            LedgerError: If the node rejects the transaction
        """
        pass
