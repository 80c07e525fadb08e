"""
In-memory ledger implementation.

A deterministic simulation of the node used for dry runs, examples and
tests. It keeps a UTXO set, computes fees and change like the node's
transaction generator, checks script-hash spends against their redeem
script and emits UTXO-changed notifications on maturation.
"""
import hashlib
import logging
import threading
from typing import Dict, List, Optional, Sequence, Set

from ..address import (
    VERSION_PUBKEY,
    VERSION_SCRIPT_HASH,
    address_payload,
    blake2b_256,
    decode_address,
    encode_address,
)
from ..config import NetworkConfig
from ..exceptions import LedgerError
from ..keys import x_only_public_key
from ..models import (
    Outpoint,
    PaymentOutput,
    PendingTransaction,
    TransactionInput,
    UtxoChangedEvent,
    UtxoEntry,
)
from .base import LedgerClient, UtxoListener

SIGHASH_ALL = 0x01
OP_DATA_65 = 0x41


class InMemoryLedger(LedgerClient):
    """
    Simulated ledger.

    Submitted transactions mature immediately when ``auto_mature`` is set;
    otherwise they stay pending until ``mature()`` is called. Failures can
    be injected through ``subscribe_failures``, ``reconnect_failures``,
    ``submit_error`` and ``balance_error``.
    """

    def __init__(self, network: str = "mainnet", auto_mature: bool = True, logger: Optional[logging.Logger] = None):
        self.network = network
        self.prefix = NetworkConfig.get_prefix(network)
        self.auto_mature = auto_mature
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()
        self._utxos: List[UtxoEntry] = []
        self._reserved: Set[Outpoint] = set()
        self._pending: Dict[str, PendingTransaction] = {}
        self._tx_counts: Dict[str, int] = {}
        self._listeners: List[UtxoListener] = []
        self._subscriptions: Set[str] = set()
        self._counter = 0

        self.submitted: List[PendingTransaction] = []
        self.subscribe_failures = 0
        self.reconnect_failures = 0
        self.reconnects = 0
        self.submit_error: Optional[str] = None
        self.balance_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Test and simulation helpers
    # ------------------------------------------------------------------

    def _next_id(self, *parts: str) -> str:
        self._counter += 1
        data = "|".join((str(self._counter),) + parts).encode("utf-8")
        return hashlib.blake2b(data, digest_size=32).hexdigest()

    def fund(self, address: str, amount: int) -> UtxoEntry:
        """Create a matured UTXO of ``amount`` sompi at ``address``."""
        with self._lock:
            entry = UtxoEntry(
                outpoint=Outpoint(transaction_id=self._next_id("fund", address), index=0),
                address=address,
                amount=amount,
                is_coinbase=True,
            )
            self._utxos.append(entry)
            return entry

    @property
    def listeners(self) -> List[UtxoListener]:
        return list(self._listeners)

    @property
    def subscriptions(self) -> Set[str]:
        return set(self._subscriptions)

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def emit(self, event: UtxoChangedEvent) -> None:
        """Deliver a notification to every listener."""
        for listener in list(self._listeners):
            listener(event)

    def mature(self, transaction_id: str) -> None:
        """
        Apply a submitted transaction to the UTXO set and notify listeners.

        Raises:
            LedgerError: If the transaction is not pending
        """
        with self._lock:
            tx = self._pending.pop(transaction_id, None)
            if tx is None:
                raise LedgerError(f"Transaction {transaction_id} is not pending")

            spent = {i.previous_outpoint for i in tx.inputs}
            removed = [e for e in self._utxos if e.outpoint in spent]
            self._utxos = [e for e in self._utxos if e.outpoint not in spent]
            self._reserved -= spent

            added = []
            for index, output in enumerate(tx.outputs):
                entry = UtxoEntry(
                    outpoint=Outpoint(transaction_id=tx.id, index=index),
                    address=output.address,
                    amount=output.amount,
                )
                self._utxos.append(entry)
                added.append(entry)

            touched = {address_payload(e.address) for e in removed + added}
            for payload in touched:
                self._tx_counts[payload] = self._tx_counts.get(payload, 0) + 1

            subscribed = self._subscriptions
            event = UtxoChangedEvent(
                added=[e for e in added if address_payload(e.address) in subscribed],
                removed=[e for e in removed if address_payload(e.address) in subscribed],
            )

        self.logger.debug(f"Matured transaction {transaction_id}")
        if event.added or event.removed:
            self.emit(event)

    # ------------------------------------------------------------------
    # LedgerClient
    # ------------------------------------------------------------------

    def subscribe_utxos_changed(self, addresses: Sequence[str]) -> None:
        with self._lock:
            if self.subscribe_failures > 0:
                self.subscribe_failures -= 1
                raise LedgerError("Subscription failed: connection closed")
            self._subscriptions.update(address_payload(a) for a in addresses)

    def unsubscribe_utxos_changed(self, addresses: Sequence[str]) -> None:
        with self._lock:
            self._subscriptions.difference_update(address_payload(a) for a in addresses)

    def add_listener(self, callback: UtxoListener) -> None:
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: UtxoListener) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def reconnect(self) -> None:
        with self._lock:
            self.reconnects += 1
            if self.reconnect_failures > 0:
                self.reconnect_failures -= 1
                raise LedgerError("Reconnect failed")

    def get_utxos_by_addresses(self, addresses: Sequence[str]) -> List[UtxoEntry]:
        wanted = {address_payload(a) for a in addresses}
        with self._lock:
            return [e for e in self._utxos if address_payload(e.address) in wanted]

    def get_balance(self, address: str) -> int:
        if self.balance_error:
            raise LedgerError(self.balance_error)
        return sum(e.amount for e in self.get_utxos_by_addresses([address]))

    def get_transaction_count(self, address: str) -> int:
        with self._lock:
            return self._tx_counts.get(address_payload(address), 0)

    def create_transactions(
        self,
        priority_entries: Sequence[UtxoEntry],
        entries: Sequence[UtxoEntry],
        outputs: Sequence[PaymentOutput],
        change_address: str,
        priority_fee: int,
    ) -> List[PendingTransaction]:
        required = sum(o.amount for o in outputs) + priority_fee
        selected = list(priority_entries)
        total = sum(e.amount for e in selected)
        for entry in entries:
            if total >= required:
                break
            if entry in selected:
                continue
            selected.append(entry)
            total += entry.amount

        if total < required:
            raise LedgerError(f"Insufficient funds: inputs {total} sompi, required {required} sompi")

        tx_outputs = list(outputs)
        change = total - required
        if change > 0:
            tx_outputs.append(PaymentOutput(address=change_address, amount=change))

        with self._lock:
            tx_id = self._next_id("tx", *(str(e.outpoint) for e in selected))
        tx = PendingTransaction(
            id=tx_id,
            inputs=[TransactionInput(previous_outpoint=e.outpoint, amount=e.amount) for e in selected],
            outputs=tx_outputs,
            change_address=change_address,
            fee=priority_fee,
        )
        return [tx]

    def _owner(self, outpoint: Outpoint) -> Optional[UtxoEntry]:
        with self._lock:
            return next((e for e in self._utxos if e.outpoint == outpoint), None)

    def _signature_push(self, transaction: PendingTransaction, input_index: int, private_key: str) -> bytes:
        digest = hashlib.blake2b(
            f"{private_key}|{transaction.id}|{input_index}".encode("utf-8"), digest_size=64
        ).digest()
        return bytes([OP_DATA_65]) + digest + bytes([SIGHASH_ALL])

    def sign_transaction(
        self,
        transaction: PendingTransaction,
        private_keys: Sequence[str],
        check_fully_signed: bool = True,
    ) -> None:
        key_addresses = {
            address_payload(encode_address(self.prefix, VERSION_PUBKEY, x_only_public_key(k))): k
            for k in private_keys
        }
        for index, tx_input in enumerate(transaction.inputs):
            owner = self._owner(tx_input.previous_outpoint)
            key = key_addresses.get(address_payload(owner.address)) if owner else None
            if key is None:
                if check_fully_signed:
                    raise LedgerError(f"Input {index} cannot be signed with the given keys")
                continue
            tx_input.signature_script = self._signature_push(transaction, index, key)

    def create_input_signature(self, transaction: PendingTransaction, input_index: int, private_key: str) -> bytes:
        if not 0 <= input_index < len(transaction.inputs):
            raise LedgerError(f"Input index {input_index} out of range")
        return self._signature_push(transaction, input_index, private_key)

    def fill_input(self, transaction: PendingTransaction, input_index: int, signature_script: bytes) -> None:
        if not 0 <= input_index < len(transaction.inputs):
            raise LedgerError(f"Input index {input_index} out of range")
        transaction.inputs[input_index].signature_script = signature_script

    def _check_script_hash_spend(self, owner: UtxoEntry, signature_script: bytes) -> None:
        _, version, payload = decode_address(owner.address)
        if version != VERSION_SCRIPT_HASH:
            return
        # Signature push, then the redeem script as the last push
        if len(signature_script) < 67 or signature_script[0] != OP_DATA_65:
            raise LedgerError("Script-hash input is missing its signature")
        redeem = _last_push(signature_script[66:])
        if redeem is None or blake2b_256(redeem) != payload:
            raise LedgerError("Redeem script does not match the script-hash address")

    def submit_transaction(self, transaction: PendingTransaction) -> str:
        with self._lock:
            if self.submit_error:
                raise LedgerError(self.submit_error)

            for index, tx_input in enumerate(transaction.inputs):
                outpoint = tx_input.previous_outpoint
                owner = self._owner(outpoint)
                if owner is None or outpoint in self._reserved:
                    raise LedgerError(f"Input {index} spends a missing or already spent output {outpoint}")
                if not tx_input.signature_script:
                    raise LedgerError(f"Input {index} is not signed")
                self._check_script_hash_spend(owner, tx_input.signature_script)

            self._reserved.update(i.previous_outpoint for i in transaction.inputs)
            self._pending[transaction.id] = transaction
            self.submitted.append(transaction)

        self.logger.debug(f"Accepted transaction {transaction.id} into the simulated mempool")
        if self.auto_mature:
            self.mature(transaction.id)
        return transaction.id


def _last_push(script: bytes) -> Optional[bytes]:
    """Decode a script consisting of exactly one data push."""
    if not script:
        return None
    opcode = script[0]
    if 0x01 <= opcode <= 0x4B:
        start, length = 1, opcode
    elif opcode == 0x4C and len(script) >= 2:
        start, length = 2, script[1]
    elif opcode == 0x4D and len(script) >= 3:
        start, length = 3, int.from_bytes(script[1:3], "little")
    elif opcode == 0x4E and len(script) >= 5:
        start, length = 5, int.from_bytes(script[1:5], "little")
    else:
        return None
    if len(script) != start + length:
        return None
    return script[start:start + length]
