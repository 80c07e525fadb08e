"""
Persistence of transfer and payment records.

The orchestrator only talks to the ``Bookkeeper`` interface. Every call it
makes is isolated: a failing bookkeeper is logged and never affects the
on-ledger transfer, which cannot be reverted.
"""
import json
import logging
import os
import stat
import time
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import portalocker

from .exceptions import BookkeepingError

logger = logging.getLogger(__name__)

REBATE_LEDGER = "nacho_rebate_kas"
POOL_LEDGER = "balance"


class TransferStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class TransferField(str, Enum):
    """Status fields of a pending transfer record."""
    NACHO_TRANSFER_STATUS = "nacho_transfer_status"
    KAS_TRANSFER_STATUS = "kas_transfer_status"


class Bookkeeper(ABC):
    """Interface of the persistence collaborator."""

    @abstractmethod
    def record_pending_transfer(
        self,
        commit_transaction_id: str,
        amount: int,
        counterpart_amount: int,
        destination: str,
        script_hash_address: str,
        nacho_status: TransferStatus = TransferStatus.PENDING,
        kas_status: TransferStatus = TransferStatus.PENDING,
    ) -> None:
        """
        Record a transfer whose commit has been submitted.

        The token leg comes first and the KAS leg second, in the same order
        as ``nacho_status`` and ``kas_status``. Stores that key records as
        (KAS amount, token amount) must swap the two amounts.

        Args:
            commit_transaction_id: Id of the commit transaction (record key)
            amount: Token amount being transferred, in the token's smallest unit
            counterpart_amount: KAS rebate (sompi) booked against the transfer,
                already multiplied by three for a full rebate
            destination: Recipient address
            script_hash_address: Envelope address funded by the commit
            nacho_status: Status of the token leg
            kas_status: Status of the KAS leg
        """
        pass

    @abstractmethod
    def update_transfer_status(self, script_hash_address: str, field: TransferField, status: TransferStatus) -> None:
        pass

    @abstractmethod
    def record_payment(self, destination: str, amount: int, transaction_id: str, script_hash_address: str) -> None:
        pass

    @abstractmethod
    def adjust_balance(self, wallet: str, delta: int, ledger_name: str) -> None:
        """Add ``delta`` (may be negative) to ``wallet`` in the named balance ledger."""
        pass


class NullBookkeeper(Bookkeeper):
    """Bookkeeper that only logs. Default when no store is configured."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def record_pending_transfer(
        self,
        commit_transaction_id,
        amount,
        counterpart_amount,
        destination,
        script_hash_address,
        nacho_status=TransferStatus.PENDING,
        kas_status=TransferStatus.PENDING,
    ):
        self.logger.debug(f"Pending transfer {commit_transaction_id}: {amount} to {destination}")

    def update_transfer_status(self, script_hash_address, field, status):
        self.logger.debug(f"Transfer at {script_hash_address}: {TransferField(field).value} = {TransferStatus(status).value}")

    def record_payment(self, destination, amount, transaction_id, script_hash_address):
        self.logger.debug(f"Payment of {amount} to {destination} in {transaction_id}")

    def adjust_balance(self, wallet, delta, ledger_name):
        self.logger.debug(f"Balance {ledger_name} of {wallet} adjusted by {delta}")


def _empty_store() -> Dict[str, Any]:
    return {"transfers": {}, "payments": [], "balances": {}}


class JsonFileBookkeeper(Bookkeeper):
    """
    Process-safe JSON file bookkeeper.

    Every operation is a locked read-modify-write of the whole file, so
    several processes may share one store.
    """

    def __init__(self, store_path: Optional[str] = None, lock_timeout: float = 10):
        """
        Args:
            store_path: Path of the JSON store. Defaults to ``KRC_BOOKKEEPING_PATH``
                or ``~/.krc-transfer/bookkeeping.json``
            lock_timeout: Seconds to wait for the file lock
        """
        if store_path:
            self.store_path = Path(store_path)
        else:
            default_path = os.environ.get(
                "KRC_BOOKKEEPING_PATH",
                os.path.expanduser("~/.krc-transfer/bookkeeping.json"),
            )
            self.store_path = Path(default_path)
        self.lock_timeout = lock_timeout
        self._ensure_store()

    def _ensure_store(self) -> None:
        directory = self.store_path.parent
        directory.mkdir(parents=True, exist_ok=True)

        if not self.store_path.exists():
            with open(self.store_path, "w") as f:
                json.dump(_empty_store(), f)

        if os.name == "posix":
            os.chmod(self.store_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def _lock(self) -> portalocker.Lock:
        return portalocker.Lock(str(self.store_path) + ".lock", timeout=self.lock_timeout)

    def _read_unlocked(self) -> Dict[str, Any]:
        try:
            with open(self.store_path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return _empty_store()
        except json.JSONDecodeError as e:
            # A damaged store is never reset
            raise BookkeepingError(f"Bookkeeping store {self.store_path} is corrupt: {e}") from e
        if not isinstance(data, dict):
            raise BookkeepingError(f"Bookkeeping store {self.store_path} is corrupt: expected a JSON object")
        for key, value in _empty_store().items():
            data.setdefault(key, value)
        return data

    def _write_unlocked(self, data: Dict[str, Any]) -> None:
        temp_path = self.store_path.with_suffix(self.store_path.suffix + ".tmp")
        with temp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        if os.name == "posix":
            os.chmod(temp_path, stat.S_IRUSR | stat.S_IWUSR)  # 0600
        os.replace(temp_path, self.store_path)

    def read(self) -> Dict[str, Any]:
        """Read the whole store under the lock."""
        try:
            with self._lock():
                return self._read_unlocked()
        except (portalocker.exceptions.LockException, OSError) as e:
            raise BookkeepingError(f"Failed to read bookkeeping store {self.store_path}: {e}") from e

    def _update(self, mutate) -> None:
        try:
            with self._lock():
                data = self._read_unlocked()
                mutate(data)
                self._write_unlocked(data)
        except (portalocker.exceptions.LockException, OSError) as e:
            raise BookkeepingError(f"Failed to update bookkeeping store {self.store_path}: {e}") from e

    def record_pending_transfer(
        self,
        commit_transaction_id,
        amount,
        counterpart_amount,
        destination,
        script_hash_address,
        nacho_status=TransferStatus.PENDING,
        kas_status=TransferStatus.PENDING,
    ):
        record = {
            "commit_transaction_id": commit_transaction_id,
            "amount": str(amount),
            "counterpart_amount": str(counterpart_amount),
            "destination": destination,
            "script_hash_address": script_hash_address,
            TransferField.NACHO_TRANSFER_STATUS.value: TransferStatus(nacho_status).value,
            TransferField.KAS_TRANSFER_STATUS.value: TransferStatus(kas_status).value,
            "created_at": int(time.time()),
        }

        def mutate(data):
            data["transfers"][commit_transaction_id] = record

        self._update(mutate)

    def update_transfer_status(self, script_hash_address, field, status):
        field = TransferField(field)
        status = TransferStatus(status)

        def mutate(data):
            matches = [t for t in data["transfers"].values() if t["script_hash_address"] == script_hash_address]
            if not matches:
                raise BookkeepingError(f"No transfer recorded for {script_hash_address}")
            for transfer in matches:
                transfer[field.value] = status.value

        self._update(mutate)

    def record_payment(self, destination, amount, transaction_id, script_hash_address):
        payment = {
            "destination": destination,
            "amount": str(amount),
            "transaction_id": transaction_id,
            "script_hash_address": script_hash_address,
            "created_at": int(time.time()),
        }

        def mutate(data):
            data["payments"].append(payment)

        self._update(mutate)

    def adjust_balance(self, wallet, delta, ledger_name):
        def mutate(data):
            ledger = data["balances"].setdefault(ledger_name, {})
            ledger[wallet] = str(int(ledger.get(wallet, "0")) + int(delta))

        self._update(mutate)

    def get_transfer(self, commit_transaction_id: str) -> Optional[Dict[str, Any]]:
        return self.read()["transfers"].get(commit_transaction_id)

    def list_payments(self) -> List[Dict[str, Any]]:
        return list(self.read()["payments"])

    def get_balance(self, wallet: str, ledger_name: str) -> int:
        return int(self.read()["balances"].get(ledger_name, {}).get(wallet, "0"))

    def clear(self) -> None:
        """Remove all records (for testing)"""
        self._update(lambda data: data.update(_empty_store()))
