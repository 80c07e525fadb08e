"""
Confirmation watcher.

Resolves "has transaction X settled at address Y" from two signals:

* the event signal: UTXO-changed notifications delivered by the ledger
  client, possibly on another thread;
* the poll signal: balance (and transaction count) of the script-hash
  address, queried every ``poll_interval`` seconds up to
  ``poll_max_attempts`` times.

Whichever fires first resolves the watch. A watch that sees neither before
its deadline resolves as not matured; the caller decides what that means.
"""
import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from cachetools import TTLCache

from ._rate_limited_log import rate_limited_log
from .address import address_payload
from .config import TransferSettings
from .exceptions import LedgerError, SubscriptionError
from .ledger.base import BalanceSource, LedgerClient
from .models import UtxoChangedEvent

logger = logging.getLogger(__name__)


class WatchPhase(str, Enum):
    COMMIT = "commit"
    REVEAL = "reveal"


class WatchSignal(str, Enum):
    """What resolved a watch."""
    EVENT = "event"
    POLL = "poll"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    ERROR = "error"


class ConfirmationWatch:
    """
    One pending confirmation.

    Tagged by ``(notify_address, expected_transaction_id)`` for the event
    signal and by ``watched_address`` for the poll signal. Resolution is
    single-shot: the first call to ``resolve()`` wins, later ones are
    ignored.
    """

    def __init__(
        self,
        watched_address: str,
        expected_transaction_id: str,
        phase: WatchPhase,
        deadline: float,
        notify_address: Optional[str] = None,
    ):
        self.watched_address = watched_address
        self.expected_transaction_id = expected_transaction_id
        self.phase = phase
        self.deadline = deadline
        self.notify_address = notify_address or watched_address
        self.matured = False
        self.signal: Optional[WatchSignal] = None
        self.poll_attempts = 0
        self._lock = threading.Lock()
        self._resolved = threading.Event()

    def __repr__(self) -> str:
        return (
            f"ConfirmationWatch({self.phase.value}, {self.watched_address}, "
            f"{self.expected_transaction_id}, matured={self.matured})"
        )

    @property
    def key(self) -> Tuple[str, str]:
        return address_payload(self.notify_address), self.expected_transaction_id

    @property
    def resolved(self) -> bool:
        return self._resolved.is_set()

    def resolve(self, matured: bool, signal: WatchSignal) -> bool:
        """
        Resolve the watch once.

        Returns:
            True if this call resolved the watch, False if it was already
            resolved
        """
        with self._lock:
            if self._resolved.is_set():
                return False
            self.matured = matured
            self.signal = signal
            self._resolved.set()
            return True

    def cancel(self) -> bool:
        return self.resolve(False, WatchSignal.CANCELLED)

    def wait(self, timeout: float) -> bool:
        return self._resolved.wait(timeout)


class ConfirmationWatcher:
    """
    Tracks confirmation watches for one orchestrator run.

    Usage:
        watcher = ConfirmationWatcher(ledger, settings)
        watcher.attach([treasury.address])
        try:
            matured = watcher.await_maturation(p2sh, commit_id, WatchPhase.COMMIT, 180)
        finally:
            watcher.detach()
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: TransferSettings,
        balance_source: Optional[BalanceSource] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ledger = ledger
        self.settings = settings
        self.balance_source = balance_source or ledger
        self.logger = logger or logging.getLogger(__name__)
        self.clock = clock

        self._lock = threading.RLock()
        self._watches: List[ConfirmationWatch] = []
        # Changes seen before their watch was opened
        self._seen = TTLCache(maxsize=1024, ttl=settings.notification_ttl)
        self._subscribed: List[str] = []
        self._attached = False

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    def attach(self, addresses: Sequence[str]) -> None:
        """
        Subscribe to notifications for ``addresses`` and register the listener.

        A failed subscription is retried once after reconnecting.

        Raises:
            SubscriptionError: If the retry fails too
        """
        addresses = list(addresses)
        self.logger.info(f"Subscribing to UTXO changes for {', '.join(addresses)}")
        try:
            self.ledger.subscribe_utxos_changed(addresses)
        except LedgerError as e:
            self.logger.warning(f"Subscription failed ({e}); reconnecting and retrying once")
            try:
                self.ledger.reconnect()
                self.ledger.subscribe_utxos_changed(addresses)
            except LedgerError as retry_error:
                self.logger.error(f"Subscription failed after reconnect: {retry_error}")
                raise SubscriptionError(f"Failed to subscribe to UTXO changes: {retry_error}") from retry_error

        with self._lock:
            self._subscribed = addresses
            if not self._attached:
                self.ledger.add_listener(self.on_event)
                self._attached = True

    def detach(self) -> None:
        """Remove the listener and drop the subscription."""
        with self._lock:
            attached, addresses = self._attached, self._subscribed
            self._attached = False
            self._subscribed = []

        if attached:
            self.ledger.remove_listener(self.on_event)
        if addresses:
            try:
                self.ledger.unsubscribe_utxos_changed(addresses)
            except LedgerError as e:
                self.logger.warning(f"Failed to unsubscribe from UTXO changes: {e}")

    # ------------------------------------------------------------------
    # Event signal
    # ------------------------------------------------------------------

    def on_event(self, event: UtxoChangedEvent) -> None:
        """
        Listener for UTXO-changed notifications.

        Irrelevant notifications and repeats for resolved watches are
        ignored. Matching changes are remembered so a watch opened after
        its notification still resolves.
        """
        with self._lock:
            addresses = list(self._subscribed)

        for address in addresses:
            for transaction_id in {e.transaction_id for e in event.added}:
                change = event.match(address, transaction_id)
                if change is None:
                    continue
                key = (address_payload(address), change.transaction_id)
                # Record and match under one lock so a concurrent open() sees one or the other
                with self._lock:
                    self._seen[key] = True
                    matched = [w for w in self._watches if w.key == key]
                self.logger.debug(
                    f"UTXO change at {address}: removed {change.removed_outpoint}, added {change.added_outpoint}"
                )

                if not matched:
                    rate_limited_log(
                        f"Notification for transaction {change.transaction_id} matches no open watch",
                        level="debug",
                        interval=self.settings.notification_ttl,
                        logger_instance=self.logger,
                    )
                for watch in matched:
                    if watch.resolve(True, WatchSignal.EVENT):
                        self.logger.info(f"Maturity event received for {watch.phase.value} transaction {watch.expected_transaction_id}")

    # ------------------------------------------------------------------
    # Watches
    # ------------------------------------------------------------------

    def open(
        self,
        watched_address: str,
        expected_transaction_id: str,
        phase: WatchPhase,
        timeout: float,
        notify_address: Optional[str] = None,
    ) -> ConfirmationWatch:
        """Open a watch; resolves immediately if its change was already seen."""
        watch = ConfirmationWatch(
            watched_address=watched_address,
            expected_transaction_id=expected_transaction_id,
            phase=phase,
            deadline=self.clock() + timeout,
            notify_address=notify_address,
        )
        with self._lock:
            self._watches.append(watch)
            seen = watch.key in self._seen
        if seen and watch.resolve(True, WatchSignal.EVENT):
            self.logger.info(f"Maturity event for {phase.value} transaction {expected_transaction_id} was already received")
        return watch

    def close(self, watch: ConfirmationWatch) -> None:
        with self._lock:
            if watch in self._watches:
                self._watches.remove(watch)

    def _poll_once(self, watch: ConfirmationWatch) -> bool:
        watch.poll_attempts += 1
        address = watch.watched_address
        try:
            balance = self.balance_source.get_balance(address)
            self.logger.info(f"Polling attempt {watch.poll_attempts}: {balance} sompi at {address}")
            if watch.phase == WatchPhase.COMMIT:
                return balance > 0
            return balance == 0 and self.balance_source.get_transaction_count(address) % 2 == 0
        except LedgerError:
            watch.resolve(False, WatchSignal.ERROR)
            raise

    def wait(self, watch: ConfirmationWatch) -> bool:
        """
        Block until the watch resolves or its deadline passes.

        The poll signal runs inline between waits on the watch's resolution
        event, so a notification resolves the wait within ``wait_slice``.

        Returns:
            Whether the transaction matured

        Raises:
            LedgerError: If a poll fails; the watch is abandoned
        """
        settings = self.settings
        next_poll = self.clock()
        try:
            while not watch.resolved:
                now = self.clock()
                if now >= watch.deadline:
                    if watch.resolve(False, WatchSignal.TIMEOUT):
                        self.logger.warning(
                            f"Timeout: {watch.phase.value} transaction {watch.expected_transaction_id} "
                            f"did not mature at {watch.watched_address}"
                        )
                    break

                polling = watch.poll_attempts < settings.poll_max_attempts
                if polling and now >= next_poll:
                    if self._poll_once(watch):
                        if watch.resolve(True, WatchSignal.POLL):
                            self.logger.info(f"{watch.phase.value.capitalize()} operation completed (balance check)")
                        break
                    next_poll = now + settings.poll_interval
                    if watch.poll_attempts >= settings.poll_max_attempts:
                        self.logger.info(f"Max polling attempts reached for {watch.watched_address}; waiting for events only")

                slice_end = min(now + settings.wait_slice, watch.deadline)
                if polling:
                    slice_end = min(slice_end, max(next_poll, now))
                watch.wait(max(slice_end - now, 0))
        finally:
            self.close(watch)
        return watch.matured

    def await_maturation(
        self,
        watched_address: str,
        expected_transaction_id: str,
        phase: WatchPhase,
        timeout: float,
        notify_address: Optional[str] = None,
    ) -> bool:
        """Open a watch and wait for it."""
        watch = self.open(watched_address, expected_transaction_id, phase, timeout, notify_address)
        return self.wait(watch)

    @property
    def open_watches(self) -> List[ConfirmationWatch]:
        with self._lock:
            return list(self._watches)
