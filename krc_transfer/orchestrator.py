"""
Commit-reveal transfer orchestrator.

Drives one transfer through the state machine:

1. select a treasury UTXO;
2. build the envelope and submit the commit funding its script-hash address;
3. wait for the commit to mature;
4. submit the reveal spending the envelope output with the redeem script;
5. wait for the reveal to mature;
6. verify the reveal output is visible at its receiving address.

Errors are mapped to the terminal states Failed or TimedOut and reported
in the returned ``TransferResult``; ``run()`` only raises for programming
errors.
"""
import logging
from typing import List, Optional

from .bookkeeping import POOL_LEDGER, REBATE_LEDGER, Bookkeeper, NullBookkeeper, TransferField, TransferStatus
from .config import TransferSettings
from .exceptions import (
    AcceptanceUnconfirmed,
    ConfirmationTimeoutError,
    EnvelopeError,
    InsufficientFundsError,
    InvalidTransitionError,
    LedgerError,
    SubmissionError,
    TransferError,
)
from .keys import TreasuryIdentity
from .ledger.base import BalanceSource, LedgerClient
from .models import (
    FungibleTransferRequest,
    PaymentOutput,
    PendingTransaction,
    ProtocolTag,
    TransferRequest,
    TransferResult,
    UtxoEntry,
)
from .script import EnvelopeScript, build_envelope
from .selector import select_utxo
from .state import TransferState, TransferStateMachine
from .utils import sompi_to_kaspa
from .watcher import ConfirmationWatcher, WatchPhase

logger = logging.getLogger(__name__)

FULL_REBATE_MULTIPLIER = 3


class _TransferRun:
    """Mutable bookkeeping of one run; discarded with the result."""

    def __init__(self, request: TransferRequest, treasury: TreasuryIdentity, machine: TransferStateMachine):
        self.request = request
        self.treasury = treasury
        self.machine = machine
        self.envelope: Optional[EnvelopeScript] = None
        self.commit_transaction_id: Optional[str] = None
        self.reveal_transaction_id: Optional[str] = None
        self.accepted = False

    @property
    def is_fungible(self) -> bool:
        return self.request.protocol == ProtocolTag.KRC20

    @property
    def receiving_address(self) -> str:
        """Where the reveal sends the envelope value."""
        return self.treasury.address if self.is_fungible else self.request.destination

    def result(self) -> TransferResult:
        return TransferResult(
            request=self.request,
            state=self.machine.state,
            script_hash_address=self.envelope.script_hash_address if self.envelope else None,
            commit_transaction_id=self.commit_transaction_id,
            reveal_transaction_id=self.reveal_transaction_id,
            accepted=self.accepted,
            error=self.machine.reason if self.machine.state != TransferState.VERIFIED else None,
            history=list(self.machine.history),
        )


class TransferOrchestrator:
    """
    Runs commit-reveal transfers against a ledger client.

    One orchestrator may run many transfers, but only one at a time: the
    treasury UTXO set is not locked.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        settings: Optional[TransferSettings] = None,
        bookkeeper: Optional[Bookkeeper] = None,
        balance_source: Optional[BalanceSource] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.ledger = ledger
        self.settings = settings or TransferSettings()
        self.logger = logger or logging.getLogger(__name__)
        self.bookkeeper = bookkeeper or NullBookkeeper(logger=self.logger)
        self.balance_source = balance_source

    def run(self, request: TransferRequest, treasury: TreasuryIdentity) -> TransferResult:
        """
        Execute one transfer end to end.

        Args:
            request: Fungible or NFT transfer request
            treasury: Treasury identity funding the commit

        Returns:
            TransferResult in a terminal state
        """
        machine = TransferStateMachine(label=request.describe(), logger=self.logger)
        run = _TransferRun(request, treasury, machine)
        watcher = ConfirmationWatcher(
            self.ledger, self.settings, balance_source=self.balance_source, logger=self.logger
        )

        self.logger.info(f"Starting {request.protocol.value} transfer: {request.describe()}")
        try:
            watcher.attach([treasury.address])
            self._execute(run, watcher)
        except InvalidTransitionError:
            raise
        except ConfirmationTimeoutError as e:
            self.logger.warning(f"Transfer timed out: {e}")
            if machine.state in (TransferState.COMMIT_SUBMITTED, TransferState.REVEAL_SUBMITTED):
                machine.time_out(str(e))
            else:
                machine.fail(str(e))
        except TransferError as e:
            self.logger.error(f"Transfer failed in state {machine.state.value}: {e}")
            machine.fail(str(e))
        finally:
            watcher.detach()

        result = run.result()
        self.logger.info(f"Transfer finished in state {result.state.value}: {request.describe()}")
        return result

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _execute(self, run: _TransferRun, watcher: ConfirmationWatcher) -> None:
        settings = self.settings
        protocol = run.request.protocol

        entries = self.ledger.get_utxos_by_addresses([run.treasury.address])
        total = sum(e.amount for e in entries)
        self.logger.info(f"Total treasury balance: {sompi_to_kaspa(total)} KAS in {len(entries)} UTXO(s)")
        selection = select_utxo(
            entries,
            settings.preferred_min_utxo,
            settings.absolute_min_utxo,
            settings.fixed_fee,
            settings.single_entry_fee_multiplier,
        )
        self.logger.info(
            f"Selected UTXO {selection.entry.outpoint} with amount {sompi_to_kaspa(selection.entry.amount)} KAS "
            f"(usable {sompi_to_kaspa(selection.usable_amount)} KAS)"
        )
        spendable = selection.usable_amount + sum(e.amount for e in entries if e != selection.entry)
        required = settings.commit_amount + settings.fixed_fee
        if spendable < required:
            raise InsufficientFundsError(
                f"Treasury cannot fund the commit: {sompi_to_kaspa(required)} KAS required, "
                f"{sompi_to_kaspa(spendable)} KAS spendable after fee reserve",
                required=required,
                available=spendable,
            )
        run.machine.advance(TransferState.UTXO_SELECTED)

        run.envelope = build_envelope(
            run.treasury.x_only_public_key,
            settings.marker(protocol),
            run.request.payload(),
            settings.network,
        )
        self.logger.info(f"Envelope script-hash address: {run.envelope.script_hash_address}")
        self._check_unused(run.envelope.script_hash_address)

        run.commit_transaction_id = self._submit_commit(run, selection.entry, entries)
        run.machine.advance(TransferState.COMMIT_SUBMITTED)

        if run.is_fungible:
            self._record_pending(run)

        self.logger.info(f"Waiting for commit {run.commit_transaction_id} to mature")
        matured = watcher.await_maturation(
            run.envelope.script_hash_address,
            run.commit_transaction_id,
            WatchPhase.COMMIT,
            settings.commit_timeout(protocol),
            notify_address=run.treasury.address,
        )
        if not matured:
            if settings.commit_timeout_is_fatal(protocol):
                raise ConfirmationTimeoutError(
                    f"Commit transaction {run.commit_transaction_id} did not mature within "
                    f"{settings.commit_timeout(protocol):g} seconds",
                    phase=WatchPhase.COMMIT.value,
                )
            self.logger.warning(
                f"Commit transaction {run.commit_transaction_id} not confirmed within "
                f"{settings.commit_timeout(protocol):g} seconds; proceeding to reveal"
            )

        commit_output = self._commit_output(run)
        run.machine.advance(TransferState.COMMIT_CONFIRMED)

        run.reveal_transaction_id = self._submit_reveal(run, commit_output)
        run.machine.advance(TransferState.REVEAL_SUBMITTED)

        self.logger.info(f"Waiting for reveal {run.reveal_transaction_id} to mature")
        matured = watcher.await_maturation(
            run.envelope.script_hash_address,
            run.reveal_transaction_id,
            WatchPhase.REVEAL,
            settings.reveal_timeout(protocol),
            notify_address=run.treasury.address,
        )
        if not matured:
            raise ConfirmationTimeoutError(
                f"Reveal transaction {run.reveal_transaction_id} did not mature within "
                f"{settings.reveal_timeout(protocol):g} seconds",
                phase=WatchPhase.REVEAL.value,
            )
        self.logger.info(f"Reveal transaction {run.reveal_transaction_id} matured")
        run.machine.advance(TransferState.REVEAL_CONFIRMED)

        try:
            self._verify(run)
            run.accepted = True
        except AcceptanceUnconfirmed as e:
            self.logger.info(f"Transfer pending: {e}")
        run.machine.advance(TransferState.VERIFIED)
        if run.accepted and run.is_fungible:
            self._record_completed(run)

    def _sign_and_submit(self, transactions: List[PendingTransaction], treasury: TreasuryIdentity, what: str) -> str:
        transaction_id = None
        for tx in transactions:
            self.ledger.sign_transaction(tx, [treasury.private_key])
            self.logger.debug(f"{what.capitalize()} transaction signed with id {tx.id}")
            transaction_id = self.ledger.submit_transaction(tx)
            self.logger.info(f"Submitted {what} transaction: {transaction_id}")
        if transaction_id is None:
            raise SubmissionError(f"Ledger client produced no {what} transaction")
        return transaction_id

    def _submit_commit(self, run: _TransferRun, selected: UtxoEntry, entries: List[UtxoEntry]) -> str:
        output = PaymentOutput(address=run.envelope.script_hash_address, amount=self.settings.commit_amount)
        try:
            transactions = self.ledger.create_transactions(
                priority_entries=[selected],
                entries=[e for e in entries if e != selected],
                outputs=[output],
                change_address=run.treasury.address,
                priority_fee=self.settings.fixed_fee,
            )
            return self._sign_and_submit(transactions, run.treasury, "commit")
        except LedgerError as e:
            raise SubmissionError(f"Commit transaction failed: {e}") from e

    def _check_unused(self, address: str) -> None:
        """
        Refuse to commit to a script-hash address that already holds outputs.

        The address is fixed by the payload, so a leftover output (e.g. from
        an earlier timed-out run) would pass for this commit's maturation.

        Raises:
            EnvelopeError: If the address is not empty
        """
        leftovers = self.ledger.get_utxos_by_addresses([address])
        if leftovers:
            outpoints = ", ".join(str(e.outpoint) for e in leftovers)
            raise EnvelopeError(
                f"Script-hash address {address} already holds {len(leftovers)} output(s) ({outpoints}); "
                f"reconcile them before transferring again"
            )

    def _commit_output(self, run: _TransferRun) -> UtxoEntry:
        """
        Fetch the commit's own output at the script-hash address.

        Raises:
            EnvelopeError: If the commit output is missing, or the address
                holds any other output
        """
        address = run.envelope.script_hash_address
        entries = self.ledger.get_utxos_by_addresses([address])
        if not entries:
            raise EnvelopeError(f"No commit output found at {address}; cannot reveal")
        own = [e for e in entries if e.transaction_id == run.commit_transaction_id]
        if len(own) != 1 or len(entries) > 1:
            raise EnvelopeError(
                f"Unexpected {len(entries)} outputs at {address} "
                f"({len(own)} from commit {run.commit_transaction_id}); refusing to reveal"
            )
        self.logger.debug(f"Commit output {own[0].outpoint} holds {own[0].amount} sompi")
        return own[0]

    def _submit_reveal(self, run: _TransferRun, commit_output: UtxoEntry) -> str:
        fee = self.settings.fixed_fee
        amount = commit_output.amount - fee
        if amount <= 0:
            raise EnvelopeError(f"Commit output of {commit_output.amount} sompi cannot cover the reveal fee")

        output = PaymentOutput(address=run.receiving_address, amount=amount)
        try:
            transactions = self.ledger.create_transactions(
                priority_entries=[commit_output],
                entries=[],
                outputs=[output],
                change_address=run.treasury.address,
                priority_fee=fee,
            )
            if len(transactions) != 1:
                raise SubmissionError(f"Expected a single reveal transaction, got {len(transactions)}")
            tx = transactions[0]

            self.ledger.sign_transaction(tx, [run.treasury.private_key], check_fully_signed=False)
            input_index = tx.unsigned_input_index()
            if input_index == -1:
                raise EnvelopeError(f"Reveal transaction {tx.id} has no unsigned script-hash input")
            signature = self.ledger.create_input_signature(tx, input_index, run.treasury.private_key)
            self.ledger.fill_input(tx, input_index, run.envelope.signature_script(signature))

            transaction_id = self.ledger.submit_transaction(tx)
        except LedgerError as e:
            raise SubmissionError(f"Reveal transaction failed: {e}") from e

        self.logger.info(f"Submitted reveal transaction: {transaction_id}")
        return transaction_id

    def _verify(self, run: _TransferRun) -> None:
        """
        Check that the reveal output is visible at its receiving address.

        Raises:
            AcceptanceUnconfirmed: If it is not visible yet
        """
        address = run.receiving_address
        try:
            entries = self.ledger.get_utxos_by_addresses([address])
        except LedgerError as e:
            self.logger.error(f"Error checking reveal transaction status: {e}")
            raise AcceptanceUnconfirmed(f"could not fetch entries of {address}: {e}") from e

        if not any(e.transaction_id == run.reveal_transaction_id for e in entries):
            raise AcceptanceUnconfirmed(
                f"reveal transaction {run.reveal_transaction_id} has not been accepted yet at {address}"
            )
        self.logger.info(f"Reveal transaction has been accepted: {run.reveal_transaction_id}")

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _book(self, what: str, call, *args) -> None:
        try:
            call(*args)
        except Exception as e:
            self.logger.error(f"Failed to {what}: {e}")

    def _record_pending(self, run: _TransferRun) -> None:
        request: FungibleTransferRequest = run.request
        rebate = request.rebate_amount
        counterpart = rebate * FULL_REBATE_MULTIPLIER if request.full_rebate else rebate
        p2sh = run.envelope.script_hash_address

        self._book(
            "record pending transfer",
            self.bookkeeper.record_pending_transfer,
            run.commit_transaction_id,
            int(request.amount),
            counterpart,
            request.destination,
            p2sh,
            TransferStatus.PENDING,
            TransferStatus.PENDING,
        )
        self._book(
            f"adjust {REBATE_LEDGER} of {request.destination}",
            self.bookkeeper.adjust_balance,
            request.destination,
            -counterpart,
            REBATE_LEDGER,
        )
        # Pool is debited the full multiple regardless of rebate eligibility
        self._book(
            f"adjust {POOL_LEDGER} of {run.treasury.address}",
            self.bookkeeper.adjust_balance,
            run.treasury.address,
            -rebate * FULL_REBATE_MULTIPLIER,
            POOL_LEDGER,
        )

    def _record_completed(self, run: _TransferRun) -> None:
        p2sh = run.envelope.script_hash_address
        self._book(
            "update transfer status",
            self.bookkeeper.update_transfer_status,
            p2sh,
            TransferField.NACHO_TRANSFER_STATUS,
            TransferStatus.COMPLETED,
        )
        self._book(
            "record payment",
            self.bookkeeper.record_payment,
            run.request.destination,
            int(run.request.amount),
            run.reveal_transaction_id,
            p2sh,
        )
