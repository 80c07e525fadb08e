"""
Tests for the sequential batch runner.
"""
from unittest.mock import MagicMock

import pytest

from krc_transfer.batch import BatchRunner, required_funds
from krc_transfer.config import TransferSettings
from krc_transfer.models import NftTransferRequest, TransferResult
from krc_transfer.orchestrator import TransferOrchestrator
from krc_transfer.state import TransferState
from krc_transfer.utils import kaspa_to_sompi

from conftest import DEST_ADDRESS


def nft(token_id):
    return NftTransferRequest(ticker="KASPUNKS", token_id=str(token_id), destination=DEST_ADDRESS)


def result_for(request, state):
    return TransferResult(request=request, state=state, accepted=state == TransferState.VERIFIED)


@pytest.fixture
def orchestrator():
    orchestrator = MagicMock(spec=TransferOrchestrator)
    orchestrator.settings = TransferSettings(batch_delay=7)
    orchestrator.run.side_effect = lambda request, treasury: result_for(request, TransferState.VERIFIED)
    return orchestrator


def test_required_funds():
    settings = TransferSettings()
    assert settings.required_funds_per_transfer == kaspa_to_sompi(5) + kaspa_to_sompi("0.0001")
    assert required_funds(settings, 3) == 3 * settings.required_funds_per_transfer
    assert required_funds(settings, 0) == 0


def test_runs_sequentially_in_order(orchestrator, treasury):
    sleep = MagicMock()
    requests = [nft(i) for i in range(3)]

    report = BatchRunner(orchestrator, treasury, sleep=sleep).run(requests)

    assert [c.args[0] for c in orchestrator.run.call_args_list] == requests
    assert all(c.args[1] is treasury for c in orchestrator.run.call_args_list)
    assert report.all_succeeded
    assert report.counts() == {"total": 3, "succeeded": 3, "pending": 0, "failed": 0, "timed_out": 0}


def test_delay_between_transfers_only(orchestrator, treasury):
    sleep = MagicMock()
    BatchRunner(orchestrator, treasury, sleep=sleep).run([nft(i) for i in range(4)])
    assert sleep.call_count == 3
    sleep.assert_called_with(7)


def test_single_transfer_has_no_delay(orchestrator, treasury):
    sleep = MagicMock()
    BatchRunner(orchestrator, treasury, sleep=sleep).run([nft(1)])
    sleep.assert_not_called()


def test_failures_do_not_stop_batch(orchestrator, treasury):
    states = iter([TransferState.FAILED, TransferState.TIMED_OUT, TransferState.VERIFIED])
    orchestrator.run.side_effect = lambda request, treasury: result_for(request, next(states))

    report = BatchRunner(orchestrator, treasury, sleep=MagicMock()).run([nft(i) for i in range(3)])

    assert orchestrator.run.call_count == 3
    assert not report.all_succeeded
    assert len(report.failed) == 1
    assert len(report.timed_out) == 1
    assert len(report.succeeded) == 1


def test_raising_transfer_is_recorded(orchestrator, treasury):
    def run(request, treasury):
        if request.token_id == "1":
            raise RuntimeError("unexpected")
        return result_for(request, TransferState.VERIFIED)

    orchestrator.run.side_effect = run
    report = BatchRunner(orchestrator, treasury, sleep=MagicMock()).run([nft(0), nft(1), nft(2)])

    assert len(report.results) == 2
    assert len(report.errors) == 1
    assert report.errors[0].request.token_id == "1"
    assert report.errors[0].error == "unexpected"
    assert report.counts()["failed"] == 1
    assert report.counts()["total"] == 3


def test_pending_transfers_counted(orchestrator, treasury):
    orchestrator.run.side_effect = lambda request, treasury: TransferResult(
        request=request, state=TransferState.VERIFIED, accepted=False
    )
    report = BatchRunner(orchestrator, treasury, sleep=MagicMock()).run([nft(1)])
    assert report.all_succeeded
    assert report.counts()["pending"] == 1


def test_empty_batch(orchestrator, treasury):
    report = BatchRunner(orchestrator, treasury).run([])
    orchestrator.run.assert_not_called()
    assert report.counts()["total"] == 0


def test_batch_against_simulated_ledger(funded_ledger, treasury, fast_settings):
    orchestrator = TransferOrchestrator(funded_ledger, fast_settings)
    report = BatchRunner(orchestrator, treasury).run([nft(i) for i in range(3)])

    assert report.all_succeeded
    assert len(funded_ledger.submitted) == 6
    assert funded_ledger.get_balance(DEST_ADDRESS) == 3 * (kaspa_to_sompi(5) - fast_settings.fixed_fee)
