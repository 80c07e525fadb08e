"""
Tests for the transfer state machine.
"""
import pytest

from krc_transfer.exceptions import InvalidTransitionError
from krc_transfer.state import ALLOWED, TERMINAL_STATES, TransferState, TransferStateMachine, assert_transition

HAPPY_PATH = [
    TransferState.UTXO_SELECTED,
    TransferState.COMMIT_SUBMITTED,
    TransferState.COMMIT_CONFIRMED,
    TransferState.REVEAL_SUBMITTED,
    TransferState.REVEAL_CONFIRMED,
    TransferState.VERIFIED,
]


def reachable_from(start):
    seen, stack = set(), [start]
    while stack:
        state = stack.pop()
        for nxt in ALLOWED[state]:
            if nxt not in seen:
                seen.add(nxt)
                stack.append(nxt)
    return seen


def test_happy_path():
    machine = TransferStateMachine("test")
    for state in HAPPY_PATH:
        machine.advance(state)
    assert machine.state == TransferState.VERIFIED
    assert machine.is_terminal
    assert machine.history == [TransferState.INIT] + HAPPY_PATH


def test_only_terminal_states_are_absorbing():
    terminal = {s for s in TransferState if not ALLOWED[s]}
    assert terminal == set(TERMINAL_STATES) == {
        TransferState.VERIFIED, TransferState.TIMED_OUT, TransferState.FAILED,
    }
    assert reachable_from(TransferState.INIT) >= set(TERMINAL_STATES)


def test_utxo_selected_not_revisited_after_commit():
    assert TransferState.UTXO_SELECTED not in reachable_from(TransferState.COMMIT_SUBMITTED)


@pytest.mark.parametrize("state", [s for s in TransferState if s not in TERMINAL_STATES])
def test_every_live_state_can_fail(state):
    assert TransferState.FAILED in ALLOWED[state]


def test_timeout_only_from_waiting_states():
    sources = {s for s in TransferState if TransferState.TIMED_OUT in ALLOWED[s]}
    assert sources == {TransferState.COMMIT_SUBMITTED, TransferState.REVEAL_SUBMITTED}


def test_illegal_transitions():
    with pytest.raises(InvalidTransitionError):
        assert_transition(TransferState.INIT, TransferState.COMMIT_SUBMITTED)
    with pytest.raises(InvalidTransitionError):
        assert_transition(TransferState.UTXO_SELECTED, TransferState.TIMED_OUT)
    with pytest.raises(InvalidTransitionError):
        assert_transition(TransferState.COMMIT_SUBMITTED, TransferState.REVEAL_SUBMITTED)


def test_terminal_state_is_final():
    machine = TransferStateMachine()
    machine.fail("boom")
    assert machine.reason == "boom"
    with pytest.raises(InvalidTransitionError):
        machine.advance(TransferState.UTXO_SELECTED)
    with pytest.raises(InvalidTransitionError):
        machine.fail("again")


def test_time_out_records_reason():
    machine = TransferStateMachine()
    machine.advance(TransferState.UTXO_SELECTED)
    machine.advance(TransferState.COMMIT_SUBMITTED)
    machine.time_out("no commit")
    assert machine.state == TransferState.TIMED_OUT
    assert machine.reason == "no commit"
