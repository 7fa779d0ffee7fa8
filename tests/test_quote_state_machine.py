import itertools

import pytest

from helpdesk.quotes.state import QuoteStateMachine, QuoteStatus

ALLOWED = {
    (QuoteStatus.DRAFT, QuoteStatus.SENT),
    (QuoteStatus.DRAFT, QuoteStatus.EXPIRED),
    (QuoteStatus.SENT, QuoteStatus.PENDING),
    (QuoteStatus.SENT, QuoteStatus.ACCEPTED),
    (QuoteStatus.SENT, QuoteStatus.REJECTED),
    (QuoteStatus.SENT, QuoteStatus.EXPIRED),
    (QuoteStatus.PENDING, QuoteStatus.ACCEPTED),
    (QuoteStatus.PENDING, QuoteStatus.REJECTED),
    (QuoteStatus.PENDING, QuoteStatus.EXPIRED),
    (QuoteStatus.REJECTED, QuoteStatus.DRAFT),
    (QuoteStatus.EXPIRED, QuoteStatus.DRAFT),
}

PAIRS = [(current, new) for current, new in itertools.product(QuoteStatus, QuoteStatus) if current != new]


def test_initial_state_is_draft():
    assert QuoteStateMachine.initial_state() == QuoteStatus.DRAFT


def test_table_covers_every_pair():
    assert len(PAIRS) == 30
    assert len(ALLOWED) == 11
    assert len([pair for pair in PAIRS if pair not in ALLOWED]) == 19


@pytest.mark.parametrize(("current", "new"), sorted(ALLOWED))
def test_allowed_transitions(current, new):
    assert QuoteStateMachine.can_transition(current, new)
    QuoteStateMachine.assert_transition(current, new)


@pytest.mark.parametrize(("current", "new"), [pair for pair in PAIRS if pair not in ALLOWED])
def test_rejected_transitions(current, new):
    assert not QuoteStateMachine.can_transition(current, new)
    with pytest.raises(ValueError):
        QuoteStateMachine.assert_transition(current, new)


@pytest.mark.parametrize("status", list(QuoteStatus))
def test_same_state_is_always_allowed(status):
    assert QuoteStateMachine.can_transition(status, status)


def test_accepted_is_terminal():
    assert QuoteStateMachine.allowed_targets(QuoteStatus.ACCEPTED) == set()


def test_locked_states():
    locked = {status for status in QuoteStatus if QuoteStateMachine.is_locked(status)}
    assert locked == {QuoteStatus.ACCEPTED, QuoteStatus.EXPIRED}
    assert QuoteStateMachine.locked_states() == locked
