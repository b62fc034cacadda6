"""Unit tests for core intent state-machine guardrails."""

import pytest

from chainpay.common.state_machine import (
    ACTIVE_STATES,
    ALLOWED_TRANSITIONS,
    FAILED,
    PENDING,
    SETTLED,
    SETTLING,
    SWAPPING,
    TERMINAL_STATES,
    VERIFYING,
    is_terminal,
    validate_transition,
)


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition(PENDING, VERIFYING)


@pytest.mark.parametrize(
    "current,new",
    [
        (PENDING, SETTLED),
        (PENDING, SWAPPING),
        (VERIFYING, PENDING),
        (SWAPPING, VERIFYING),
        (SETTLING, SWAPPING),
        (SETTLED, FAILED),
        (FAILED, PENDING),
    ],
)
def test_invalid_transition(current, new):
    """Illegal transition must raise to protect orchestration correctness."""

    with pytest.raises(ValueError):
        validate_transition(current, new)


def test_swap_is_optional_after_verifying():
    validate_transition(VERIFYING, SWAPPING)
    validate_transition(VERIFYING, SETTLING)
    validate_transition(SWAPPING, SETTLING)


def test_every_active_state_can_fail():
    for state in ACTIVE_STATES:
        validate_transition(state, FAILED)


def test_terminal_states_have_no_exits():
    assert TERMINAL_STATES == {SETTLED, FAILED}
    for state in TERMINAL_STATES:
        assert is_terminal(state)
        assert not ALLOWED_TRANSITIONS[state]
    assert not is_terminal(SETTLING)
