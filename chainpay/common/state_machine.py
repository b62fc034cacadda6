"""Payment intent state machine enforced by the settlement orchestrator."""

PENDING = "pending"
VERIFYING = "verifying"
SWAPPING = "swapping"
SETTLING = "settling"
SETTLED = "settled"
FAILED = "failed"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {VERIFYING, FAILED},
    VERIFYING: {SWAPPING, SETTLING, FAILED},
    SWAPPING: {SETTLING, FAILED},
    SETTLING: {SETTLED, FAILED},
    SETTLED: set(),
    FAILED: set(),
}

TERMINAL_STATES = frozenset({SETTLED, FAILED})
ACTIVE_STATES = frozenset(ALLOWED_TRANSITIONS) - TERMINAL_STATES


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
