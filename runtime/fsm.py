"""Rigid FSM transition table for gate runs."""

from typing import Callable

from models.errors import IllegalTransitionError
from models.gate_attempt import AttemptStatus
from models.gate_run import EngineState, GateRun

TERMINAL_STATES = frozenset({EngineState.ALL_PASSED, EngineState.ESCALATED})

TRANSITION_MAP: dict[EngineState, frozenset[EngineState]] = {
    EngineState.IDLE: frozenset(
        {EngineState.BLOCKING_RUNNING, EngineState.BLOCKING_PASSED, EngineState.ESCALATED}
    ),
    EngineState.BLOCKING_RUNNING: frozenset(
        {
            EngineState.BLOCKING_RUNNING,
            EngineState.BLOCKING_FAILED,
            EngineState.BLOCKING_PASSED,
            EngineState.ESCALATED,
        }
    ),
    EngineState.BLOCKING_FAILED: frozenset({EngineState.BLOCKING_RUNNING, EngineState.ESCALATED}),
    EngineState.BLOCKING_PASSED: frozenset({EngineState.PARALLEL_RUNNING, EngineState.ESCALATED}),
    EngineState.PARALLEL_RUNNING: frozenset({EngineState.ALL_PASSED, EngineState.ESCALATED}),
    EngineState.ALL_PASSED: frozenset(),
    EngineState.ESCALATED: frozenset(),
}


def _all_blocking_passed(run: GateRun) -> bool:
    """Every blocking validator's latest attempt has passed."""
    for name in run.profile.blocking_names:
        latest = run.latest_attempt(name)
        if latest is None or latest.status != AttemptStatus.PASSED:
            return False
    return True


# Extra conditions a transition must satisfy beyond the table.
GUARDS: dict[EngineState, Callable[[GateRun], bool]] = {
    EngineState.BLOCKING_PASSED: _all_blocking_passed,
    EngineState.PARALLEL_RUNNING: _all_blocking_passed,
}


def is_terminal(state: EngineState) -> bool:
    """Check whether a state is terminal."""
    return state in TERMINAL_STATES


def can_transition(current: EngineState, target: EngineState) -> bool:
    return target in TRANSITION_MAP.get(current, frozenset())


def advance(run: GateRun, target: EngineState) -> EngineState:
    """
    Move a run to `target`, recording the transition.

    Staying in BLOCKING_RUNNING while moving to the next blocking validator is
    allowed and not recorded again.

    Raises:
        IllegalTransitionError: if the table or a guard forbids the move
    """
    current = run.state
    if not can_transition(current, target):
        raise IllegalTransitionError(f"Run {run.run_id}: {current.value} -> {target.value} is not allowed")

    guard = GUARDS.get(target)
    if guard is not None and not guard(run):
        raise IllegalTransitionError(
            f"Run {run.run_id}: cannot enter {target.value} before every blocking validator passed"
        )

    if target != current:
        run.state = target
        run.state_history.append(target)
    return target
