"""The legal state graph of a job workflow, as plain data.

    posted       -> applied, cancelled
    applied      -> underReview, cancelled
    underReview  -> accepted, cancelled
    accepted     -> inProgress, cancelled
    inProgress   -> completed, cancelled
    completed    -> rated, cancelled
    rated        -> paid
    paid         -> closed
    closed, cancelled are terminal

rated and paid are not cancellable: once both ratings are in, money is moving.
"""

from __future__ import annotations

from types import MappingProxyType

from secureshift.domain.enums import WorkflowState

_S = WorkflowState

TRANSITION_TABLE: MappingProxyType[WorkflowState, frozenset[WorkflowState]] = MappingProxyType(
    {
        _S.POSTED: frozenset({_S.APPLIED, _S.CANCELLED}),
        _S.APPLIED: frozenset({_S.UNDER_REVIEW, _S.CANCELLED}),
        _S.UNDER_REVIEW: frozenset({_S.ACCEPTED, _S.CANCELLED}),
        _S.ACCEPTED: frozenset({_S.IN_PROGRESS, _S.CANCELLED}),
        _S.IN_PROGRESS: frozenset({_S.COMPLETED, _S.CANCELLED}),
        _S.COMPLETED: frozenset({_S.RATED, _S.CANCELLED}),
        _S.RATED: frozenset({_S.PAID}),
        _S.PAID: frozenset({_S.CLOSED}),
        _S.CLOSED: frozenset(),
        _S.CANCELLED: frozenset(),
    }
)

INITIAL_STATE = WorkflowState.POSTED

_missing = set(WorkflowState) - set(TRANSITION_TABLE)
if _missing:
    raise RuntimeError(f"Transition table is missing states: {sorted(_missing)}")


def allowed_targets(state: WorkflowState) -> frozenset[WorkflowState]:
    """Return the states reachable in one step from ``state``."""
    return TRANSITION_TABLE[state]


def is_allowed(from_state: WorkflowState, to_state: WorkflowState) -> bool:
    return to_state in TRANSITION_TABLE[from_state]
