"""Job Workflow State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or a background sweep asks for, an illegal
transition (e.g. posted -> paid) never reaches the database.

The graph mirrors TRANSITION_TABLE in domain/transitions.py: the table answers
"is this move allowed", the machine performs the move. A test keeps the two in
lockstep.

Events:
    receive_application   posted       -> applied
    begin_review          applied      -> underReview
    accept_application    underReview  -> accepted
    start_execution       accepted     -> inProgress
    complete_execution    inProgress   -> completed
    record_ratings        completed    -> rated
    confirm_payment       rated        -> paid
    close_workflow        paid         -> closed
    cancel_workflow       any of posted..completed -> cancelled
"""

from __future__ import annotations

from types import MappingProxyType

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from secureshift.domain.enums import WorkflowState
from secureshift.domain.exceptions import AlreadyTerminalError, InvalidTransitionError
from secureshift.domain.transitions import is_allowed


class JobWorkflowStateMachine(StateMachine):
    """State machine that guards job workflow lifecycle transitions.

    Usage:
        sm = JobWorkflowStateMachine("accepted")
        sm.start_execution()
        sm.status  # "inProgress"
    """

    # --- States ---
    posted = State("Posted", value=WorkflowState.POSTED.value, initial=True)
    applied = State("Applied", value=WorkflowState.APPLIED.value)
    under_review = State("Under review", value=WorkflowState.UNDER_REVIEW.value)
    accepted = State("Accepted", value=WorkflowState.ACCEPTED.value)
    in_progress = State("In progress", value=WorkflowState.IN_PROGRESS.value)
    completed = State("Completed", value=WorkflowState.COMPLETED.value)
    rated = State("Rated", value=WorkflowState.RATED.value)
    paid = State("Paid", value=WorkflowState.PAID.value)
    closed = State("Closed", value=WorkflowState.CLOSED.value, final=True)
    cancelled = State("Cancelled", value=WorkflowState.CANCELLED.value, final=True)

    # --- Events / Transitions ---
    receive_application = posted.to(applied)
    begin_review = applied.to(under_review)
    accept_application = under_review.to(accepted)
    start_execution = accepted.to(in_progress)
    complete_execution = in_progress.to(completed)
    record_ratings = completed.to(rated)
    confirm_payment = rated.to(paid)
    close_workflow = paid.to(closed)

    cancel_workflow = (
        posted.to(cancelled)
        | applied.to(cancelled)
        | under_review.to(cancelled)
        | accepted.to(cancelled)
        | in_progress.to(cancelled)
        | completed.to(cancelled)
    )

    def __init__(self, current_status: str = WorkflowState.POSTED.value) -> None:
        """Initialize the machine at a persisted workflow state value."""
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value (matches WorkflowState)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return the event names that can fire from the current state."""
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


# Event fired to reach each target state.
EVENT_FOR_TARGET: MappingProxyType[WorkflowState, str] = MappingProxyType(
    {
        WorkflowState.APPLIED: "receive_application",
        WorkflowState.UNDER_REVIEW: "begin_review",
        WorkflowState.ACCEPTED: "accept_application",
        WorkflowState.IN_PROGRESS: "start_execution",
        WorkflowState.COMPLETED: "complete_execution",
        WorkflowState.RATED: "record_ratings",
        WorkflowState.PAID: "confirm_payment",
        WorkflowState.CLOSED: "close_workflow",
        WorkflowState.CANCELLED: "cancel_workflow",
    }
)

TARGET_FOR_EVENT: MappingProxyType[str, WorkflowState] = MappingProxyType(
    {event: target for target, event in EVENT_FOR_TARGET.items()}
)


def validate_transition(current: WorkflowState, target: WorkflowState) -> WorkflowState:
    """Validate a move from ``current`` to ``target`` and return the new state.

    Raises:
        AlreadyTerminalError: ``current`` is closed or cancelled.
        InvalidTransitionError: the transition table has no such edge.
    """
    if current.is_terminal:
        raise AlreadyTerminalError(current.value, target.value)
    if not is_allowed(current, target):
        raise InvalidTransitionError(current.value, target.value)

    sm = JobWorkflowStateMachine(current_status=current.value)
    try:
        sm.send(EVENT_FOR_TARGET[target])
    except TransitionNotAllowed as err:
        raise InvalidTransitionError(current.value, target.value) from err
    return WorkflowState(sm.status)
