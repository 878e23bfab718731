"""Tests for the JobWorkflowStateMachine domain guard.

These tests verify that:
    1. The happy path walks posted -> closed.
    2. Every (from, to) pair outside the transition table is rejected.
    3. The machine and TRANSITION_TABLE agree edge for edge.
    4. Terminal states accept nothing.
"""

from __future__ import annotations

import itertools

import pytest
from statemachine.exceptions import TransitionNotAllowed

from secureshift.domain.enums import WorkflowState
from secureshift.domain.exceptions import AlreadyTerminalError, InvalidTransitionError
from secureshift.domain.state_machine import (
    EVENT_FOR_TARGET,
    TARGET_FOR_EVENT,
    JobWorkflowStateMachine,
    validate_transition,
)
from secureshift.domain.transitions import TRANSITION_TABLE, allowed_targets, is_allowed

S = WorkflowState
ALL_PAIRS = list(itertools.product(WorkflowState, WorkflowState))


class TestHappyPath:
    """Test the full lifecycle: posted -> closed."""

    def test_full_lifecycle(self) -> None:
        sm = JobWorkflowStateMachine("posted")
        assert sm.status == "posted"

        sm.receive_application()
        assert sm.status == "applied"

        sm.begin_review()
        assert sm.status == "underReview"

        sm.accept_application()
        assert sm.status == "accepted"

        sm.start_execution()
        assert sm.status == "inProgress"

        sm.complete_execution()
        assert sm.status == "completed"

        sm.record_ratings()
        assert sm.status == "rated"

        sm.confirm_payment()
        assert sm.status == "paid"

        sm.close_workflow()
        assert sm.status == "closed"


class TestCancellation:
    @pytest.mark.parametrize(
        "state", ["posted", "applied", "underReview", "accepted", "inProgress", "completed"]
    )
    def test_cancellable_states(self, state: str) -> None:
        sm = JobWorkflowStateMachine(state)
        sm.cancel_workflow()
        assert sm.status == "cancelled"

    @pytest.mark.parametrize("state", ["rated", "paid"])
    def test_money_in_flight_is_not_cancellable(self, state: str) -> None:
        sm = JobWorkflowStateMachine(state)
        with pytest.raises(TransitionNotAllowed):
            sm.cancel_workflow()


class TestTableAgreement:
    """The machine fires exactly the edges the table lists."""

    @pytest.mark.parametrize(("current", "target"), ALL_PAIRS)
    def test_machine_matches_table(self, current: WorkflowState, target: WorkflowState) -> None:
        if target is S.POSTED:
            assert target not in TRANSITION_TABLE[current]
            return
        sm = JobWorkflowStateMachine(current.value)
        event = EVENT_FOR_TARGET[target]
        if is_allowed(current, target):
            sm.send(event)
            assert sm.status == target.value
        else:
            with pytest.raises(TransitionNotAllowed):
                sm.send(event)

    def test_event_maps_are_inverse(self) -> None:
        for target, event in EVENT_FOR_TARGET.items():
            assert TARGET_FOR_EVENT[event] is target

    def test_table_is_exhaustive(self) -> None:
        assert set(TRANSITION_TABLE) == set(WorkflowState)

    def test_allowed_targets(self) -> None:
        assert allowed_targets(S.COMPLETED) == frozenset({S.RATED, S.CANCELLED})
        assert allowed_targets(S.CLOSED) == frozenset()


class TestValidateTransition:
    """Test the validate_transition convenience function."""

    @pytest.mark.parametrize(("current", "target"), ALL_PAIRS)
    def test_every_pair(self, current: WorkflowState, target: WorkflowState) -> None:
        if current.is_terminal:
            with pytest.raises(AlreadyTerminalError):
                validate_transition(current, target)
        elif target in TRANSITION_TABLE[current]:
            assert validate_transition(current, target) is target
        else:
            with pytest.raises(InvalidTransitionError):
                validate_transition(current, target)

    def test_skipping_states_is_invalid(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(S.POSTED, S.COMPLETED)
        assert exc_info.value.code == "INVALID_TRANSITION"

    def test_already_terminal_is_an_invalid_transition(self) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(S.CANCELLED, S.CANCELLED)
        assert exc_info.value.code == "ALREADY_TERMINAL"


class TestMachineHelpers:
    def test_invalid_initial_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            JobWorkflowStateMachine("NONEXISTENT")

    def test_allowed_events_from_completed(self) -> None:
        sm = JobWorkflowStateMachine("completed")
        assert set(sm.get_allowed_events()) == {"record_ratings", "cancel_workflow"}

    def test_no_events_from_terminal(self) -> None:
        assert JobWorkflowStateMachine("closed").get_allowed_events() == []
        assert JobWorkflowStateMachine("cancelled").get_allowed_events() == []
