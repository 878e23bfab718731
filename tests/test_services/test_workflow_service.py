"""Tests for WorkflowService: creation, applications, execution, cancellation."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from secureshift.domain.enums import SYSTEM_ACTOR, WorkflowState
from secureshift.domain.exceptions import (
    AlreadyTerminalError,
    ApplicationNotFoundError,
    DuplicateApplicationError,
    DuplicateOperationError,
    InvalidHoursWorkedError,
    InvalidTransitionError,
    RateBelowMinimumError,
    UnauthorizedActorError,
    WorkflowAlreadyExistsError,
    WorkflowNotFoundError,
)
from tests.conftest import (
    COMPANY_ID,
    GUARD_CERTIFICATE,
    GUARD_ID,
    OTHER_GUARD_CERTIFICATE,
    OTHER_GUARD_ID,
)

if TYPE_CHECKING:
    from secureshift.container import WorkflowContainer
    from tests.conftest import WorkflowDriver

S = WorkflowState


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_creates_posted_workflow(self, driver: WorkflowDriver) -> None:
        workflow = await driver.posted()

        assert workflow.current_state is S.POSTED
        assert workflow.company_name == "Secure BV"
        assert workflow.compliance.company_verified
        assert workflow.compliance.rate_compliant
        assert workflow.metadata.location == "Rotterdam"
        assert len(workflow.transitions) == 1
        creation = workflow.transitions[0]
        assert creation.from_state is None
        assert creation.to_state is S.POSTED
        assert creation.actor_id == COMPANY_ID

    @pytest.mark.asyncio
    async def test_rate_below_minimum_creates_nothing(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        with pytest.raises(RateBelowMinimumError):
            await driver.posted(hourly_rate=Decimal("11.99"))

        with pytest.raises(WorkflowNotFoundError):
            await container.workflows.get_workflow("job-1")

    @pytest.mark.asyncio
    async def test_duplicate_job_id(self, driver: WorkflowDriver) -> None:
        await driver.posted()
        with pytest.raises(WorkflowAlreadyExistsError):
            await driver.posted()

    @pytest.mark.asyncio
    async def test_generates_id_when_omitted(self, container: WorkflowContainer) -> None:
        workflow = await container.workflows.create_job(
            COMPANY_ID, "12345678", "Event security", Decimal("15")
        )
        assert workflow.workflow_id
        assert (await container.workflows.get_workflow(workflow.workflow_id)).title == "Event security"


class TestApplications:
    @pytest.mark.asyncio
    async def test_first_application_auto_advances_to_review(self, driver: WorkflowDriver) -> None:
        workflow = await driver.under_review()

        assert workflow.current_state is S.UNDER_REVIEW
        states = [t.to_state for t in workflow.transitions]
        assert states == [S.POSTED, S.APPLIED, S.UNDER_REVIEW]
        auto = workflow.transitions[-1]
        assert auto.actor_id == SYSTEM_ACTOR
        assert auto.metadata == {"autoTransition": True}
        assert [a.guard_id for a in workflow.applications] == [GUARD_ID]

    @pytest.mark.asyncio
    async def test_later_applications_do_not_change_state(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        workflow = await container.workflows.apply_to_job(
            "job-1", OTHER_GUARD_ID, OTHER_GUARD_CERTIFICATE
        )

        assert workflow.current_state is S.UNDER_REVIEW
        assert len(workflow.transitions) == 3
        assert {a.guard_id for a in workflow.applications} == {GUARD_ID, OTHER_GUARD_ID}

    @pytest.mark.asyncio
    async def test_duplicate_application(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        with pytest.raises(DuplicateApplicationError):
            await container.workflows.apply_to_job("job-1", GUARD_ID, GUARD_CERTIFICATE)

    @pytest.mark.asyncio
    async def test_company_cannot_apply(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.posted()
        with pytest.raises(UnauthorizedActorError):
            await container.workflows.apply_to_job("job-1", COMPANY_ID, GUARD_CERTIFICATE)

    @pytest.mark.asyncio
    async def test_cannot_apply_once_accepted(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.accepted()
        with pytest.raises(InvalidTransitionError):
            await container.workflows.apply_to_job("job-1", OTHER_GUARD_ID, OTHER_GUARD_CERTIFICATE)

    @pytest.mark.asyncio
    async def test_accept_requires_an_application(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        with pytest.raises(ApplicationNotFoundError):
            await container.workflows.accept_application("job-1", COMPANY_ID, OTHER_GUARD_ID)

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is S.UNDER_REVIEW
        assert workflow.selected_guard_id is None

    @pytest.mark.asyncio
    async def test_accept_selects_guard(self, driver: WorkflowDriver) -> None:
        workflow = await driver.accepted()

        assert workflow.current_state is S.ACCEPTED
        assert workflow.selected_guard_id == GUARD_ID
        assert workflow.compliance.guard_verified
        assert workflow.compliance.guard_verified_at == workflow.applications[0].applied_at

    @pytest.mark.asyncio
    async def test_only_company_accepts(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        with pytest.raises(UnauthorizedActorError):
            await container.workflows.accept_application("job-1", GUARD_ID, GUARD_ID)


class TestExecution:
    @pytest.mark.asyncio
    async def test_complete_records_payment_amount_and_deadline(
        self, driver: WorkflowDriver
    ) -> None:
        workflow = await driver.completed(hours="7.5")

        assert workflow.current_state is S.COMPLETED
        assert workflow.metadata.total_hours_worked == Decimal("7.5")
        assert workflow.metadata.payment_amount == Decimal("138.75")
        assert workflow.metadata.rating_deadline is not None
        last = workflow.last_transition
        assert last is not None
        assert last.metadata["paymentAmount"] == "138.75"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("hours", ["0", "-1"])
    async def test_hours_must_be_positive(
        self, driver: WorkflowDriver, container: WorkflowContainer, hours: str
    ) -> None:
        await driver.in_progress()
        with pytest.raises(InvalidHoursWorkedError):
            await container.workflows.complete_execution("job-1", GUARD_ID, Decimal(hours))

    @pytest.mark.asyncio
    async def test_applicant_cannot_start(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.accepted()
        with pytest.raises(UnauthorizedActorError):
            await container.workflows.start_execution("job-1", OTHER_GUARD_ID)


class TestRequestTransition:
    @pytest.mark.asyncio
    async def test_unknown_workflow(self, container: WorkflowContainer) -> None:
        with pytest.raises(WorkflowNotFoundError):
            await container.workflows.request_transition("missing", S.APPLIED, GUARD_ID)

    @pytest.mark.asyncio
    async def test_skipping_states_is_rejected_without_writes(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.posted()
        with pytest.raises(InvalidTransitionError):
            await container.workflows.request_transition("job-1", S.COMPLETED, GUARD_ID)

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is S.POSTED
        assert len(workflow.transitions) == 1

    @pytest.mark.asyncio
    async def test_idempotency_key_replay(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.posted()
        first = await container.workflows.request_transition(
            "job-1", S.CANCELLED, COMPANY_ID, "Client cancelled", idempotency_key="k-1"
        )
        again = await container.workflows.request_transition(
            "job-1", S.CANCELLED, COMPANY_ID, "Client cancelled", idempotency_key="k-1"
        )

        assert again.current_state is S.CANCELLED
        assert len(again.transitions) == len(first.transitions)

    @pytest.mark.asyncio
    async def test_idempotency_key_reused_for_other_target(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        await container.workflows.request_transition(
            "job-1", S.ACCEPTED, COMPANY_ID, idempotency_key="k-2"
        )
        with pytest.raises(DuplicateOperationError):
            await container.workflows.request_transition(
                "job-1", S.CANCELLED, COMPANY_ID, idempotency_key="k-2"
            )

    @pytest.mark.asyncio
    async def test_history_is_append_only_and_ends_at_current_state(
        self, driver: WorkflowDriver
    ) -> None:
        workflow = await driver.completed()

        assert [t.sequence for t in workflow.transitions] == list(range(1, 7))
        for previous, current in zip(workflow.transitions, workflow.transitions[1:], strict=False):
            assert current.from_state is previous.to_state
        assert workflow.transitions[-1].to_state is workflow.current_state


class TestCancellation:
    @pytest.mark.asyncio
    async def test_assigned_guard_cancels(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.accepted()
        workflow = await container.workflows.cancel("job-1", GUARD_ID, "Sick")

        assert workflow.current_state is S.CANCELLED
        assert workflow.last_transition is not None
        assert workflow.last_transition.reason == "Sick"

    @pytest.mark.asyncio
    async def test_double_cancel_is_already_terminal(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.posted()
        await container.workflows.cancel("job-1", COMPANY_ID, "No longer needed")
        with pytest.raises(AlreadyTerminalError):
            await container.workflows.cancel("job-1", COMPANY_ID, "Again")

    @pytest.mark.asyncio
    async def test_rated_workflow_is_not_cancellable(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        await driver.rate_both()
        with pytest.raises(InvalidTransitionError):
            await container.workflows.cancel("job-1", COMPANY_ID, "Too late")

    @pytest.mark.asyncio
    async def test_applicant_cannot_cancel(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.under_review()
        with pytest.raises(UnauthorizedActorError):
            await container.workflows.cancel("job-1", GUARD_ID, "Changed my mind")


class TestReads:
    @pytest.mark.asyncio
    async def test_status(self, driver: WorkflowDriver, container: WorkflowContainer) -> None:
        await driver.in_progress()
        status = await container.workflows.get_status("job-1")

        assert status.current_state is S.IN_PROGRESS
        assert status.allowed_targets == (S.COMPLETED, S.CANCELLED)
        assert set(status.allowed_events) == {"complete_execution", "cancel_workflow"}
        assert not status.is_terminal

    @pytest.mark.asyncio
    async def test_list_filters(self, driver: WorkflowDriver, container: WorkflowContainer) -> None:
        await driver.accepted("job-1")
        await driver.posted("job-2")

        by_guard = await container.workflows.list_workflows(guard_id=GUARD_ID)
        posted = await container.workflows.list_workflows(states=[S.POSTED])
        by_company = await container.workflows.list_workflows(company_id=COMPANY_ID)

        assert [w.workflow_id for w in by_guard] == ["job-1"]
        assert [w.workflow_id for w in posted] == ["job-2"]
        assert {w.workflow_id for w in by_company} == {"job-1", "job-2"}

    @pytest.mark.asyncio
    async def test_conversation_is_attached_on_acceptance(self, driver: WorkflowDriver) -> None:
        await driver.accepted()
        workflow = await driver.c.workflows.get_workflow("job-1")
        assert workflow.conversation_id is not None
        assert workflow.conversation_id.startswith("conv-")
