"""Tests for PaymentReleaseCoordinator: exactly-once trigger, failures, retries."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import update

from secureshift.domain.enums import RaterRole, ReleaseStatus, WorkflowState
from secureshift.domain.exceptions import PaymentNotRetryableError, WorkflowNotFoundError
from secureshift.infrastructure.database.orm_models import PaymentTriggerModel
from tests.conftest import COMPANY_ID, GUARD_ID

if TYPE_CHECKING:
    from secureshift.container import WorkflowContainer
    from tests.conftest import CountingPaymentInitiator, WorkflowDriver


class TestExactlyOnce:
    @pytest.mark.asyncio
    async def test_not_ready_until_both_rated(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        await container.ratings.submit_rating("job-1", RaterRole.GUARD, GUARD_ID, 4)

        outcome = await container.payments.on_ledger_complete("job-1")

        assert outcome.status is ReleaseStatus.NOT_READY

    @pytest.mark.asyncio
    async def test_concurrent_triggers_initiate_once(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        await container.ratings.submit_rating("job-1", RaterRole.GUARD, GUARD_ID, 4)
        initiator.delay = 0.05

        results = await asyncio.gather(
            container.ratings.submit_rating("job-1", RaterRole.COMPANY, COMPANY_ID, 5),
            *(container.payments.on_ledger_complete("job-1") for _ in range(8)),
            *(container.payments.release("job-1") for _ in range(4)),
        )

        assert len(initiator.calls) == 1
        outcomes = [results[0].release, *results[1:]]
        assert sum(1 for o in outcomes if o is not None and o.status is ReleaseStatus.PAID) == 1
        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.PAID
        assert [t.to_state for t in workflow.transitions].count(WorkflowState.PAID) == 1

        trigger = await container.payments.get_trigger("job-1")
        assert trigger.triggered
        assert trigger.attempts == 1
        assert trigger.reference_id == "SEPA-job-1"

    @pytest.mark.asyncio
    async def test_second_call_after_payment_is_already_triggered(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        await driver.rate_both()

        outcome = await container.payments.release("job-1")

        assert outcome.status is ReleaseStatus.ALREADY_TRIGGERED
        assert outcome.reference_id == "SEPA-job-1"


class TestFailureAndRetry:
    @pytest.mark.asyncio
    async def test_failure_leaves_workflow_rated(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        initiator.fail_times = 1
        await container.ratings.submit_rating("job-1", RaterRole.GUARD, GUARD_ID, 4)
        submission = await container.ratings.submit_rating(
            "job-1", RaterRole.COMPANY, COMPANY_ID, 3
        )

        assert submission.release is not None
        assert submission.release.status is ReleaseStatus.FAILED
        assert "unavailable" in (submission.release.error or "")
        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.RATED
        trigger = await container.payments.get_trigger("job-1")
        assert trigger.triggered and not trigger.initiating
        assert trigger.last_error is not None

        retried = await container.payments.retry_payment("job-1")

        assert retried.status is ReleaseStatus.PAID
        assert len(initiator.calls) == 2
        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.PAID
        trigger = await container.payments.get_trigger("job-1")
        assert trigger.attempts == 2
        assert trigger.last_error is None

    @pytest.mark.asyncio
    async def test_refused_payment(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        initiator.accept = False
        await driver.rate_both()

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.RATED
        trigger = await container.payments.get_trigger("job-1")
        assert trigger.last_error == "payment was not accepted"

    @pytest.mark.asyncio
    async def test_timeout_is_a_failure(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        initiator.delay = 5
        await container.ratings.submit_rating("job-1", RaterRole.GUARD, GUARD_ID, 4)
        submission = await container.ratings.submit_rating(
            "job-1", RaterRole.COMPANY, COMPANY_ID, 4
        )

        assert submission.release is not None
        assert submission.release.status is ReleaseStatus.FAILED
        assert "timed out" in (submission.release.error or "")

    @pytest.mark.asyncio
    async def test_retry_requires_rated(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        with pytest.raises(PaymentNotRetryableError):
            await container.payments.retry_payment("job-1")

    @pytest.mark.asyncio
    async def test_retry_after_payment(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        await driver.rate_both()
        with pytest.raises(PaymentNotRetryableError):
            await container.payments.retry_payment("job-1")

    @pytest.mark.asyncio
    async def test_retry_unknown_workflow(self, container: WorkflowContainer) -> None:
        with pytest.raises(WorkflowNotFoundError):
            await container.payments.retry_payment("missing")


class TestReleasePending:
    @pytest.mark.asyncio
    async def test_sweep_retries_failed_payments(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed("job-1")
        await driver.completed("job-2")
        initiator.fail_times = 1
        await driver.rate_both("job-1")
        await container.ratings.submit_rating("job-2", RaterRole.GUARD, GUARD_ID, 4)

        outcomes = await container.payments.release_pending()

        assert set(outcomes) == {"job-1"}
        assert outcomes["job-1"].status is ReleaseStatus.PAID
        assert (await container.workflows.get_workflow("job-2")).current_state is (
            WorkflowState.COMPLETED
        )


async def hold_claim(container: WorkflowContainer, workflow_id: str, claimed_at: datetime) -> None:
    """Leave the initiation slot taken, as a worker killed mid-attempt would."""
    async with container.session_factory() as session, session.begin():
        await session.execute(
            update(PaymentTriggerModel)
            .where(PaymentTriggerModel.workflow_id == workflow_id)
            .values(initiating=True, initiation_claimed_at=claimed_at)
        )


class TestInterruptedRelease:
    @pytest.mark.asyncio
    async def test_cancelled_release_gives_the_claim_back(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        await container.ratings.submit_rating("job-1", RaterRole.GUARD, GUARD_ID, 4)
        initiator.delay = 0.5

        task = asyncio.create_task(
            container.ratings.submit_rating("job-1", RaterRole.COMPANY, COMPANY_ID, 5)
        )
        while not initiator.calls:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.RATED
        trigger = await container.payments.get_trigger("job-1")
        assert not trigger.initiating
        assert trigger.initiation_claimed_at is None
        assert (trigger.last_error or "").startswith("initiation interrupted")

        initiator.delay = 0
        retried = await container.payments.retry_payment("job-1")

        assert retried.status is ReleaseStatus.PAID
        assert (await container.workflows.get_workflow("job-1")).current_state is (
            WorkflowState.PAID
        )

    @pytest.mark.asyncio
    async def test_fresh_claim_is_in_flight(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        initiator.fail_times = 1
        await driver.rate_both()
        await hold_claim(container, "job-1", datetime.now(UTC))

        outcomes = await container.payments.release_pending()

        assert outcomes["job-1"].status is ReleaseStatus.IN_FLIGHT
        assert len(initiator.calls) == 1

    @pytest.mark.asyncio
    async def test_abandoned_claim_is_taken_over(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await driver.completed()
        initiator.fail_times = 1
        await driver.rate_both()
        await hold_claim(container, "job-1", datetime.now(UTC) - timedelta(hours=1))

        outcomes = await container.payments.release_pending()

        assert outcomes["job-1"].status is ReleaseStatus.PAID
        trigger = await container.payments.get_trigger("job-1")
        assert not trigger.initiating
        assert trigger.attempts == 2
        assert trigger.reference_id == "SEPA-job-1"
