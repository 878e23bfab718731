"""Tests for RatingWindowMonitor and the rating expiry policies."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

import pytest

from secureshift.container import build_container
from secureshift.domain.enums import SYSTEM_ACTOR, NotificationType, RaterRole, ReleaseStatus, WorkflowState
from secureshift.integrations.simulated import LoggingNotificationDispatcher
from tests.conftest import COMPANY_ID, GUARD_ID, WorkflowDriver

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.container import WorkflowContainer
    from tests.conftest import CountingPaymentInitiator

LATER = timedelta(days=8)


class TestNeutralRatingPolicy:
    @pytest.mark.asyncio
    async def test_nothing_expires_inside_the_window(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()
        assert await container.rating_window.sweep() == []

    @pytest.mark.asyncio
    async def test_missing_rating_is_auto_submitted(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
        notifier: LoggingNotificationDispatcher,
    ) -> None:
        await driver.completed()
        await container.ratings.submit_rating("job-1", RaterRole.COMPANY, COMPANY_ID, 5)

        [expired] = await container.rating_window.sweep(datetime.now(UTC) + LATER)

        assert expired.workflow_id == "job-1"
        assert expired.missing_roles == ("guard",)
        assert expired.auto_rated
        assert expired.release is not None
        assert expired.release.status is ReleaseStatus.PAID
        assert len(initiator.calls) == 1

        ledger = await container.ratings.get_ledger("job-1")
        auto = next(r for r in ledger.records if r.rater_role is RaterRole.GUARD)
        assert auto.auto_submitted
        assert auto.rater_id == SYSTEM_ACTOR
        assert auto.rating == Decimal("3.00")

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.PAID
        expired_notices = [
            n for n in notifier.sent if n.payload["type"] == NotificationType.RATING_WINDOW_EXPIRED
        ]
        assert {n.recipient_id for n in expired_notices} == {COMPANY_ID, GUARD_ID}

    @pytest.mark.asyncio
    async def test_neither_party_rated(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed()

        [expired] = await container.rating_window.sweep(datetime.now(UTC) + LATER)

        assert expired.missing_roles == ("guard", "company")
        ledger = await container.ratings.get_ledger("job-1")
        assert ledger.is_complete
        assert all(r.auto_submitted for r in ledger.records)

    @pytest.mark.asyncio
    async def test_sweep_ignores_paid_and_cancelled(
        self, driver: WorkflowDriver, container: WorkflowContainer
    ) -> None:
        await driver.completed("job-1")
        await driver.rate_both("job-1")
        await driver.completed("job-2")
        await container.workflows.cancel("job-2", COMPANY_ID, "No show")

        assert await container.rating_window.sweep(datetime.now(UTC) + LATER) == []


class TestReportOnlyPolicy:
    @pytest.mark.asyncio
    async def test_reports_without_rating(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        initiator: CountingPaymentInitiator,
    ) -> None:
        notifier = LoggingNotificationDispatcher()
        report_only = settings.model_copy(update={"rating_expiry_policy": "report_only"})
        container = build_container(
            report_only, session_factory, notifier=notifier, payment_initiator=initiator
        )
        driver = WorkflowDriver(container)
        await driver.completed()

        [expired] = await container.rating_window.sweep(datetime.now(UTC) + LATER)

        assert not expired.auto_rated
        assert expired.release is None
        assert initiator.calls == []
        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.COMPLETED
        assert any(
            n.payload["type"] == NotificationType.RATING_WINDOW_EXPIRED for n in notifier.sent
        )
