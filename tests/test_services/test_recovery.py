"""Tests for RecoveryScheduler and its wiring into the application lifespan."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

import pytest

from secureshift.container import build_container
from secureshift.domain.enums import WorkflowState
from secureshift.main import create_app
from tests.conftest import WorkflowDriver

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.container import WorkflowContainer
    from tests.conftest import CountingPaymentInitiator


async def stuck_at_rated(driver: WorkflowDriver, initiator: CountingPaymentInitiator) -> None:
    await driver.completed()
    initiator.fail_times = 1
    await driver.rate_both()


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_releases_a_failed_payment(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
    ) -> None:
        await stuck_at_rated(driver, initiator)

        await container.recovery.run_once()

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.PAID
        assert len(initiator.calls) == 2
        assert container.recovery.ticks == 1

    @pytest.mark.asyncio
    async def test_payment_sweep_runs_when_rating_sweep_fails(
        self,
        driver: WorkflowDriver,
        container: WorkflowContainer,
        initiator: CountingPaymentInitiator,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await stuck_at_rated(driver, initiator)

        async def broken_sweep(now: datetime | None = None) -> list[object]:
            raise RuntimeError("database went away")

        monkeypatch.setattr(container.rating_window, "sweep", broken_sweep)

        await container.recovery.run_once()

        workflow = await container.workflows.get_workflow("job-1")
        assert workflow.current_state is WorkflowState.PAID

    @pytest.mark.asyncio
    async def test_stop_without_start_is_a_no_op(self, container: WorkflowContainer) -> None:
        assert not container.recovery.running
        await container.recovery.stop()
        assert not container.recovery.running


class TestApplicationLifespan:
    @pytest.mark.asyncio
    async def test_lifespan_runs_the_sweeps_until_shutdown(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        initiator: CountingPaymentInitiator,
    ) -> None:
        fast = settings.model_copy(update={"recovery_interval_seconds": 0.05})
        container = build_container(fast, session_factory, payment_initiator=initiator)
        driver = WorkflowDriver(container)
        await stuck_at_rated(driver, initiator)

        app = create_app(container)
        async with app.router.lifespan_context(app):
            assert container.recovery.running
            for _ in range(100):
                workflow = await container.workflows.get_workflow("job-1")
                if workflow.current_state is WorkflowState.PAID:
                    break
                await asyncio.sleep(0.05)

        assert workflow.current_state is WorkflowState.PAID
        assert not container.recovery.running
        assert container.recovery.ticks >= 1

    @pytest.mark.asyncio
    async def test_zero_interval_leaves_the_loop_off(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        off = settings.model_copy(update={"recovery_interval_seconds": 0})
        container = build_container(off, session_factory)

        app = create_app(container)
        async with app.router.lifespan_context(app):
            assert not container.recovery.running

        assert container.recovery.ticks == 0

