"""Shared test fixtures for the SecureShift workflow test suite.

Provides:
    - A file-backed SQLite database per test (aiosqlite, in tmp_path)
    - Recording fakes for every collaborator
    - A wired WorkflowContainer and a driver that walks a job through its lifecycle
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from secureshift.config import Settings
from secureshift.container import build_container
from secureshift.domain.collaborators import PaymentInitiation
from secureshift.domain.enums import RaterRole
from secureshift.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_tables,
)
from secureshift.integrations.simulated import (
    LoggingNotificationDispatcher,
    SimulatedThreadFactory,
    StaticVerificationProvider,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.container import WorkflowContainer
    from secureshift.domain.models import JobWorkflow

COMPANY_ID = "company-1"
COMPANY_REGISTRATION = "12345678"
GUARD_ID = "guard-1"
GUARD_CERTIFICATE = "WPBR-0001"
OTHER_GUARD_ID = "guard-2"
OTHER_GUARD_CERTIFICATE = "WPBR-0002"
HOURLY_RATE = Decimal("18.50")


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class CountingPaymentInitiator:
    """Counts initiation calls; can fail, refuse or stall on demand."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, Decimal]] = []
        self.fail_times = 0
        self.accept = True
        self.delay = 0.0

    async def initiate(self, workflow_id: str, payee_id: str, amount: Decimal) -> PaymentInitiation:
        self.calls.append((workflow_id, payee_id, amount))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times:
            self.fail_times -= 1
            raise ConnectionError("payment provider unavailable")
        if not self.accept:
            return PaymentInitiation(accepted=False)
        return PaymentInitiation(accepted=True, reference_id=f"SEPA-{workflow_id}")


class FailingNotifier:
    """Notifier whose every call blows up."""

    def __init__(self) -> None:
        self.attempts = 0

    async def notify(self, recipient_id: str, title: str, body: str, payload: dict[str, Any]) -> None:
        self.attempts += 1
        raise RuntimeError("push service down")


# ---------------------------------------------------------------------------
# Settings and database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url=f"sqlite+aiosqlite:///{tmp_path}/workflow.db",
        lock_backend="local",
        lock_wait_seconds=5.0,
        verification_timeout_seconds=1.0,
        verification_retry_attempts=1,
        verification_retry_wait_seconds=0.0,
        payment_initiation_timeout_seconds=1.0,
        side_effect_timeout_seconds=1.0,
        side_effects_in_background=False,
    )


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Collaborators and container
# ---------------------------------------------------------------------------


@pytest.fixture
def verification() -> StaticVerificationProvider:
    return StaticVerificationProvider(display_names={COMPANY_REGISTRATION: "Secure BV"})


@pytest.fixture
def initiator() -> CountingPaymentInitiator:
    return CountingPaymentInitiator()


@pytest.fixture
def notifier() -> LoggingNotificationDispatcher:
    return LoggingNotificationDispatcher()


@pytest.fixture
def threads() -> SimulatedThreadFactory:
    return SimulatedThreadFactory()


@pytest.fixture
def container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    verification: StaticVerificationProvider,
    initiator: CountingPaymentInitiator,
    notifier: LoggingNotificationDispatcher,
    threads: SimulatedThreadFactory,
) -> WorkflowContainer:
    return build_container(
        settings,
        session_factory,
        verification=verification,
        payment_initiator=initiator,
        notifier=notifier,
        thread_factory=threads,
    )


# ---------------------------------------------------------------------------
# Lifecycle driver
# ---------------------------------------------------------------------------


class WorkflowDriver:
    """Moves a fresh job to a given point of the lifecycle through the services."""

    def __init__(self, container: WorkflowContainer) -> None:
        self.c = container

    async def posted(self, workflow_id: str = "job-1", **kwargs: Any) -> JobWorkflow:
        return await self.c.workflows.create_job(
            COMPANY_ID,
            COMPANY_REGISTRATION,
            "Night shift, distribution centre",
            kwargs.pop("hourly_rate", HOURLY_RATE),
            workflow_id=workflow_id,
            location="Rotterdam",
            **kwargs,
        )

    async def under_review(self, workflow_id: str = "job-1") -> JobWorkflow:
        await self.posted(workflow_id)
        return await self.c.workflows.apply_to_job(
            workflow_id, GUARD_ID, GUARD_CERTIFICATE, "Five years of night shifts"
        )

    async def accepted(self, workflow_id: str = "job-1") -> JobWorkflow:
        await self.under_review(workflow_id)
        return await self.c.workflows.accept_application(workflow_id, COMPANY_ID, GUARD_ID)

    async def in_progress(self, workflow_id: str = "job-1") -> JobWorkflow:
        await self.accepted(workflow_id)
        return await self.c.workflows.start_execution(workflow_id, GUARD_ID)

    async def completed(self, workflow_id: str = "job-1", hours: str = "8") -> JobWorkflow:
        await self.in_progress(workflow_id)
        return await self.c.workflows.complete_execution(workflow_id, GUARD_ID, Decimal(hours))

    async def rate_both(self, workflow_id: str = "job-1") -> None:
        await self.c.ratings.submit_rating(workflow_id, RaterRole.GUARD, GUARD_ID, 4)
        await self.c.ratings.submit_rating(workflow_id, RaterRole.COMPANY, COMPANY_ID, 5)


@pytest.fixture
def driver(container: WorkflowContainer) -> WorkflowDriver:
    return WorkflowDriver(container)
