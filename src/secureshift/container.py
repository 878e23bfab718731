"""Service wiring.

Builds the object graph once per process (or per test) so the API layer and
background sweeps share the same locks, dispatcher and services:

    locks ─┐
    gate ──┼─> WorkflowService ─> PaymentReleaseCoordinator ─> RatingLedger
    side ──┘                                                   └> RatingWindowMonitor
                                                                  └> RecoveryScheduler

Collaborators default to the simulated adapters in integrations/simulated.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from secureshift.infrastructure.locks import LocalWorkflowLocks, RedisWorkflowLocks
from secureshift.integrations.simulated import (
    LoggingNotificationDispatcher,
    SimulatedPaymentInitiator,
    SimulatedThreadFactory,
    StaticVerificationProvider,
)
from secureshift.logging_config import get_logger
from secureshift.services.compliance_gate import ComplianceGate
from secureshift.services.payment_release import PaymentReleaseCoordinator
from secureshift.services.rating_ledger import RatingLedger
from secureshift.services.rating_window import RatingWindowMonitor
from secureshift.services.recovery import RecoveryScheduler
from secureshift.services.side_effects import SideEffectDispatcher
from secureshift.services.workflow_service import WorkflowService

if TYPE_CHECKING:
    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.domain.collaborators import (
        CommunicationThreadFactory,
        NotificationDispatcher,
        PaymentInitiator,
        VerificationProvider,
    )
    from secureshift.infrastructure.locks import WorkflowLocks

logger = get_logger(__name__)


@dataclass
class WorkflowContainer:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    locks: WorkflowLocks
    side_effects: SideEffectDispatcher
    compliance: ComplianceGate
    workflows: WorkflowService
    payments: PaymentReleaseCoordinator
    ratings: RatingLedger
    rating_window: RatingWindowMonitor
    recovery: RecoveryScheduler


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    redis: aioredis.Redis | None = None,
    verification: VerificationProvider | None = None,
    payment_initiator: PaymentInitiator | None = None,
    notifier: NotificationDispatcher | None = None,
    thread_factory: CommunicationThreadFactory | None = None,
) -> WorkflowContainer:
    """Wire every service; missing collaborators fall back to simulated ones.

    Redis locks are used only when ``lock_backend`` is "redis" and a client
    is given; otherwise locks are in-process.
    """
    if settings.lock_backend == "redis" and redis is not None:
        locks: WorkflowLocks = RedisWorkflowLocks(
            redis,
            lease_seconds=settings.lock_lease_seconds,
            wait_seconds=settings.lock_wait_seconds,
        )
    else:
        if settings.lock_backend == "redis":
            logger.warning("container.redis_locks_unavailable", fallback="local")
        locks = LocalWorkflowLocks(wait_seconds=settings.lock_wait_seconds)

    side_effects = SideEffectDispatcher(
        notifier or LoggingNotificationDispatcher(),
        thread_factory or SimulatedThreadFactory(),
        timeout_seconds=settings.side_effect_timeout_seconds,
        run_in_background=settings.side_effects_in_background,
    )
    compliance = ComplianceGate(
        session_factory,
        verification or StaticVerificationProvider(),
        settings,
    )
    workflows = WorkflowService(session_factory, locks, side_effects, compliance, settings)
    side_effects.on_thread_created = workflows.attach_conversation

    payments = PaymentReleaseCoordinator(
        workflows,
        session_factory,
        payment_initiator or SimulatedPaymentInitiator(),
        settings,
    )
    ratings = RatingLedger(workflows, payments, settings)
    rating_window = RatingWindowMonitor(workflows, ratings, side_effects, settings)
    recovery = RecoveryScheduler(rating_window, payments, settings.recovery_interval_seconds)

    logger.info(
        "container.built",
        lock_backend=type(locks).__name__,
        simulate_collaborators=settings.simulate_collaborators,
    )
    return WorkflowContainer(
        settings=settings,
        session_factory=session_factory,
        locks=locks,
        side_effects=side_effects,
        compliance=compliance,
        workflows=workflows,
        payments=payments,
        ratings=ratings,
        rating_window=rating_window,
        recovery=recovery,
    )
