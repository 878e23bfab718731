"""Workflow Service — core business logic for the job lifecycle.

This is the application layer that coordinates between:
    - Domain state machine and authorization rules (transition guard)
    - Compliance gate (credential checks, outside any lock)
    - Repositories (data access) and the append-only transition log
    - Side effect dispatcher (after commit, best-effort)

Every mutation runs in a unit of work:

    per-workflow lock -> session -> SELECT ... FOR UPDATE -> mutate
        -> commit -> release lock -> dispatch side effects

so the state change and its audit row land in one transaction, and no
notification, chat or payment call ever runs while the lock is held.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from secureshift.domain.authorization import authorize
from secureshift.domain.enums import SYSTEM_ACTOR, WorkflowState
from secureshift.domain.exceptions import (
    AlreadyTerminalError,
    ApplicationNotFoundError,
    ConflictError,
    DuplicateApplicationError,
    DuplicateOperationError,
    InvalidHoursWorkedError,
    InvalidTransitionError,
    WorkflowAlreadyExistsError,
    WorkflowNotFoundError,
)
from secureshift.domain.models import WorkflowStatus
from secureshift.domain.state_machine import JobWorkflowStateMachine, validate_transition
from secureshift.domain.transitions import allowed_targets
from secureshift.infrastructure.database.orm_models import JobWorkflowModel
from secureshift.infrastructure.database.repositories import (
    ApplicationRepository,
    PaymentTriggerRepository,
    RatingRepository,
    WorkflowRepository,
    transition_to_domain,
    workflow_to_domain,
)
from secureshift.logging_config import get_logger, workflow_log_context

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.domain.models import JobWorkflow
    from secureshift.infrastructure.database.orm_models import WorkflowTransitionModel
    from secureshift.infrastructure.locks import WorkflowLocks
    from secureshift.services.compliance_gate import ComplianceGate
    from secureshift.services.side_effects import SideEffectDispatcher

logger = get_logger(__name__)


@dataclass
class WorkflowUnitOfWork:
    """Everything a mutation may touch while the workflow lock is held."""

    session: AsyncSession
    row: JobWorkflowModel
    transitions: list[WorkflowTransitionModel] = field(default_factory=list)
    effects: list[Callable[[JobWorkflow], Awaitable[None]]] = field(default_factory=list)
    result: JobWorkflow | None = None

    def __post_init__(self) -> None:
        self.workflows = WorkflowRepository(self.session)
        self.applications = ApplicationRepository(self.session)
        self.ratings = RatingRepository(self.session)
        self.payments = PaymentTriggerRepository(self.session)

    @property
    def workflow_id(self) -> str:
        return self.row.id

    @property
    def state(self) -> WorkflowState:
        return WorkflowState(self.row.current_state)

    def snapshot(self) -> JobWorkflow:
        """Domain view of the row as mutated so far (not yet committed)."""
        return workflow_to_domain(self.row)


class WorkflowService:
    """Manages the job workflow lifecycle."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        locks: WorkflowLocks,
        side_effects: SideEffectDispatcher,
        compliance: ComplianceGate,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._locks = locks
        self._side_effects = side_effects
        self._compliance = compliance
        self._settings = settings

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def unit_of_work(self, workflow_id: str) -> AsyncIterator[WorkflowUnitOfWork]:
        """Lock the workflow, open a transaction and load the row for update.

        Commits when the block exits cleanly, then releases the lock and
        dispatches side effects for the transitions applied in the block.

        Raises:
            WorkflowNotFoundError: unknown workflow id.
            ConflictError: the lock could not be taken in time, or a
                concurrent writer changed the row first.
        """
        with workflow_log_context(workflow_id):
            async with self._locks.acquire(workflow_id):
                async with self._session_factory() as session:
                    try:
                        async with session.begin():
                            row = await WorkflowRepository(session).get_for_update(workflow_id)
                            if row is None:
                                raise WorkflowNotFoundError(workflow_id)
                            uow = WorkflowUnitOfWork(session=session, row=row)
                            yield uow
                            await session.flush()
                    except (StaleDataError, IntegrityError) as err:
                        logger.warning("workflow.conflict", error=str(err))
                        raise ConflictError(workflow_id) from err
                    uow.result = workflow_to_domain(row)
            await self._after_commit(uow)

    async def apply_transition(
        self,
        uow: WorkflowUnitOfWork,
        to_state: WorkflowState,
        actor_id: str,
        reason: str = "",
        metadata: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
        mutate: Callable[[JobWorkflowModel], None] | None = None,
    ) -> WorkflowTransitionModel | None:
        """Validate, authorize and record one transition inside ``uow``.

        Returns the new audit row, or None when ``idempotency_key`` replays a
        transition already recorded for the same target.
        """
        row = uow.row
        if idempotency_key is not None:
            existing = WorkflowRepository.find_transition_by_key(row, idempotency_key)
            if existing is not None:
                if existing.to_state == to_state.value:
                    logger.info(
                        "workflow.idempotent_replay",
                        to_state=to_state.value,
                        idempotency_key=idempotency_key,
                    )
                    return None
                raise DuplicateOperationError(idempotency_key)

        current = uow.state
        try:
            validate_transition(current, to_state)
            role = authorize(row, actor_id, to_state)
        except InvalidTransitionError:
            logger.warning(
                "workflow.invalid_transition",
                from_state=current.value,
                to_state=to_state.value,
                actor_id=actor_id,
            )
            raise

        if mutate is not None:
            mutate(row)

        now = datetime.now(UTC)
        row.current_state = to_state.value
        row.updated_at = now
        transition = uow.workflows.append_transition(
            row,
            from_state=current,
            to_state=to_state,
            actor_id=actor_id,
            reason=reason,
            metadata=metadata,
            idempotency_key=idempotency_key,
            timestamp=now,
        )
        uow.transitions.append(transition)

        logger.info(
            "workflow.transitioned",
            from_state=current.value,
            to_state=to_state.value,
            actor_id=actor_id,
            actor_role=role.value,
            sequence=transition.sequence,
        )
        return transition

    async def request_transition(
        self,
        workflow_id: str,
        to_state: WorkflowState | str,
        actor_id: str,
        reason: str = "",
        metadata: dict[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> JobWorkflow:
        """Move a workflow to ``to_state`` on behalf of ``actor_id``.

        Raises:
            WorkflowNotFoundError, InvalidTransitionError (AlreadyTerminalError),
            UnauthorizedActorError, DuplicateOperationError, ConflictError.
        """
        target = WorkflowState(to_state)
        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                target,
                actor_id,
                reason,
                metadata,
                idempotency_key=idempotency_key,
            )
        return uow.result

    # ------------------------------------------------------------------
    # Job creation
    # ------------------------------------------------------------------

    async def create_job(
        self,
        company_id: str,
        company_registration_id: str,
        title: str,
        hourly_rate: Decimal,
        *,
        workflow_id: str | None = None,
        company_name: str | None = None,
        location: str | None = None,
        scheduled_start_time: datetime | None = None,
        scheduled_end_time: datetime | None = None,
        required_certificates: Sequence[str] = (),
        custom_fields: dict[str, Any] | None = None,
    ) -> JobWorkflow:
        """Create a workflow in ``posted`` once the company clears compliance.

        Nothing is written when the rate is below the statutory minimum or the
        company registration does not verify.
        """
        hourly_rate = Decimal(str(hourly_rate))
        clearance = await self._compliance.check_company(
            company_id, company_registration_id, hourly_rate
        )

        workflow_id = workflow_id or str(uuid.uuid4())
        now = datetime.now(UTC)
        row = JobWorkflowModel(
            id=workflow_id,
            title=title,
            company_id=company_id,
            company_name=company_name or clearance.display_name,
            current_state=WorkflowState.POSTED.value,
            agreed_hourly_rate=hourly_rate,
            company_verified=True,
            rate_compliant=True,
            company_verified_at=clearance.verified_at,
            location=location,
            scheduled_start_time=scheduled_start_time,
            scheduled_end_time=scheduled_end_time,
            required_certificates=list(required_certificates),
            custom_fields=dict(custom_fields or {}),
            created_at=now,
            updated_at=now,
            transitions=[],
            applications=[],
        )

        with workflow_log_context(workflow_id):
            async with self._locks.acquire(workflow_id):
                async with self._session_factory() as session:
                    try:
                        async with session.begin():
                            workflows = WorkflowRepository(session)
                            if await workflows.exists(workflow_id):
                                raise WorkflowAlreadyExistsError(workflow_id)
                            workflows.append_transition(
                                row,
                                from_state=None,
                                to_state=WorkflowState.POSTED,
                                actor_id=company_id,
                                reason="Job posted",
                                metadata={"hourlyRate": str(hourly_rate)},
                                timestamp=now,
                            )
                            await workflows.create(row)
                            await PaymentTriggerRepository(session).create(workflow_id)
                    except IntegrityError as err:
                        raise WorkflowAlreadyExistsError(workflow_id) from err

            logger.info(
                "workflow.created",
                company_id=company_id,
                hourly_rate=str(hourly_rate),
                from_cache=clearance.from_cache,
            )
        return workflow_to_domain(row)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def apply_to_job(
        self,
        workflow_id: str,
        guard_id: str,
        certificate_id: str,
        motivation: str = "",
    ) -> JobWorkflow:
        """Record a guard's application.

        The first application moves ``posted -> applied`` and then, in a
        second commit, ``applied -> underReview`` on behalf of SYSTEM. Later
        applications are recorded without a state change.
        """
        await self._compliance.check_guard(guard_id, certificate_id)

        auto_review = False
        async with self.unit_of_work(workflow_id) as uow:
            row = uow.row
            state = uow.state
            if state is WorkflowState.POSTED:
                await self.apply_transition(
                    uow,
                    WorkflowState.APPLIED,
                    guard_id,
                    reason="Application submitted",
                    metadata={"certificateId": certificate_id},
                )
                auto_review = True
            elif state in (WorkflowState.APPLIED, WorkflowState.UNDER_REVIEW):
                authorize(row, guard_id, WorkflowState.APPLIED)
                if uow.applications.find(row, guard_id) is not None:
                    raise DuplicateApplicationError(workflow_id, guard_id)

                async def _notify(workflow: JobWorkflow) -> None:
                    await self._side_effects.application_received(workflow, guard_id)

                uow.effects.append(_notify)
            elif state.is_terminal:
                raise AlreadyTerminalError(state.value, WorkflowState.APPLIED.value)
            else:
                raise InvalidTransitionError(state.value, WorkflowState.APPLIED.value)

            uow.applications.add(row, guard_id, certificate_id, motivation)
            logger.info("workflow.application_recorded", guard_id=guard_id)

        if not auto_review:
            return uow.result

        async with self.unit_of_work(workflow_id) as review:
            # A cancellation may have slipped in between the two commits
            if review.state is WorkflowState.APPLIED:
                await self.apply_transition(
                    review,
                    WorkflowState.UNDER_REVIEW,
                    SYSTEM_ACTOR,
                    reason="Automatic review after first application",
                    metadata={"autoTransition": True},
                )
        return review.result

    async def accept_application(
        self,
        workflow_id: str,
        company_id: str,
        guard_id: str,
        message: str = "",
        scheduled_start_time: datetime | None = None,
    ) -> JobWorkflow:
        """Company accepts one applicant; sets ``selected_guard_id``."""

        def select_guard(row: JobWorkflowModel) -> None:
            application = ApplicationRepository.find(row, guard_id)
            if application is None:
                raise ApplicationNotFoundError(workflow_id, guard_id)
            row.selected_guard_id = guard_id
            row.guard_verified = True
            row.guard_verified_at = application.applied_at
            if scheduled_start_time is not None:
                row.scheduled_start_time = scheduled_start_time

        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                WorkflowState.ACCEPTED,
                company_id,
                reason=message or "Application accepted",
                metadata={"guardId": guard_id},
                mutate=select_guard,
            )
        return uow.result

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def start_execution(
        self,
        workflow_id: str,
        guard_id: str,
        actual_start_time: datetime | None = None,
    ) -> JobWorkflow:
        started_at = actual_start_time or datetime.now(UTC)

        def stamp_start(row: JobWorkflowModel) -> None:
            row.actual_start_time = started_at

        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                WorkflowState.IN_PROGRESS,
                guard_id,
                reason="Job started",
                metadata={"startTime": started_at.isoformat()},
                mutate=stamp_start,
            )
        return uow.result

    async def complete_execution(
        self,
        workflow_id: str,
        guard_id: str,
        total_hours_worked: Decimal,
        actual_end_time: datetime | None = None,
    ) -> JobWorkflow:
        """Guard finishes the job; records hours, payment amount and rating deadline.

        Raises:
            InvalidHoursWorkedError: hours are zero, negative or not finite.
        """
        hours = Decimal(str(total_hours_worked))
        if not hours.is_finite() or hours <= 0:
            raise InvalidHoursWorkedError(hours)

        ended_at = actual_end_time or datetime.now(UTC)
        deadline = ended_at + timedelta(days=self._settings.rating_window_days)
        # Filled in by stamp_completion before the audit row is written
        metadata: dict[str, Any] = {
            "totalHoursWorked": str(hours),
            "ratingDeadline": deadline.isoformat(),
        }

        def stamp_completion(row: JobWorkflowModel) -> None:
            amount = (hours * row.agreed_hourly_rate).quantize(Decimal("0.01"))
            metadata["paymentAmount"] = str(amount)
            row.total_hours_worked = hours
            row.actual_end_time = ended_at
            row.payment_amount = amount
            row.rating_deadline = deadline

        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                WorkflowState.COMPLETED,
                guard_id,
                reason="Job completed",
                metadata=metadata,
                mutate=stamp_completion,
            )
        return uow.result

    # ------------------------------------------------------------------
    # Cancellation and closing
    # ------------------------------------------------------------------

    async def cancel(self, workflow_id: str, actor_id: str, reason: str) -> JobWorkflow:
        """Cancel from any state the transition table allows.

        Raises:
            AlreadyTerminalError: the workflow is already closed or cancelled.
            InvalidTransitionError: rated and paid workflows are past cancelling.
        """
        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                WorkflowState.CANCELLED,
                actor_id,
                reason=reason,
                metadata={"cancelledBy": actor_id},
            )
        logger.info("workflow.cancelled", workflow_id=workflow_id, by=actor_id)
        return uow.result

    async def close(self, workflow_id: str, actor_id: str, reason: str = "") -> JobWorkflow:
        async with self.unit_of_work(workflow_id) as uow:
            await self.apply_transition(
                uow,
                WorkflowState.CLOSED,
                actor_id,
                reason=reason or "Workflow closed",
            )
        return uow.result

    async def attach_conversation(self, workflow_id: str, conversation_id: str) -> None:
        """Store the chat thread created for an accepted job."""
        async with self.unit_of_work(workflow_id) as uow:
            uow.row.conversation_id = conversation_id
            uow.row.updated_at = datetime.now(UTC)
        logger.info("workflow.conversation_attached", conversation_id=conversation_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_workflow(self, workflow_id: str) -> JobWorkflow:
        """Get a workflow or raise."""
        async with self._session_factory() as session:
            row = await WorkflowRepository(session).get_by_id(workflow_id)
            if row is None:
                raise WorkflowNotFoundError(workflow_id)
            return workflow_to_domain(row)

    async def get_status(self, workflow_id: str) -> WorkflowStatus:
        """Get the current state with the states and events reachable from it."""
        workflow = await self.get_workflow(workflow_id)
        state = workflow.current_state
        sm = JobWorkflowStateMachine(current_status=state.value)
        return WorkflowStatus(
            workflow_id=workflow_id,
            current_state=state,
            allowed_targets=tuple(sorted(allowed_targets(state), key=list(WorkflowState).index)),
            allowed_events=tuple(sm.get_allowed_events()),
            is_terminal=state.is_terminal,
        )

    async def list_workflows(
        self,
        company_id: str | None = None,
        guard_id: str | None = None,
        states: Iterable[WorkflowState] | None = None,
    ) -> list[JobWorkflow]:
        async with self._session_factory() as session:
            rows = await WorkflowRepository(session).list_workflows(
                company_id=company_id, guard_id=guard_id, states=states
            )
            return [workflow_to_domain(row) for row in rows]

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _after_commit(self, uow: WorkflowUnitOfWork) -> None:
        if uow.result is None:
            return
        for transition in uow.transitions:
            await self._side_effects.dispatch(uow.result, transition_to_domain(transition))
        for effect in uow.effects:
            await effect(uow.result)
