"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import and_, or_, select, update

from secureshift.domain.enums import RaterRole, WorkflowState
from secureshift.domain.models import (
    ComplianceSnapshot,
    JobApplication,
    JobWorkflow,
    PaymentTrigger,
    RatingRecord,
    WorkflowMetadata,
    WorkflowTransition,
)
from secureshift.infrastructure.database.orm_models import (
    ComplianceCheckModel,
    JobApplicationModel,
    JobWorkflowModel,
    PaymentTriggerModel,
    RatingModel,
    WorkflowTransitionModel,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ---------------------------------------------------------------------------
# Row -> domain record mapping
# ---------------------------------------------------------------------------
def transition_to_domain(row: WorkflowTransitionModel) -> WorkflowTransition:
    return WorkflowTransition(
        sequence=row.sequence,
        from_state=WorkflowState(row.from_state) if row.from_state else None,
        to_state=WorkflowState(row.to_state),
        timestamp=as_utc(row.created_at),
        actor_id=row.actor_id,
        reason=row.reason or "",
        metadata=dict(row.metadata_json or {}),
        idempotency_key=row.idempotency_key,
    )


def workflow_to_domain(row: JobWorkflowModel) -> JobWorkflow:
    """Build the immutable domain record from a loaded row and its children."""
    return JobWorkflow(
        workflow_id=row.id,
        title=row.title,
        company_id=row.company_id,
        company_name=row.company_name,
        selected_guard_id=row.selected_guard_id,
        current_state=WorkflowState(row.current_state),
        agreed_hourly_rate=row.agreed_hourly_rate,
        compliance=ComplianceSnapshot(
            company_verified=row.company_verified,
            guard_verified=row.guard_verified,
            rate_compliant=row.rate_compliant,
            company_verified_at=as_utc(row.company_verified_at),
            guard_verified_at=as_utc(row.guard_verified_at),
        ),
        metadata=WorkflowMetadata(
            location=row.location,
            scheduled_start_time=as_utc(row.scheduled_start_time),
            scheduled_end_time=as_utc(row.scheduled_end_time),
            actual_start_time=as_utc(row.actual_start_time),
            actual_end_time=as_utc(row.actual_end_time),
            total_hours_worked=row.total_hours_worked,
            payment_amount=row.payment_amount,
            rating_deadline=as_utc(row.rating_deadline),
            required_certificates=tuple(row.required_certificates or ()),
            custom_fields=dict(row.custom_fields or {}),
        ),
        transitions=tuple(transition_to_domain(t) for t in row.transitions),
        applications=tuple(
            JobApplication(
                guard_id=a.guard_id,
                certificate_id=a.certificate_id,
                motivation=a.motivation,
                applied_at=as_utc(a.applied_at),
            )
            for a in row.applications
        ),
        conversation_id=row.conversation_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def rating_to_domain(row: RatingModel) -> RatingRecord:
    return RatingRecord(
        workflow_id=row.workflow_id,
        rater_role=RaterRole(row.rater_role),
        rater_id=row.rater_id,
        rating=Decimal(row.rating),
        comment=row.comment,
        submitted_at=as_utc(row.submitted_at),
        auto_submitted=row.auto_submitted,
    )


def trigger_to_domain(row: PaymentTriggerModel) -> PaymentTrigger:
    return PaymentTrigger(
        workflow_id=row.workflow_id,
        triggered=row.triggered,
        triggered_at=as_utc(row.triggered_at),
        initiating=row.initiating,
        initiation_claimed_at=as_utc(row.initiation_claimed_at),
        attempts=row.attempts,
        last_error=row.last_error,
        reference_id=row.reference_id,
        confirmed_at=as_utc(row.confirmed_at),
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------
class WorkflowRepository:
    """Data access for job workflows and their audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, workflow: JobWorkflowModel) -> JobWorkflowModel:
        """Insert a new workflow (with its creation transition attached)."""
        self._session.add(workflow)
        await self._session.flush()
        return workflow

    async def exists(self, workflow_id: str) -> bool:
        result = await self._session.execute(
            select(JobWorkflowModel.id).where(JobWorkflowModel.id == workflow_id)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_id(self, workflow_id: str) -> JobWorkflowModel | None:
        """Fetch a workflow by id."""
        result = await self._session.execute(
            select(JobWorkflowModel).where(JobWorkflowModel.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, workflow_id: str) -> JobWorkflowModel | None:
        """Fetch a workflow with a row lock (SELECT ... FOR UPDATE).

        SQLite has no row locks; there the per-workflow lock and the version
        column do the work.
        """
        result = await self._session.execute(
            select(JobWorkflowModel)
            .where(JobWorkflowModel.id == workflow_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_workflows(
        self,
        company_id: str | None = None,
        guard_id: str | None = None,
        states: Iterable[WorkflowState] | None = None,
    ) -> list[JobWorkflowModel]:
        """Fetch workflows, newest first, optionally filtered."""
        stmt = select(JobWorkflowModel).order_by(JobWorkflowModel.created_at.desc())
        if company_id is not None:
            stmt = stmt.where(JobWorkflowModel.company_id == company_id)
        if guard_id is not None:
            stmt = stmt.where(JobWorkflowModel.selected_guard_id == guard_id)
        if states is not None:
            stmt = stmt.where(JobWorkflowModel.current_state.in_([s.value for s in states]))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_expired_rating_windows(self, now: datetime) -> list[str]:
        """Ids of completed workflows whose rating deadline has passed."""
        result = await self._session.execute(
            select(JobWorkflowModel.id)
            .where(
                JobWorkflowModel.current_state == WorkflowState.COMPLETED.value,
                JobWorkflowModel.rating_deadline.is_not(None),
                JobWorkflowModel.rating_deadline <= now,
            )
            .order_by(JobWorkflowModel.rating_deadline.asc())
        )
        return list(result.scalars().all())

    def append_transition(
        self,
        workflow: JobWorkflowModel,
        from_state: WorkflowState | None,
        to_state: WorkflowState,
        actor_id: str,
        reason: str = "",
        metadata: dict | None = None,
        idempotency_key: str | None = None,
        timestamp: datetime | None = None,
    ) -> WorkflowTransitionModel:
        """Append an audit row. This is the ONLY write the audit log allows."""
        row = WorkflowTransitionModel(
            sequence=len(workflow.transitions) + 1,
            from_state=from_state.value if from_state else None,
            to_state=to_state.value,
            actor_id=actor_id,
            reason=reason,
            metadata_json=dict(metadata or {}),
            idempotency_key=idempotency_key,
            created_at=timestamp or datetime.now(UTC),
        )
        workflow.transitions.append(row)
        return row

    @staticmethod
    def find_transition_by_key(
        workflow: JobWorkflowModel, idempotency_key: str
    ) -> WorkflowTransitionModel | None:
        for row in workflow.transitions:
            if row.idempotency_key == idempotency_key:
                return row
        return None


class ApplicationRepository:
    """Data access for job applications."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def find(workflow: JobWorkflowModel, guard_id: str) -> JobApplicationModel | None:
        for row in workflow.applications:
            if row.guard_id == guard_id:
                return row
        return None

    def add(
        self,
        workflow: JobWorkflowModel,
        guard_id: str,
        certificate_id: str,
        motivation: str = "",
    ) -> JobApplicationModel:
        row = JobApplicationModel(
            guard_id=guard_id,
            certificate_id=certificate_id,
            motivation=motivation,
            applied_at=datetime.now(UTC),
        )
        workflow.applications.append(row)
        return row


class RatingRepository:
    """Data access for the write-once rating ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_workflow(self, workflow_id: str) -> list[RatingModel]:
        result = await self._session.execute(
            select(RatingModel)
            .where(RatingModel.workflow_id == workflow_id)
            .order_by(RatingModel.submitted_at.asc(), RatingModel.id.asc())
        )
        return list(result.scalars().all())

    async def get_by_role(self, workflow_id: str, rater_role: RaterRole) -> RatingModel | None:
        result = await self._session.execute(
            select(RatingModel).where(
                RatingModel.workflow_id == workflow_id,
                RatingModel.rater_role == rater_role.value,
            )
        )
        return result.scalar_one_or_none()

    async def create(self, rating: RatingModel) -> RatingModel:
        """Insert a rating. The unique constraint rejects a second one per role."""
        self._session.add(rating)
        await self._session.flush()
        return rating


class PaymentTriggerRepository:
    """Data access for the at-most-once payment token.

    The claim methods are conditional UPDATEs: exactly one caller sees
    rowcount == 1, everyone else sees 0.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, workflow_id: str) -> PaymentTriggerModel:
        row = PaymentTriggerModel(workflow_id=workflow_id)
        self._session.add(row)
        await self._session.flush()
        return row

    async def get(self, workflow_id: str) -> PaymentTriggerModel | None:
        result = await self._session.execute(
            select(PaymentTriggerModel)
            .where(PaymentTriggerModel.workflow_id == workflow_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def claim_trigger(self, workflow_id: str, now: datetime) -> bool:
        """Flip ``triggered`` false -> true. Returns True for the single winner."""
        result = await self._session.execute(
            update(PaymentTriggerModel)
            .where(
                PaymentTriggerModel.workflow_id == workflow_id,
                PaymentTriggerModel.triggered.is_(False),
            )
            .values(triggered=True, triggered_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_initiation(
        self, workflow_id: str, now: datetime, stale_before: datetime
    ) -> bool:
        """Claim the in-flight slot for one initiation attempt.

        A slot still held since before ``stale_before`` is taken over: its
        holder crashed or was cancelled without releasing it.
        """
        result = await self._session.execute(
            update(PaymentTriggerModel)
            .where(
                PaymentTriggerModel.workflow_id == workflow_id,
                PaymentTriggerModel.triggered.is_(True),
                PaymentTriggerModel.confirmed_at.is_(None),
                or_(
                    PaymentTriggerModel.initiating.is_(False),
                    PaymentTriggerModel.initiation_claimed_at.is_(None),
                    PaymentTriggerModel.initiation_claimed_at < stale_before,
                ),
            )
            .values(
                initiating=True,
                initiation_claimed_at=now,
                attempts=PaymentTriggerModel.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def record_failure(self, workflow_id: str, error: str) -> None:
        await self._session.execute(
            update(PaymentTriggerModel)
            .where(PaymentTriggerModel.workflow_id == workflow_id)
            .values(initiating=False, initiation_claimed_at=None, last_error=error)
            .execution_options(synchronize_session=False)
        )

    async def record_confirmation(
        self, workflow_id: str, reference_id: str | None, now: datetime
    ) -> None:
        await self._session.execute(
            update(PaymentTriggerModel)
            .where(PaymentTriggerModel.workflow_id == workflow_id)
            .values(
                initiating=False,
                initiation_claimed_at=None,
                last_error=None,
                reference_id=reference_id,
                confirmed_at=now,
            )
            .execution_options(synchronize_session=False)
        )

    async def get_pending(self) -> list[tuple[str, WorkflowState]]:
        """(workflow id, state) pairs whose payment was never confirmed.

        Covers rated workflows with a triggered, unconfirmed token and completed
        workflows whose token was never claimed.
        """
        result = await self._session.execute(
            select(PaymentTriggerModel.workflow_id, JobWorkflowModel.current_state)
            .join(JobWorkflowModel, JobWorkflowModel.id == PaymentTriggerModel.workflow_id)
            .where(
                or_(
                    and_(
                        PaymentTriggerModel.triggered.is_(True),
                        PaymentTriggerModel.confirmed_at.is_(None),
                        JobWorkflowModel.current_state == WorkflowState.RATED.value,
                    ),
                    and_(
                        PaymentTriggerModel.triggered.is_(False),
                        JobWorkflowModel.current_state == WorkflowState.COMPLETED.value,
                    ),
                )
            )
        )
        return [(workflow_id, WorkflowState(state)) for workflow_id, state in result.all()]


class ComplianceRepository:
    """Data access for cached positive credential checks."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, subject_kind: str, reference_id: str) -> ComplianceCheckModel | None:
        result = await self._session.execute(
            select(ComplianceCheckModel).where(
                ComplianceCheckModel.subject_kind == subject_kind,
                ComplianceCheckModel.reference_id == reference_id,
            )
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        subject_kind: str,
        reference_id: str,
        subject_id: str,
        verified_at: datetime,
        display_name: str | None = None,
    ) -> ComplianceCheckModel:
        """Store (or refresh) a positive result."""
        row = await self.get(subject_kind, reference_id)
        if row is None:
            row = ComplianceCheckModel(
                subject_kind=subject_kind,
                reference_id=reference_id,
                subject_id=subject_id,
            )
            self._session.add(row)
        row.subject_id = subject_id
        row.display_name = display_name
        row.verified_at = verified_at
        await self._session.flush()
        return row
