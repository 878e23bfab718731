"""SQLAlchemy 2.0 ORM models for the SecureShift workflow.

Six tables:
    1. job_workflows          — One row per job posting; the aggregate root.
    2. workflow_transitions   — Append-only audit log of every state change.
    3. job_applications       — Guards who applied to a job.
    4. workflow_ratings       — Write-once ratings, one per (workflow, role).
    5. payment_triggers       — At-most-once payment token per workflow.
    6. compliance_checks      — Cached positive credential verifications.

Design decisions:
    - String primary keys: the workflow id is the job id chosen upstream.
    - Decimal for rates, hours and amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for open metadata maps.
    - CHECK constraints on state and rating range at DB level.
    - version_id_col on job_workflows so a stale write fails instead of
      silently overwriting a concurrent transition.
    - Unique (workflow_id, sequence) on transitions: history order is commit order.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from secureshift.domain.enums import WorkflowState

JSONType = JSON().with_variant(JSONB(), "postgresql")

_STATE_VALUES = ", ".join(f"'{s.value}'" for s in WorkflowState)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. job_workflows
# ---------------------------------------------------------------------------
class JobWorkflowModel(Base):
    """Lifecycle record for one job posting."""

    __tablename__ = "job_workflows"

    # --- Primary Key ---
    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="Workflow id; equals the job id",
    )

    # --- Job & Parties ---
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    selected_guard_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        default=None,
        comment="Guard whose application was accepted",
    )

    # --- State (guarded by JobWorkflowStateMachine) ---
    current_state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=WorkflowState.POSTED.value,
    )

    # --- Financials ---
    agreed_hourly_rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        comment="EUR per hour; immutable after creation",
    )
    total_hours_worked: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)
    payment_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="hours x agreed rate, set on completion",
    )

    # --- Compliance snapshot ---
    company_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    guard_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rate_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    company_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    guard_verified_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Schedule ---
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    scheduled_start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    scheduled_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_start_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rating_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="After this moment the rating-window policy applies",
    )

    # --- Open metadata ---
    required_certificates: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    custom_fields: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    conversation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # --- Optimistic concurrency ---
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # --- Relationships ---
    transitions: Mapped[list[WorkflowTransitionModel]] = relationship(
        "WorkflowTransitionModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowTransitionModel.sequence.asc()",
        lazy="selectin",
    )
    applications: Mapped[list[JobApplicationModel]] = relationship(
        "JobApplicationModel",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="JobApplicationModel.applied_at.asc()",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    # --- Table Constraints & Indexes ---
    __table_args__ = (
        CheckConstraint(
            f"current_state IN ({_STATE_VALUES})",
            name="ck_workflow_valid_state",
        ),
        CheckConstraint(
            "agreed_hourly_rate > 0",
            name="ck_workflow_positive_rate",
        ),
        Index("idx_workflow_state", "current_state"),
        Index("idx_workflow_company", "company_id"),
        Index("idx_workflow_guard", "selected_guard_id"),
        Index("idx_workflow_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<JobWorkflowModel id={self.id} state={self.current_state} "
            f"rate={self.agreed_hourly_rate}>"
        )


# ---------------------------------------------------------------------------
# 2. workflow_transitions (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class WorkflowTransitionModel(Base):
    """Immutable audit record of one state change.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "workflow_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("job_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="1-based position in the workflow history",
    )
    from_state: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="State before the change (null for creation)",
    )
    to_state: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_json: Mapped[dict] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    workflow: Mapped[JobWorkflowModel] = relationship(
        "JobWorkflowModel",
        back_populates="transitions",
    )

    __table_args__ = (
        UniqueConstraint("workflow_id", "sequence", name="uq_transition_sequence"),
        UniqueConstraint("workflow_id", "idempotency_key", name="uq_transition_idempotency"),
        Index("idx_transition_workflow", "workflow_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowTransitionModel {self.workflow_id}#{self.sequence} "
            f"{self.from_state}->{self.to_state}>"
        )


# ---------------------------------------------------------------------------
# 3. job_applications
# ---------------------------------------------------------------------------
class JobApplicationModel(Base):
    __tablename__ = "job_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("job_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    guard_id: Mapped[str] = mapped_column(String(64), nullable=False)
    certificate_id: Mapped[str] = mapped_column(String(64), nullable=False)
    motivation: Mapped[str] = mapped_column(Text, nullable=False, default="")
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    workflow: Mapped[JobWorkflowModel] = relationship(
        "JobWorkflowModel",
        back_populates="applications",
    )

    __table_args__ = (
        UniqueConstraint("workflow_id", "guard_id", name="uq_application_guard"),
    )


# ---------------------------------------------------------------------------
# 4. workflow_ratings
# ---------------------------------------------------------------------------
class RatingModel(Base):
    """A write-once rating. The unique constraint backs the duplicate check."""

    __tablename__ = "workflow_ratings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("job_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    rater_role: Mapped[str] = mapped_column(String(16), nullable=False)
    rater_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rating: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_submitted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("workflow_id", "rater_role", name="uq_rating_role"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
        CheckConstraint("rater_role IN ('guard', 'company')", name="ck_rating_role"),
    )


# ---------------------------------------------------------------------------
# 5. payment_triggers
# ---------------------------------------------------------------------------
class PaymentTriggerModel(Base):
    """At-most-once payment token.

    ``triggered`` flips false -> true exactly once via a conditional UPDATE.
    ``initiating`` is claimed the same way around each initiation attempt; a
    claim older than the initiation timeout belongs to a dead worker and may
    be taken over.
    """

    __tablename__ = "payment_triggers"

    workflow_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("job_workflows.id", ondelete="CASCADE"),
        primary_key=True,
    )
    triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    initiating: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    initiation_claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the current initiation attempt was claimed",
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_payment_attempts"),
    )


# ---------------------------------------------------------------------------
# 6. compliance_checks
# ---------------------------------------------------------------------------
class ComplianceCheckModel(Base):
    """A positive verification result, reused until it goes stale."""

    __tablename__ = "compliance_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_kind: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="'company' or 'guard'",
    )
    reference_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Registration number or certificate number",
    )
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("subject_kind", "reference_id", name="uq_compliance_reference"),
    )
