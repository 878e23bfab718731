"""Initial workflow schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 00:00:00+00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

WORKFLOW_STATES = (
    "posted",
    "applied",
    "underReview",
    "accepted",
    "inProgress",
    "completed",
    "rated",
    "paid",
    "closed",
    "cancelled",
)


def _ts(name: str, nullable: bool = True, **kwargs: object) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def upgrade() -> None:
    states = ", ".join(f"'{s}'" for s in WORKFLOW_STATES)
    op.create_table(
        "job_workflows",
        sa.Column("id", sa.String(64), primary_key=True, comment="Workflow id; equals the job id"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("company_id", sa.String(64), nullable=False),
        sa.Column("company_name", sa.String(200), nullable=True),
        sa.Column(
            "selected_guard_id",
            sa.String(64),
            nullable=True,
            comment="Guard whose application was accepted",
        ),
        sa.Column("current_state", sa.String(20), nullable=False),
        sa.Column(
            "agreed_hourly_rate",
            sa.Numeric(10, 2),
            nullable=False,
            comment="EUR per hour; immutable after creation",
        ),
        sa.Column("total_hours_worked", sa.Numeric(8, 2), nullable=True),
        sa.Column(
            "payment_amount",
            sa.Numeric(12, 2),
            nullable=True,
            comment="hours x agreed rate, set on completion",
        ),
        sa.Column("company_verified", sa.Boolean(), nullable=False),
        sa.Column("guard_verified", sa.Boolean(), nullable=False),
        sa.Column("rate_compliant", sa.Boolean(), nullable=False),
        _ts("company_verified_at"),
        _ts("guard_verified_at"),
        sa.Column("location", sa.String(200), nullable=True),
        _ts("scheduled_start_time"),
        _ts("scheduled_end_time"),
        _ts("actual_start_time"),
        _ts("actual_end_time"),
        _ts("rating_deadline", comment="After this moment the rating-window policy applies"),
        sa.Column("required_certificates", JSONType, nullable=False),
        sa.Column("custom_fields", JSONType, nullable=False),
        sa.Column("conversation_id", sa.String(128), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.CheckConstraint(f"current_state IN ({states})", name="ck_workflow_valid_state"),
        sa.CheckConstraint("agreed_hourly_rate > 0", name="ck_workflow_positive_rate"),
    )
    op.create_index("idx_workflow_state", "job_workflows", ["current_state"])
    op.create_index("idx_workflow_company", "job_workflows", ["company_id"])
    op.create_index("idx_workflow_guard", "job_workflows", ["selected_guard_id"])
    op.create_index("idx_workflow_created_at", "job_workflows", ["created_at"])

    op.create_table(
        "workflow_transitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("job_workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "sequence",
            sa.Integer(),
            nullable=False,
            comment="1-based position in the workflow history",
        ),
        sa.Column(
            "from_state",
            sa.String(20),
            nullable=True,
            comment="State before the change (null for creation)",
        ),
        sa.Column("to_state", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("metadata", JSONType, nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        _ts("created_at", nullable=False),
        sa.UniqueConstraint("workflow_id", "sequence", name="uq_transition_sequence"),
        sa.UniqueConstraint("workflow_id", "idempotency_key", name="uq_transition_idempotency"),
    )
    op.create_index("idx_transition_workflow", "workflow_transitions", ["workflow_id"])

    op.create_table(
        "job_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("job_workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("guard_id", sa.String(64), nullable=False),
        sa.Column("certificate_id", sa.String(64), nullable=False),
        sa.Column("motivation", sa.Text(), nullable=False),
        _ts("applied_at", nullable=False),
        sa.UniqueConstraint("workflow_id", "guard_id", name="uq_application_guard"),
    )

    op.create_table(
        "workflow_ratings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("job_workflows.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rater_role", sa.String(16), nullable=False),
        sa.Column("rater_id", sa.String(64), nullable=False),
        sa.Column("rating", sa.Numeric(3, 2), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("auto_submitted", sa.Boolean(), nullable=False),
        _ts("submitted_at", nullable=False),
        sa.UniqueConstraint("workflow_id", "rater_role", name="uq_rating_role"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_rating_range"),
        sa.CheckConstraint("rater_role IN ('guard', 'company')", name="ck_rating_role"),
    )

    op.create_table(
        "payment_triggers",
        sa.Column(
            "workflow_id",
            sa.String(64),
            sa.ForeignKey("job_workflows.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("triggered", sa.Boolean(), nullable=False),
        _ts("triggered_at"),
        sa.Column("initiating", sa.Boolean(), nullable=False),
        _ts("initiation_claimed_at", comment="When the current initiation attempt was claimed"),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("reference_id", sa.String(128), nullable=True),
        _ts("confirmed_at"),
        sa.CheckConstraint("attempts >= 0", name="ck_payment_attempts"),
    )

    op.create_table(
        "compliance_checks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subject_kind", sa.String(16), nullable=False, comment="'company' or 'guard'"),
        sa.Column(
            "reference_id",
            sa.String(64),
            nullable=False,
            comment="Registration number or certificate number",
        ),
        sa.Column("subject_id", sa.String(64), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        _ts("verified_at", nullable=False),
        sa.UniqueConstraint("subject_kind", "reference_id", name="uq_compliance_reference"),
    )


def downgrade() -> None:
    op.drop_table("compliance_checks")
    op.drop_table("payment_triggers")
    op.drop_table("workflow_ratings")
    op.drop_table("job_applications")
    op.drop_index("idx_transition_workflow", table_name="workflow_transitions")
    op.drop_table("workflow_transitions")
    op.drop_index("idx_workflow_created_at", table_name="job_workflows")
    op.drop_index("idx_workflow_guard", table_name="job_workflows")
    op.drop_index("idx_workflow_company", table_name="job_workflows")
    op.drop_index("idx_workflow_state", table_name="job_workflows")
    op.drop_table("job_workflows")
