"""Domain enumerations for the job workflow.

These enums define the canonical states, roles and notification kinds used
throughout the system. They are framework-agnostic (no SQLAlchemy, no FastAPI
imports).
"""

import enum

# Actor id used for transitions the system performs on its own behalf
# (auto-review, rating completion, payment confirmation, rating-window policy).
SYSTEM_ACTOR = "SYSTEM"


class WorkflowState(enum.StrEnum):
    """Lifecycle states of a job workflow.

    Legal moves between them live in domain/transitions.py.
    """

    POSTED = "posted"
    APPLIED = "applied"
    UNDER_REVIEW = "underReview"
    ACCEPTED = "accepted"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    RATED = "rated"
    PAID = "paid"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.CLOSED, WorkflowState.CANCELLED)

    @property
    def is_ratable(self) -> bool:
        return self in (WorkflowState.COMPLETED, WorkflowState.RATED)


class RaterRole(enum.StrEnum):
    """The two parties whose ratings gate payment release."""

    GUARD = "guard"
    COMPANY = "company"


class ActorRole(enum.StrEnum):
    """Role of an actor relative to one specific workflow.

    Resolved per request from the workflow's company and selected guard,
    see domain/authorization.py.
    """

    COMPANY = "company"
    ASSIGNED_GUARD = "assigned_guard"
    APPLICANT = "applicant"
    SYSTEM = "system"


class NotificationType(enum.StrEnum):
    """Kinds of notifications sent as a consequence of transitions."""

    APPLICATION_RECEIVED = "application_received"
    APPLICATION_ACCEPTED = "application_accepted"
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    RATING_REQUESTED = "rating_requested"
    RATINGS_COMPLETE = "ratings_complete"
    PAYMENT_PROCESSED = "payment_processed"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    RATING_WINDOW_EXPIRED = "rating_window_expired"


class ReleaseStatus(enum.StrEnum):
    """Outcome of a payment release attempt."""

    PAID = "paid"
    FAILED = "failed"
    ALREADY_TRIGGERED = "already_triggered"
    IN_FLIGHT = "in_flight"
    NOT_READY = "not_ready"
