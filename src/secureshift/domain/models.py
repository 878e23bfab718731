"""Immutable domain records returned by the service layer.

These are plain frozen dataclasses: no SQLAlchemy, no pydantic. The
repositories build them from persisted rows, the API serializes them through
pydantic schemas with ``from_attributes``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from secureshift.domain.enums import RaterRole, ReleaseStatus, WorkflowState

if TYPE_CHECKING:
    from datetime import datetime
    from decimal import Decimal


@dataclass(frozen=True)
class ComplianceSnapshot:
    """Credential checks captured on the workflow; set once, never cleared."""

    company_verified: bool = False
    guard_verified: bool = False
    rate_compliant: bool = False
    company_verified_at: datetime | None = None
    guard_verified_at: datetime | None = None


@dataclass(frozen=True)
class WorkflowMetadata:
    """Typed job details consumed by coordination logic.

    Anything not listed here goes into ``custom_fields``; nothing in the
    services reads from that map.
    """

    location: str | None = None
    scheduled_start_time: datetime | None = None
    scheduled_end_time: datetime | None = None
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    total_hours_worked: Decimal | None = None
    payment_amount: Decimal | None = None
    rating_deadline: datetime | None = None
    required_certificates: tuple[str, ...] = ()
    custom_fields: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobApplication:
    guard_id: str
    certificate_id: str
    motivation: str
    applied_at: datetime


@dataclass(frozen=True)
class WorkflowTransition:
    """One audited state change. The creation record has ``from_state=None``."""

    sequence: int
    from_state: WorkflowState | None
    to_state: WorkflowState
    timestamp: datetime
    actor_id: str
    reason: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None


@dataclass(frozen=True)
class JobWorkflow:
    """Lifecycle record for one job posting (aggregate root)."""

    workflow_id: str
    title: str
    company_id: str
    company_name: str | None
    selected_guard_id: str | None
    current_state: WorkflowState
    agreed_hourly_rate: Decimal
    compliance: ComplianceSnapshot
    metadata: WorkflowMetadata
    transitions: tuple[WorkflowTransition, ...]
    applications: tuple[JobApplication, ...]
    conversation_id: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def last_transition(self) -> WorkflowTransition | None:
        return self.transitions[-1] if self.transitions else None

    def party_for(self, role: RaterRole) -> str | None:
        """Return the id of the party that rates as ``role``."""
        if role is RaterRole.COMPANY:
            return self.company_id
        return self.selected_guard_id


@dataclass(frozen=True)
class RatingRecord:
    workflow_id: str
    rater_role: RaterRole
    rater_id: str
    rating: Decimal
    comment: str | None
    submitted_at: datetime
    auto_submitted: bool = False


@dataclass(frozen=True)
class PaymentTrigger:
    """At-most-once payment token for a workflow."""

    workflow_id: str
    triggered: bool = False
    triggered_at: datetime | None = None
    initiating: bool = False
    initiation_claimed_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None
    reference_id: str | None = None
    confirmed_at: datetime | None = None


@dataclass(frozen=True)
class RatingLedgerView:
    workflow_id: str
    records: tuple[RatingRecord, ...]

    @property
    def guard_rated(self) -> bool:
        return any(r.rater_role is RaterRole.GUARD for r in self.records)

    @property
    def company_rated(self) -> bool:
        return any(r.rater_role is RaterRole.COMPANY for r in self.records)

    @property
    def is_complete(self) -> bool:
        return self.guard_rated and self.company_rated

    @property
    def missing_roles(self) -> tuple[RaterRole, ...]:
        rated = {r.rater_role for r in self.records}
        return tuple(role for role in RaterRole if role not in rated)


@dataclass(frozen=True)
class ReleaseOutcome:
    """Result of handing a workflow to the payment initiator."""

    status: ReleaseStatus
    reference_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class RatingSubmission:
    """What ``RatingLedger.submit_rating`` reports back to the caller."""

    record: RatingRecord
    ledger_complete: bool
    release: ReleaseOutcome | None = None


@dataclass(frozen=True)
class WorkflowStatus:
    """Current state plus what can happen next."""

    workflow_id: str
    current_state: WorkflowState
    allowed_targets: tuple[WorkflowState, ...]
    allowed_events: tuple[str, ...]
    is_terminal: bool
