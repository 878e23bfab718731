"""Pydantic schemas for the Workflow API.

These schemas define the request/response shapes for the REST API. They are
separate from the domain records and ORM models; responses are built from the
frozen domain dataclasses with ``from_attributes``.

Actor ids in requests may never be ``SYSTEM``: that identity is reserved for
transitions the service performs on its own.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from secureshift.domain.enums import SYSTEM_ACTOR, RaterRole, ReleaseStatus, WorkflowState


def _reject_system_actor(value: str) -> str:
    if value.strip().upper() == SYSTEM_ACTOR:
        raise ValueError(f"{SYSTEM_ACTOR} is reserved for automatic transitions")
    return value


ActorId = Annotated[
    str,
    Field(min_length=1, max_length=128),
    AfterValidator(_reject_system_actor),
]

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateWorkflowRequest(BaseModel):
    """Request body for posting a job and opening its workflow."""

    workflow_id: str | None = Field(
        default=None,
        max_length=64,
        description="Job id to use as workflow id; generated when omitted",
    )
    company_id: ActorId
    company_registration_id: str = Field(
        ...,
        min_length=1,
        max_length=32,
        description="Chamber of Commerce (KvK) registration number",
        examples=["12345678"],
    )
    title: str = Field(..., min_length=1, max_length=255, examples=["Night shift, warehouse"])
    hourly_rate: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Agreed hourly rate in EUR; must meet the statutory minimum",
        examples=[18.50],
    )
    company_name: str | None = None
    location: str | None = Field(default=None, max_length=255)
    scheduled_start_time: datetime | None = None
    scheduled_end_time: datetime | None = None
    required_certificates: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ApplyRequest(BaseModel):
    guard_id: ActorId
    certificate_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Security certificate (WPBR) number",
    )
    motivation: str = Field(default="", max_length=2000)


class AcceptApplicationRequest(BaseModel):
    company_id: ActorId
    guard_id: ActorId
    message: str = Field(default="", max_length=2000)
    scheduled_start_time: datetime | None = None


class StartExecutionRequest(BaseModel):
    guard_id: ActorId
    actual_start_time: datetime | None = None


class CompleteExecutionRequest(BaseModel):
    """Hours are validated by the service so the error carries its own code."""

    guard_id: ActorId
    total_hours_worked: Decimal
    actual_end_time: datetime | None = None


class SubmitRatingRequest(BaseModel):
    rater_role: RaterRole
    rater_id: ActorId
    rating: Decimal = Field(..., description="Score on the 1-5 scale", examples=[4.5])
    comment: str | None = Field(default=None, max_length=2000)


class CancelRequest(BaseModel):
    actor_id: ActorId
    reason: str = Field(..., min_length=1, max_length=2000)


class CloseRequest(BaseModel):
    actor_id: ActorId
    reason: str = Field(default="", max_length=2000)


class TransitionRequest(BaseModel):
    """Generic transition request; the dedicated endpoints are preferred."""

    to_state: WorkflowState
    actor_id: ActorId
    reason: str = Field(default="", max_length=2000)
    metadata: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = Field(
        default=None,
        max_length=128,
        description="Replaying the same key for the same target is a no-op",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransitionResponse(BaseModel):
    """One entry of the audit trail."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_state: WorkflowState | None
    to_state: WorkflowState
    timestamp: datetime
    actor_id: str
    reason: str
    metadata: dict[str, Any]
    idempotency_key: str | None = None


class ApplicationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    guard_id: str
    certificate_id: str
    motivation: str
    applied_at: datetime


class ComplianceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_verified: bool
    guard_verified: bool
    rate_compliant: bool
    company_verified_at: datetime | None
    guard_verified_at: datetime | None


class WorkflowMetadataResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    location: str | None
    scheduled_start_time: datetime | None
    scheduled_end_time: datetime | None
    actual_start_time: datetime | None
    actual_end_time: datetime | None
    total_hours_worked: Decimal | None
    payment_amount: Decimal | None
    rating_deadline: datetime | None
    required_certificates: list[str]
    custom_fields: dict[str, Any]


class WorkflowResponse(BaseModel):
    """Response schema for a job workflow."""

    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    title: str
    company_id: str
    company_name: str | None
    selected_guard_id: str | None
    current_state: WorkflowState
    agreed_hourly_rate: Decimal
    compliance: ComplianceResponse
    metadata: WorkflowMetadataResponse
    transitions: list[TransitionResponse]
    applications: list[ApplicationResponse]
    conversation_id: str | None
    created_at: datetime
    updated_at: datetime


class WorkflowStatusResponse(BaseModel):
    """Lightweight status check response."""

    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    current_state: WorkflowState
    allowed_targets: list[WorkflowState]
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current state"
    )
    is_terminal: bool


class RatingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    rater_role: RaterRole
    rater_id: str
    rating: Decimal
    comment: str | None
    submitted_at: datetime
    auto_submitted: bool


class ReleaseOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: ReleaseStatus
    reference_id: str | None = None
    error: str | None = None


class RatingSubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    record: RatingResponse
    ledger_complete: bool
    release: ReleaseOutcomeResponse | None = None


class RatingLedgerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    records: list[RatingResponse]
    is_complete: bool
    missing_roles: list[RaterRole]


class PaymentTriggerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    triggered: bool
    triggered_at: datetime | None
    initiating: bool
    initiation_claimed_at: datetime | None
    attempts: int
    last_error: str | None
    reference_id: str | None
    confirmed_at: datetime | None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
