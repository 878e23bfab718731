"""Job workflow REST API routes.

Thin adapters over WorkflowService, RatingLedger and
PaymentReleaseCoordinator; every rule lives in the service layer and every
domain error is translated by ErrorHandlerMiddleware.

Routes:
    POST   /api/v1/workflows                          — Post a job (creates the workflow)
    GET    /api/v1/workflows                          — List workflows (filter by party/state)
    GET    /api/v1/workflows/{id}                     — Get workflow details
    GET    /api/v1/workflows/{id}/status              — Current state and allowed moves
    GET    /api/v1/workflows/{id}/transitions         — Audit trail
    POST   /api/v1/workflows/{id}/transitions         — Generic transition request
    POST   /api/v1/workflows/{id}/applications        — Guard applies
    POST   /api/v1/workflows/{id}/accept              — Company accepts an applicant
    POST   /api/v1/workflows/{id}/start               — Guard starts the job
    POST   /api/v1/workflows/{id}/complete            — Guard completes the job
    POST   /api/v1/workflows/{id}/ratings             — Submit a rating
    GET    /api/v1/workflows/{id}/ratings             — Rating ledger
    POST   /api/v1/workflows/{id}/cancel              — Cancel
    POST   /api/v1/workflows/{id}/close               — Close
    GET    /api/v1/workflows/{id}/payment             — Payment trigger state
    POST   /api/v1/workflows/{id}/payment/retry       — Retry a failed payment initiation
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from secureshift.api.deps import (
    get_payment_coordinator,
    get_rating_ledger,
    get_workflow_service,
)
from secureshift.domain.enums import WorkflowState
from secureshift.logging_config import get_logger
from secureshift.schemas.workflow import (
    AcceptApplicationRequest,
    ApplyRequest,
    CancelRequest,
    CloseRequest,
    CompleteExecutionRequest,
    CreateWorkflowRequest,
    PaymentTriggerResponse,
    RatingLedgerResponse,
    RatingSubmissionResponse,
    ReleaseOutcomeResponse,
    StartExecutionRequest,
    SubmitRatingRequest,
    TransitionRequest,
    TransitionResponse,
    WorkflowResponse,
    WorkflowStatusResponse,
)
from secureshift.services.payment_release import PaymentReleaseCoordinator
from secureshift.services.rating_ledger import RatingLedger
from secureshift.services.workflow_service import WorkflowService

router = APIRouter(prefix="/api/v1/workflows", tags=["Workflows"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=WorkflowResponse,
    status_code=201,
    summary="Post a job",
)
async def create_workflow(
    request: CreateWorkflowRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    """Create a workflow in ``posted`` after the company clears compliance."""
    workflow = await svc.create_job(
        company_id=request.company_id,
        company_registration_id=request.company_registration_id,
        title=request.title,
        hourly_rate=request.hourly_rate,
        workflow_id=request.workflow_id,
        company_name=request.company_name,
        location=request.location,
        scheduled_start_time=request.scheduled_start_time,
        scheduled_end_time=request.scheduled_end_time,
        required_certificates=request.required_certificates,
        custom_fields=request.custom_fields,
    )
    return WorkflowResponse.model_validate(workflow)


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@router.post(
    "/{workflow_id}/applications",
    response_model=WorkflowResponse,
    summary="Apply to a job",
)
async def apply_to_job(
    workflow_id: str,
    request: ApplyRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    """Record an application. The first one moves posted -> applied -> underReview."""
    workflow = await svc.apply_to_job(
        workflow_id,
        guard_id=request.guard_id,
        certificate_id=request.certificate_id,
        motivation=request.motivation,
    )
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/{workflow_id}/accept",
    response_model=WorkflowResponse,
    summary="Accept an application",
)
async def accept_application(
    workflow_id: str,
    request: AcceptApplicationRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    workflow = await svc.accept_application(
        workflow_id,
        company_id=request.company_id,
        guard_id=request.guard_id,
        message=request.message,
        scheduled_start_time=request.scheduled_start_time,
    )
    return WorkflowResponse.model_validate(workflow)


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@router.post(
    "/{workflow_id}/start",
    response_model=WorkflowResponse,
    summary="Start the job",
)
async def start_execution(
    workflow_id: str,
    request: StartExecutionRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    workflow = await svc.start_execution(
        workflow_id,
        guard_id=request.guard_id,
        actual_start_time=request.actual_start_time,
    )
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/{workflow_id}/complete",
    response_model=WorkflowResponse,
    summary="Complete the job",
)
async def complete_execution(
    workflow_id: str,
    request: CompleteExecutionRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    """Record hours worked; opens the rating window."""
    workflow = await svc.complete_execution(
        workflow_id,
        guard_id=request.guard_id,
        total_hours_worked=request.total_hours_worked,
        actual_end_time=request.actual_end_time,
    )
    return WorkflowResponse.model_validate(workflow)


# ---------------------------------------------------------------------------
# Ratings
# ---------------------------------------------------------------------------


@router.post(
    "/{workflow_id}/ratings",
    response_model=RatingSubmissionResponse,
    status_code=201,
    summary="Submit a rating",
)
async def submit_rating(
    workflow_id: str,
    request: SubmitRatingRequest,
    ledger: RatingLedger = Depends(get_rating_ledger),
) -> RatingSubmissionResponse:
    """Record one party's rating; the second rating releases payment."""
    submission = await ledger.submit_rating(
        workflow_id,
        rater_role=request.rater_role,
        rater_id=request.rater_id,
        rating=request.rating,
        comment=request.comment,
    )
    return RatingSubmissionResponse.model_validate(submission)


@router.get(
    "/{workflow_id}/ratings",
    response_model=RatingLedgerResponse,
    summary="Get the rating ledger",
)
async def get_ratings(
    workflow_id: str,
    ledger: RatingLedger = Depends(get_rating_ledger),
) -> RatingLedgerResponse:
    view = await ledger.get_ledger(workflow_id)
    return RatingLedgerResponse.model_validate(view)


# ---------------------------------------------------------------------------
# Cancel / Close / Generic transition
# ---------------------------------------------------------------------------


@router.post(
    "/{workflow_id}/cancel",
    response_model=WorkflowResponse,
    summary="Cancel the workflow",
)
async def cancel_workflow(
    workflow_id: str,
    request: CancelRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    workflow = await svc.cancel(workflow_id, actor_id=request.actor_id, reason=request.reason)
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/{workflow_id}/close",
    response_model=WorkflowResponse,
    summary="Close the workflow",
)
async def close_workflow(
    workflow_id: str,
    request: CloseRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    workflow = await svc.close(workflow_id, actor_id=request.actor_id, reason=request.reason)
    return WorkflowResponse.model_validate(workflow)


@router.post(
    "/{workflow_id}/transitions",
    response_model=WorkflowResponse,
    summary="Request a state transition",
)
async def request_transition(
    workflow_id: str,
    request: TransitionRequest,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    """Validate, authorize and apply one transition."""
    workflow = await svc.request_transition(
        workflow_id,
        to_state=request.to_state,
        actor_id=request.actor_id,
        reason=request.reason,
        metadata=request.metadata,
        idempotency_key=request.idempotency_key,
    )
    return WorkflowResponse.model_validate(workflow)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@router.get(
    "/{workflow_id}/payment",
    response_model=PaymentTriggerResponse,
    summary="Get the payment trigger",
)
async def get_payment(
    workflow_id: str,
    coordinator: PaymentReleaseCoordinator = Depends(get_payment_coordinator),
) -> PaymentTriggerResponse:
    trigger = await coordinator.get_trigger(workflow_id)
    return PaymentTriggerResponse.model_validate(trigger)


@router.post(
    "/{workflow_id}/payment/retry",
    response_model=ReleaseOutcomeResponse,
    summary="Retry a failed payment initiation",
)
async def retry_payment(
    workflow_id: str,
    coordinator: PaymentReleaseCoordinator = Depends(get_payment_coordinator),
) -> ReleaseOutcomeResponse:
    outcome = await coordinator.retry_payment(workflow_id)
    logger.info("api.payment_retry", workflow_id=workflow_id, status=outcome.status.value)
    return ReleaseOutcomeResponse.model_validate(outcome)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "",
    response_model=list[WorkflowResponse],
    summary="List workflows",
)
async def list_workflows(
    company_id: str | None = None,
    guard_id: str | None = None,
    state: list[WorkflowState] | None = Query(default=None),
    svc: WorkflowService = Depends(get_workflow_service),
) -> list[WorkflowResponse]:
    workflows = await svc.list_workflows(company_id=company_id, guard_id=guard_id, states=state)
    return [WorkflowResponse.model_validate(w) for w in workflows]


@router.get(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    summary="Get workflow details",
)
async def get_workflow(
    workflow_id: str,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowResponse:
    workflow = await svc.get_workflow(workflow_id)
    return WorkflowResponse.model_validate(workflow)


@router.get(
    "/{workflow_id}/status",
    response_model=WorkflowStatusResponse,
    summary="Get lightweight status check",
)
async def get_status(
    workflow_id: str,
    svc: WorkflowService = Depends(get_workflow_service),
) -> WorkflowStatusResponse:
    """Return the current state and the moves allowed from it."""
    status = await svc.get_status(workflow_id)
    return WorkflowStatusResponse.model_validate(status)


@router.get(
    "/{workflow_id}/transitions",
    response_model=list[TransitionResponse],
    summary="Get audit trail",
)
async def get_transitions(
    workflow_id: str,
    svc: WorkflowService = Depends(get_workflow_service),
) -> list[TransitionResponse]:
    """Return the full, ordered transition history."""
    workflow = await svc.get_workflow(workflow_id)
    return [TransitionResponse.model_validate(t) for t in workflow.transitions]
