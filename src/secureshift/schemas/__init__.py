"""Pydantic API schemas."""

from secureshift.schemas.workflow import (
    AcceptApplicationRequest,
    ApplyRequest,
    CancelRequest,
    CloseRequest,
    CompleteExecutionRequest,
    CreateWorkflowRequest,
    HealthResponse,
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

__all__ = [
    "AcceptApplicationRequest",
    "ApplyRequest",
    "CancelRequest",
    "CloseRequest",
    "CompleteExecutionRequest",
    "CreateWorkflowRequest",
    "HealthResponse",
    "PaymentTriggerResponse",
    "RatingLedgerResponse",
    "RatingSubmissionResponse",
    "ReleaseOutcomeResponse",
    "StartExecutionRequest",
    "SubmitRatingRequest",
    "TransitionRequest",
    "TransitionResponse",
    "WorkflowResponse",
    "WorkflowStatusResponse",
]
