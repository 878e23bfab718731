"""Domain exceptions for the job workflow.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Every error carries a machine-readable ``code`` so callers can tell the kinds
apart without parsing messages, and a ``retryable`` flag for the ones a caller
may safely retry unchanged.
"""

from __future__ import annotations

from decimal import Decimal


class WorkflowError(Exception):
    """Base exception for all domain errors."""

    retryable = False

    def __init__(self, message: str, code: str = "WORKFLOW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow ID does not exist."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow not found: {workflow_id}",
            code="WORKFLOW_NOT_FOUND",
        )
        self.workflow_id = workflow_id


# --- Validation Errors ---


class WorkflowValidationError(WorkflowError):
    """Base for synchronous rejections that never mutate state."""


class InvalidTransitionError(WorkflowValidationError):
    """Raised when the transition table does not allow the requested move.

    Example: posted -> completed (must go through applied, underReview, ...)
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted_state}",
            code="INVALID_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


class AlreadyTerminalError(InvalidTransitionError):
    """Raised for any transition requested from closed or cancelled."""

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(current_state, attempted_state)
        self.message = f"Workflow is already {current_state}; no further transitions"
        self.code = "ALREADY_TERMINAL"
        self.args = (self.message,)


class UnauthorizedActorError(WorkflowValidationError):
    """Raised when an actor may not request a transition or submit a rating."""

    def __init__(self, actor_id: str, action: str) -> None:
        super().__init__(
            message=f"Actor {actor_id} is not allowed to {action}",
            code="UNAUTHORIZED",
        )
        self.actor_id = actor_id
        self.action = action


class RateBelowMinimumError(WorkflowValidationError):
    """Raised when a job is posted below the statutory minimum hourly rate."""

    def __init__(self, hourly_rate: Decimal, minimum: Decimal) -> None:
        super().__init__(
            message=(
                f"Hourly rate {hourly_rate:.2f} is below the statutory minimum "
                f"of {minimum:.2f}"
            ),
            code="RATE_BELOW_MINIMUM",
        )
        self.hourly_rate = hourly_rate
        self.minimum = minimum


class InvalidHoursWorkedError(WorkflowValidationError):
    """Raised when a completion reports zero or negative hours."""

    def __init__(self, hours: Decimal) -> None:
        super().__init__(
            message=f"Total hours worked must be greater than 0, got {hours}",
            code="INVALID_HOURS_WORKED",
        )
        self.hours = hours


class WorkflowAlreadyExistsError(WorkflowValidationError):
    """Raised when creating a workflow for a job that already has one."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow already exists: {workflow_id}",
            code="WORKFLOW_ALREADY_EXISTS",
        )
        self.workflow_id = workflow_id


class DuplicateApplicationError(WorkflowValidationError):
    """Raised when a guard applies to the same job twice."""

    def __init__(self, workflow_id: str, guard_id: str) -> None:
        super().__init__(
            message=f"Guard {guard_id} already applied to {workflow_id}",
            code="DUPLICATE_APPLICATION",
        )


class ApplicationNotFoundError(WorkflowValidationError):
    """Raised when a company accepts a guard who never applied."""

    def __init__(self, workflow_id: str, guard_id: str) -> None:
        super().__init__(
            message=f"No application from guard {guard_id} on {workflow_id}",
            code="APPLICATION_NOT_FOUND",
        )


class DuplicateOperationError(WorkflowValidationError):
    """Raised when an idempotency key is reused for a different request."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Idempotency key already used for another request: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.idempotency_key = idempotency_key


# --- Rating Errors ---


class RatingOutOfRangeError(WorkflowValidationError):
    def __init__(self, rating: object, minimum: Decimal, maximum: Decimal) -> None:
        super().__init__(
            message=f"Rating {rating} is outside the scale {minimum}-{maximum}",
            code="RATING_OUT_OF_RANGE",
        )


class DuplicateRatingError(WorkflowValidationError):
    """Raised when a role rates the same workflow twice (ratings are write-once)."""

    def __init__(self, workflow_id: str, rater_role: str) -> None:
        super().__init__(
            message=f"The {rater_role} has already rated {workflow_id}",
            code="DUPLICATE_RATING",
        )
        self.workflow_id = workflow_id
        self.rater_role = rater_role


class InvalidStateForRatingError(WorkflowValidationError):
    def __init__(self, workflow_id: str, current_state: str) -> None:
        super().__init__(
            message=f"Workflow {workflow_id} cannot be rated in state {current_state}",
            code="INVALID_STATE_FOR_RATING",
        )
        self.current_state = current_state


class PaymentNotRetryableError(WorkflowValidationError):
    """Raised when a payment retry is requested for a workflow not stuck at rated."""

    def __init__(self, workflow_id: str, reason: str) -> None:
        super().__init__(
            message=f"Payment for {workflow_id} cannot be retried: {reason}",
            code="PAYMENT_NOT_RETRYABLE",
        )


# --- Compliance Errors ---


class ComplianceError(WorkflowError):
    """Base for credential and legal prerequisite failures."""


class CompanyUnverifiedError(ComplianceError):
    def __init__(self, company_id: str, registration_id: str) -> None:
        super().__init__(
            message=f"Company {company_id} registration {registration_id} could not be verified",
            code="COMPANY_UNVERIFIED",
        )


class GuardNotCertifiedError(ComplianceError):
    def __init__(self, guard_id: str, certificate_id: str) -> None:
        super().__init__(
            message=f"Guard {guard_id} certificate {certificate_id} is not valid",
            code="GUARD_NOT_CERTIFIED",
        )


class ComplianceCheckFailedError(ComplianceError):
    """Raised when the verification provider errors or times out."""

    retryable = True

    def __init__(self, subject: str, reason: str) -> None:
        super().__init__(
            message=f"Compliance check for {subject} failed: {reason}",
            code="COMPLIANCE_CHECK_FAILED",
        )
        self.reason = reason


# --- Collaborator Errors ---


class PaymentInitiationError(WorkflowError):
    """Raised when the payment initiator rejects, errors or times out."""

    retryable = True

    def __init__(self, workflow_id: str, reason: str) -> None:
        super().__init__(
            message=f"Payment initiation for {workflow_id} failed: {reason}",
            code="PAYMENT_INITIATION_FAILED",
        )
        self.reason = reason


# --- Concurrency Errors ---


class ConflictError(WorkflowError):
    """Raised when a concurrent writer won the race for the same workflow."""

    retryable = True

    def __init__(self, workflow_id: str, detail: str = "concurrent modification") -> None:
        super().__init__(
            message=f"Conflict on workflow {workflow_id}: {detail}",
            code="CONFLICT",
        )
        self.workflow_id = workflow_id
