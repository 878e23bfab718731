"""Domain layer — pure business logic with zero framework dependencies."""

from secureshift.domain.enums import (
    SYSTEM_ACTOR,
    ActorRole,
    NotificationType,
    RaterRole,
    ReleaseStatus,
    WorkflowState,
)
from secureshift.domain.exceptions import (
    AlreadyTerminalError,
    InvalidTransitionError,
    UnauthorizedActorError,
    WorkflowError,
    WorkflowNotFoundError,
)
from secureshift.domain.models import (
    JobWorkflow,
    RatingRecord,
    WorkflowTransition,
)
from secureshift.domain.state_machine import (
    JobWorkflowStateMachine,
    validate_transition,
)
from secureshift.domain.transitions import TRANSITION_TABLE, allowed_targets

__all__ = [
    "SYSTEM_ACTOR",
    "ActorRole",
    "NotificationType",
    "RaterRole",
    "ReleaseStatus",
    "WorkflowState",
    "AlreadyTerminalError",
    "InvalidTransitionError",
    "UnauthorizedActorError",
    "WorkflowError",
    "WorkflowNotFoundError",
    "JobWorkflow",
    "RatingRecord",
    "WorkflowTransition",
    "JobWorkflowStateMachine",
    "validate_transition",
    "TRANSITION_TABLE",
    "allowed_targets",
]
