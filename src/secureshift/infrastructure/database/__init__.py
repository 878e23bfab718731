"""Database infrastructure — engine, ORM models, and repositories."""

from secureshift.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    create_tables,
    get_session_factory,
    init_db,
)
from secureshift.infrastructure.database.orm_models import (
    Base,
    ComplianceCheckModel,
    JobApplicationModel,
    JobWorkflowModel,
    PaymentTriggerModel,
    RatingModel,
    WorkflowTransitionModel,
)
from secureshift.infrastructure.database.repositories import (
    ApplicationRepository,
    ComplianceRepository,
    PaymentTriggerRepository,
    RatingRepository,
    WorkflowRepository,
)

__all__ = [
    "Base",
    "ComplianceCheckModel",
    "JobApplicationModel",
    "JobWorkflowModel",
    "PaymentTriggerModel",
    "RatingModel",
    "WorkflowTransitionModel",
    "ApplicationRepository",
    "ComplianceRepository",
    "PaymentTriggerRepository",
    "RatingRepository",
    "WorkflowRepository",
    "build_engine",
    "build_session_factory",
    "create_tables",
    "get_session_factory",
    "init_db",
    "close_db",
]
