"""Service layer — business logic orchestration."""

from secureshift.services.compliance_gate import ComplianceGate
from secureshift.services.payment_release import PaymentReleaseCoordinator
from secureshift.services.rating_ledger import RatingLedger
from secureshift.services.rating_window import RatingWindowMonitor
from secureshift.services.recovery import RecoveryScheduler
from secureshift.services.side_effects import SideEffectDispatcher
from secureshift.services.workflow_service import WorkflowService

__all__ = [
    "ComplianceGate",
    "PaymentReleaseCoordinator",
    "RatingLedger",
    "RatingWindowMonitor",
    "RecoveryScheduler",
    "SideEffectDispatcher",
    "WorkflowService",
]
