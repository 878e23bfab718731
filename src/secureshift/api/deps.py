"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the services built
at startup (see container.py).
"""

from __future__ import annotations

from fastapi import Depends, Request

from secureshift.container import WorkflowContainer
from secureshift.services.payment_release import PaymentReleaseCoordinator
from secureshift.services.rating_ledger import RatingLedger
from secureshift.services.workflow_service import WorkflowService


def get_container(request: Request) -> WorkflowContainer:
    """Provide the container stored on the app by the lifespan handler."""
    return request.app.state.container


def get_workflow_service(
    container: WorkflowContainer = Depends(get_container),
) -> WorkflowService:
    return container.workflows


def get_rating_ledger(
    container: WorkflowContainer = Depends(get_container),
) -> RatingLedger:
    return container.ratings


def get_payment_coordinator(
    container: WorkflowContainer = Depends(get_container),
) -> PaymentReleaseCoordinator:
    return container.payments
