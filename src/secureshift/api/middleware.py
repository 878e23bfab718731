"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser-based clients (company dashboard, guard app)
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from secureshift.domain.exceptions import (
    ComplianceCheckFailedError,
    ComplianceError,
    ConflictError,
    DuplicateApplicationError,
    DuplicateOperationError,
    DuplicateRatingError,
    InvalidTransitionError,
    PaymentInitiationError,
    UnauthorizedActorError,
    WorkflowAlreadyExistsError,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error(status_code: int, exc: WorkflowError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "retryable": exc.retryable},
    )


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except WorkflowNotFoundError as exc:
            logger.warning("workflow.not_found", error=exc.message)
            return _error(404, exc)
        except UnauthorizedActorError as exc:
            logger.warning("workflow.unauthorized", actor_id=exc.actor_id, action=exc.action)
            return _error(403, exc)
        except InvalidTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_state,
            )
            return _error(409, exc)
        except (
            DuplicateApplicationError,
            DuplicateRatingError,
            DuplicateOperationError,
            WorkflowAlreadyExistsError,
        ) as exc:
            logger.warning("request.duplicate", error=exc.message, code=exc.code)
            return _error(409, exc)
        except ConflictError as exc:
            logger.warning("workflow.conflict", error=exc.message)
            return _error(409, exc)
        except ComplianceCheckFailedError as exc:
            logger.error("compliance.provider_unavailable", error=exc.message)
            return _error(503, exc)
        except (WorkflowValidationError, ComplianceError) as exc:
            logger.info("request.rejected", error=exc.message, code=exc.code)
            return _error(422, exc)
        except PaymentInitiationError as exc:
            logger.error("payment.initiation_failed", error=exc.message)
            return _error(502, exc)
        except WorkflowError as exc:
            logger.error("domain.error", error=exc.message, code=exc.code)
            return _error(400, exc)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "retryable": False,
                },
            )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
