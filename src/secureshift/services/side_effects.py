"""Side Effect Dispatcher — notifications and chat threads after a commit.

Called by WorkflowService once a transition is committed and the workflow
lock is released. Effects are best-effort: every external call is bounded by
a timeout, and a failure is logged as ``side_effect.failed`` and never
reaches the caller or rolls anything back.

    applied      notify company: new application
    accepted     create chat thread (company + guard), store it, notify guard
    inProgress   notify company: job started
    completed    notify company: job completed; ask both parties to rate
    rated        notify both: ratings complete
    paid         notify guard: payment initiated
    cancelled    notify the counter-party with the reason; a company cancelling
                 before assignment notifies every applicant
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from secureshift.domain.enums import NotificationType, WorkflowState
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine

    from secureshift.domain.collaborators import (
        CommunicationThreadFactory,
        NotificationDispatcher,
    )
    from secureshift.domain.models import JobWorkflow, WorkflowTransition

    ThreadSink = Callable[[str, str], Awaitable[Any]]

logger = get_logger(__name__)


class SideEffectDispatcher:
    """Runs the post-commit effects of each transition."""

    def __init__(
        self,
        notifier: NotificationDispatcher,
        thread_factory: CommunicationThreadFactory,
        *,
        timeout_seconds: float = 5.0,
        run_in_background: bool = True,
    ) -> None:
        self._notifier = notifier
        self._thread_factory = thread_factory
        self._timeout = timeout_seconds
        self._run_in_background = run_in_background
        self._tasks: set[asyncio.Task[None]] = set()
        # Set by the container: persists a created conversation id on the workflow.
        self.on_thread_created: ThreadSink | None = None

        self._handlers: dict[
            WorkflowState,
            Callable[[JobWorkflow, WorkflowTransition], Coroutine[Any, Any, None]],
        ] = {
            WorkflowState.APPLIED: self._on_applied,
            WorkflowState.ACCEPTED: self._on_accepted,
            WorkflowState.IN_PROGRESS: self._on_started,
            WorkflowState.COMPLETED: self._on_completed,
            WorkflowState.RATED: self._on_rated,
            WorkflowState.PAID: self._on_paid,
            WorkflowState.CANCELLED: self._on_cancelled,
        }

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def dispatch(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        """Run the effects for ``transition``; never raises."""
        handler = self._handlers.get(transition.to_state)
        if handler is None:
            return
        await self._schedule(handler(workflow, transition), workflow.workflow_id)

    async def application_received(self, workflow: JobWorkflow, guard_id: str) -> None:
        """Tell the company about an application recorded without a state change."""
        await self._schedule(self._notify_application(workflow, guard_id), workflow.workflow_id)

    async def rating_window_expired(
        self, workflow: JobWorkflow, missing_roles: tuple[str, ...]
    ) -> None:
        await self._schedule(
            self._notify_many(
                self._parties(workflow),
                workflow,
                NotificationType.RATING_WINDOW_EXPIRED,
                "Rating window expired",
                f'The rating window for "{workflow.title}" has expired.',
                missingRoles=list(missing_roles),
            ),
            workflow.workflow_id,
        )

    async def drain(self) -> None:
        """Wait for every background effect to finish (used on shutdown)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _schedule(self, effect: Coroutine[Any, Any, None], workflow_id: str) -> None:
        if self._run_in_background:
            task = asyncio.create_task(self._guarded(effect, workflow_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            await self._guarded(effect, workflow_id)

    async def _guarded(self, effect: Coroutine[Any, Any, None], workflow_id: str) -> None:
        try:
            await effect
        except Exception as exc:
            logger.warning(
                "side_effect.failed",
                workflow_id=workflow_id,
                effect="dispatch",
                error=str(exc),
            )

    async def _call(self, name: str, workflow_id: str, awaitable: Awaitable[Any]) -> Any:
        """Await one external call under the timeout; returns None on failure."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "side_effect.failed",
                workflow_id=workflow_id,
                effect=name,
                error=f"timed out after {self._timeout}s",
            )
        except Exception as exc:
            logger.warning("side_effect.failed", workflow_id=workflow_id, effect=name, error=str(exc))
        return None

    async def _notify(
        self,
        recipient_id: str,
        workflow: JobWorkflow,
        kind: NotificationType,
        title: str,
        body: str,
        **data: Any,
    ) -> None:
        payload = {"type": kind.value, "workflowId": workflow.workflow_id, **data}
        await self._call(
            f"notify:{kind.value}",
            workflow.workflow_id,
            self._notifier.notify(recipient_id, title, body, payload),
        )

    async def _notify_many(
        self,
        recipients: list[str],
        workflow: JobWorkflow,
        kind: NotificationType,
        title: str,
        body: str,
        **data: Any,
    ) -> None:
        for recipient_id in recipients:
            await self._notify(recipient_id, workflow, kind, title, body, **data)

    def _parties(self, workflow: JobWorkflow) -> list[str]:
        parties = [workflow.company_id]
        if workflow.selected_guard_id:
            parties.append(workflow.selected_guard_id)
        return parties

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _notify_application(self, workflow: JobWorkflow, guard_id: str) -> None:
        await self._notify(
            workflow.company_id,
            workflow,
            NotificationType.APPLICATION_RECEIVED,
            "New application received",
            f'Guard {guard_id} applied to "{workflow.title}"',
            guardId=guard_id,
        )

    async def _on_applied(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        await self._notify_application(workflow, transition.actor_id)

    async def _on_accepted(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        guard_id = workflow.selected_guard_id
        if guard_id is None:
            return
        conversation_id = await self._call(
            "create_thread",
            workflow.workflow_id,
            self._thread_factory.create_thread(
                [workflow.company_id, guard_id],
                {"workflowId": workflow.workflow_id, "jobTitle": workflow.title},
            ),
        )
        if conversation_id and self.on_thread_created is not None:
            await self._call(
                "store_conversation",
                workflow.workflow_id,
                self.on_thread_created(workflow.workflow_id, conversation_id),
            )
        company = workflow.company_name or workflow.company_id
        await self._notify(
            guard_id,
            workflow,
            NotificationType.APPLICATION_ACCEPTED,
            "Application accepted!",
            f'Your application for "{workflow.title}" was accepted by {company}',
            conversationId=conversation_id,
            scheduledStartTime=_iso(workflow.metadata.scheduled_start_time),
        )

    async def _on_started(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        await self._notify(
            workflow.company_id,
            workflow,
            NotificationType.JOB_STARTED,
            "Job started",
            f'Guard {workflow.selected_guard_id} started "{workflow.title}"',
            startTime=_iso(workflow.metadata.actual_start_time),
        )

    async def _on_completed(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        hours = workflow.metadata.total_hours_worked
        await self._notify(
            workflow.company_id,
            workflow,
            NotificationType.JOB_COMPLETED,
            "Job completed",
            f'Guard {workflow.selected_guard_id} completed "{workflow.title}". '
            f"Total: {hours} hours",
            totalHours=str(hours),
            paymentAmount=str(workflow.metadata.payment_amount),
        )
        await self._notify_many(
            self._parties(workflow),
            workflow,
            NotificationType.RATING_REQUESTED,
            "Please leave a rating",
            f'Rate your experience on "{workflow.title}" so payment can be released',
            ratingDeadline=_iso(workflow.metadata.rating_deadline),
        )

    async def _on_rated(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        await self._notify_many(
            self._parties(workflow),
            workflow,
            NotificationType.RATINGS_COMPLETE,
            "Ratings complete",
            f'Both parties rated "{workflow.title}". Payment is being processed.',
        )

    async def _on_paid(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        if workflow.selected_guard_id is None:
            return
        await self._notify(
            workflow.selected_guard_id,
            workflow,
            NotificationType.PAYMENT_PROCESSED,
            "Payment initiated",
            f'Payment of EUR {workflow.metadata.payment_amount} for "{workflow.title}" '
            "has been initiated",
            referenceId=transition.metadata.get("referenceId"),
        )

    async def _on_cancelled(self, workflow: JobWorkflow, transition: WorkflowTransition) -> None:
        if transition.actor_id != workflow.company_id:
            recipients = [workflow.company_id]
        elif workflow.selected_guard_id is not None:
            recipients = [workflow.selected_guard_id]
        else:
            # Nobody assigned yet: every applicant is still waiting on a decision
            recipients = list(dict.fromkeys(a.guard_id for a in workflow.applications))
        await self._notify_many(
            recipients,
            workflow,
            NotificationType.WORKFLOW_CANCELLED,
            "Job cancelled",
            f'"{workflow.title}" was cancelled. Reason: {transition.reason}',
            reason=transition.reason,
        )


def _iso(value: Any) -> str | None:
    return value.isoformat() if value is not None else None
