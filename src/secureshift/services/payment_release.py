"""Payment Release Coordinator — hands a finished job to the payment initiator.

Exactly-once is enforced by the ``payment_triggers`` row, not by the caller:

    1. arm: inside the transaction that records the completing rating, a
       conditional UPDATE flips ``triggered`` false -> true and the workflow
       moves completed -> rated. Only one transaction can win that UPDATE.
    2. release: after commit, ``initiating`` is claimed the same way, the
       initiator is called (outside any lock, bounded by a timeout), and on
       acceptance rated -> paid is committed with the provider reference.

A failed or timed-out initiation leaves the workflow at ``rated`` with the
error recorded; ``retry_payment`` or the ``release_pending`` sweep try again.
An interrupted attempt gives its claim back; a claim leaked by a killed
process is taken over once it is older than the initiation timeout plus
``payment_claim_grace_seconds``.
The initiator itself must be idempotent per workflow.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from secureshift.domain.enums import SYSTEM_ACTOR, RaterRole, ReleaseStatus, WorkflowState
from secureshift.domain.exceptions import (
    PaymentInitiationError,
    PaymentNotRetryableError,
    WorkflowNotFoundError,
)
from secureshift.domain.models import ReleaseOutcome
from secureshift.infrastructure.database.repositories import (
    PaymentTriggerRepository,
    WorkflowRepository,
    trigger_to_domain,
)
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.domain.collaborators import PaymentInitiation, PaymentInitiator
    from secureshift.domain.models import PaymentTrigger
    from secureshift.infrastructure.database.orm_models import PaymentTriggerModel
    from secureshift.services.workflow_service import WorkflowService, WorkflowUnitOfWork

logger = get_logger(__name__)


class PaymentReleaseCoordinator:
    """Claims the payment token once and drives rated -> paid."""

    def __init__(
        self,
        workflows: WorkflowService,
        session_factory: async_sessionmaker[AsyncSession],
        initiator: PaymentInitiator,
        settings: Settings,
    ) -> None:
        self._workflows = workflows
        self._session_factory = session_factory
        self._initiator = initiator
        self._settings = settings

    # ------------------------------------------------------------------
    # Trigger
    # ------------------------------------------------------------------

    async def arm(self, uow: WorkflowUnitOfWork) -> bool:
        """Claim the token and move completed -> rated inside ``uow``.

        Returns True only for the caller that won the claim; the caller must
        invoke ``release`` after its transaction commits.
        """
        if uow.state is not WorkflowState.COMPLETED:
            return False
        ratings = await uow.ratings.get_by_workflow(uow.workflow_id)
        by_role = {r.rater_role: r for r in ratings}
        if set(by_role) != {role.value for role in RaterRole}:
            return False

        claimed = await uow.payments.claim_trigger(uow.workflow_id, datetime.now(UTC))
        if not claimed:
            logger.info("payment.already_triggered")
            return False

        await self._workflows.apply_transition(
            uow,
            WorkflowState.RATED,
            SYSTEM_ACTOR,
            reason="Both parties rated",
            metadata={
                "guardRating": str(by_role[RaterRole.GUARD.value].rating),
                "companyRating": str(by_role[RaterRole.COMPANY.value].rating),
            },
        )
        logger.info("payment.triggered")
        return True

    async def on_ledger_complete(self, workflow_id: str) -> ReleaseOutcome:
        """Trigger payment if the ledger is complete and nobody has yet.

        Returns NOT_READY when a rating is still missing and ALREADY_TRIGGERED
        when another caller claimed the token first.
        """
        async with self._workflows.unit_of_work(workflow_id) as uow:
            ratings = await uow.ratings.get_by_workflow(workflow_id)
            complete = {r.rater_role for r in ratings} == {role.value for role in RaterRole}
            armed = complete and await self.arm(uow)

        if not complete:
            return ReleaseOutcome(ReleaseStatus.NOT_READY)
        if not armed:
            return ReleaseOutcome(ReleaseStatus.ALREADY_TRIGGERED)
        return await self.release(workflow_id)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    async def release(self, workflow_id: str) -> ReleaseOutcome:
        """Run one initiation attempt for a triggered, unconfirmed payment.

        The in-flight claim is given back on every exit path, cancellation
        included; a claim that still leaks (process killed) expires after
        ``payment_initiation_timeout_seconds + payment_claim_grace_seconds``.
        """
        now = datetime.now(UTC)
        stale_after = timedelta(
            seconds=self._settings.payment_initiation_timeout_seconds
            + self._settings.payment_claim_grace_seconds
        )
        async with self._session_factory() as session, session.begin():
            payments = PaymentTriggerRepository(session)
            claimed = await payments.claim_initiation(workflow_id, now, now - stale_after)
            trigger = await payments.get(workflow_id)
            row = await WorkflowRepository(session).get_by_id(workflow_id)
            payee_id = row.selected_guard_id if row else None
            amount = row.payment_amount if row else None

        if not claimed:
            return self._unclaimed_outcome(trigger)

        logger.info(
            "payment.initiating",
            workflow_id=workflow_id,
            payee_id=payee_id,
            amount=str(amount),
            attempt=trigger.attempts if trigger else None,
        )
        try:
            if payee_id is None or amount is None:
                raise PaymentInitiationError(workflow_id, "no payee or amount recorded")
            initiation = await self._initiate(workflow_id, payee_id, amount)
        except PaymentInitiationError as exc:
            await self._record_failure(workflow_id, exc.reason)
            return ReleaseOutcome(ReleaseStatus.FAILED, error=exc.reason)
        except BaseException as exc:
            await self._abandon_claim(workflow_id, f"initiation interrupted: {type(exc).__name__}")
            raise

        try:
            async with self._workflows.unit_of_work(workflow_id) as uow:
                await uow.payments.record_confirmation(
                    workflow_id, initiation.reference_id, datetime.now(UTC)
                )
                await self._workflows.apply_transition(
                    uow,
                    WorkflowState.PAID,
                    SYSTEM_ACTOR,
                    reason="Payment initiated",
                    metadata={"referenceId": initiation.reference_id, "amount": str(amount)},
                )
        except BaseException as exc:
            # Initiation is idempotent per workflow, so a later retry is safe
            await self._abandon_claim(workflow_id, f"confirmation failed: {exc!r}")
            raise

        logger.info(
            "payment.initiated",
            workflow_id=workflow_id,
            reference_id=initiation.reference_id,
        )
        return ReleaseOutcome(ReleaseStatus.PAID, reference_id=initiation.reference_id)

    async def retry_payment(self, workflow_id: str) -> ReleaseOutcome:
        """Retry a payment stuck at ``rated`` after a failed initiation.

        Raises:
            WorkflowNotFoundError: unknown workflow.
            PaymentNotRetryableError: the workflow is not waiting on a payment.
        """
        async with self._session_factory() as session:
            row = await WorkflowRepository(session).get_by_id(workflow_id)
            if row is None:
                raise WorkflowNotFoundError(workflow_id)
            trigger_row = await PaymentTriggerRepository(session).get(workflow_id)
            state = WorkflowState(row.current_state)

        if state is not WorkflowState.RATED:
            raise PaymentNotRetryableError(workflow_id, f"workflow is {state.value}")
        if trigger_row is None or not trigger_row.triggered:
            raise PaymentNotRetryableError(workflow_id, "payment was never triggered")
        if trigger_row.confirmed_at is not None:
            raise PaymentNotRetryableError(workflow_id, "payment already confirmed")

        logger.info("payment.retry_requested", workflow_id=workflow_id)
        return await self.release(workflow_id)

    async def release_pending(self) -> dict[str, ReleaseOutcome]:
        """Recovery sweep over payments that never reached ``paid``.

        Completed workflows with a complete ledger are triggered; rated
        workflows with an unconfirmed payment are retried.
        """
        async with self._session_factory() as session:
            pending = await PaymentTriggerRepository(session).get_pending()

        outcomes: dict[str, ReleaseOutcome] = {}
        for workflow_id, state in pending:
            if state is WorkflowState.COMPLETED:
                outcome = await self.on_ledger_complete(workflow_id)
                if outcome.status is ReleaseStatus.NOT_READY:
                    continue
            else:
                outcome = await self.release(workflow_id)
            outcomes[workflow_id] = outcome

        if outcomes:
            logger.info(
                "payment.sweep_finished",
                released=sum(o.status is ReleaseStatus.PAID for o in outcomes.values()),
                failed=sum(o.status is ReleaseStatus.FAILED for o in outcomes.values()),
            )
        return outcomes

    async def get_trigger(self, workflow_id: str) -> PaymentTrigger:
        async with self._session_factory() as session:
            row = await PaymentTriggerRepository(session).get(workflow_id)
            if row is None:
                raise WorkflowNotFoundError(workflow_id)
            return trigger_to_domain(row)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _initiate(
        self, workflow_id: str, payee_id: str, amount: Decimal
    ) -> PaymentInitiation:
        timeout = self._settings.payment_initiation_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._initiator.initiate(workflow_id, payee_id, amount),
                timeout=timeout,
            )
        except TimeoutError as err:
            raise PaymentInitiationError(workflow_id, f"timed out after {timeout}s") from err
        except PaymentInitiationError:
            raise
        except Exception as err:
            raise PaymentInitiationError(workflow_id, str(err) or type(err).__name__) from err
        if not result.accepted:
            raise PaymentInitiationError(workflow_id, "payment was not accepted")
        return result

    async def _record_failure(self, workflow_id: str, error: str) -> None:
        async with self._session_factory() as session, session.begin():
            await PaymentTriggerRepository(session).record_failure(workflow_id, error)
        logger.error("payment.initiation_failed", workflow_id=workflow_id, error=error)

    async def _abandon_claim(self, workflow_id: str, error: str) -> None:
        """Give the in-flight claim back while an exception is propagating.

        Shielded so a cancelled caller still releases the claim; if even that
        fails, the claim expires on its own and the original error wins.
        """
        try:
            await asyncio.shield(self._record_failure(workflow_id, error))
        except Exception as exc:
            logger.error("payment.claim_release_failed", workflow_id=workflow_id, error=str(exc))

    @staticmethod
    def _unclaimed_outcome(trigger: PaymentTriggerModel | None) -> ReleaseOutcome:
        if trigger is None or not trigger.triggered:
            return ReleaseOutcome(ReleaseStatus.NOT_READY)
        if trigger.confirmed_at is not None:
            return ReleaseOutcome(ReleaseStatus.ALREADY_TRIGGERED, reference_id=trigger.reference_id)
        return ReleaseOutcome(ReleaseStatus.IN_FLIGHT)
