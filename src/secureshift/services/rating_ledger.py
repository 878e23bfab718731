"""Rating Ledger — write-once ratings that gate payment release.

Each workflow gets at most one rating per role (guard, company). The rating
that completes the ledger also, in the same transaction, claims the payment
token and moves the workflow completed -> rated (see payment_release.py);
after commit the coordinator hands the job to the payment initiator.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from secureshift.domain.enums import SYSTEM_ACTOR, RaterRole, WorkflowState
from secureshift.domain.exceptions import (
    DuplicateRatingError,
    InvalidStateForRatingError,
    RatingOutOfRangeError,
    UnauthorizedActorError,
    WorkflowNotFoundError,
)
from secureshift.domain.models import RatingLedgerView, RatingSubmission
from secureshift.infrastructure.database.orm_models import RatingModel
from secureshift.infrastructure.database.repositories import (
    RatingRepository,
    WorkflowRepository,
    rating_to_domain,
)
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from secureshift.config import Settings
    from secureshift.domain.models import RatingRecord, ReleaseOutcome
    from secureshift.services.payment_release import PaymentReleaseCoordinator
    from secureshift.services.workflow_service import WorkflowService, WorkflowUnitOfWork

logger = get_logger(__name__)

_RATING_STEP = Decimal("0.01")


class RatingLedger:
    """Records ratings and detects when both parties have rated."""

    def __init__(
        self,
        workflows: WorkflowService,
        coordinator: PaymentReleaseCoordinator,
        settings: Settings,
    ) -> None:
        self._workflows = workflows
        self._coordinator = coordinator
        self._settings = settings

    async def submit_rating(
        self,
        workflow_id: str,
        rater_role: RaterRole | str,
        rater_id: str,
        rating: Decimal | float | int | str,
        comment: str | None = None,
    ) -> RatingSubmission:
        """Record one party's rating.

        Raises:
            RatingOutOfRangeError: outside [rating_min, rating_max] or not a number.
            InvalidStateForRatingError: the workflow is not completed or rated.
            UnauthorizedActorError: ``rater_id`` is not the party for ``rater_role``.
            DuplicateRatingError: this role already rated this workflow.
        """
        role = RaterRole(rater_role)
        value = self._validate_rating(rating)

        async with self._workflows.unit_of_work(workflow_id) as uow:
            record = await self._record(uow, role, rater_id, value, comment)
            complete = await self._is_complete(uow)
            armed = complete and await self._coordinator.arm(uow)

        release: ReleaseOutcome | None = None
        if armed:
            release = await self._coordinator.release(workflow_id)
        return RatingSubmission(record=record, ledger_complete=complete, release=release)

    async def auto_rate_missing(
        self, workflow_id: str, comment: str
    ) -> tuple[tuple[RatingRecord, ...], ReleaseOutcome | None]:
        """Give every role that has not rated the neutral rating, as SYSTEM.

        Only acts on workflows still at ``completed``; returns the records
        written and the payment release outcome, if payment was triggered.
        """
        value = self._validate_rating(self._settings.neutral_rating)
        written: list[RatingRecord] = []

        async with self._workflows.unit_of_work(workflow_id) as uow:
            if uow.state is not WorkflowState.COMPLETED:
                return (), None
            rated = {r.rater_role for r in await uow.ratings.get_by_workflow(workflow_id)}
            for role in RaterRole:
                if role.value in rated:
                    continue
                written.append(
                    await self._record(uow, role, SYSTEM_ACTOR, value, comment, auto_submitted=True)
                )
            armed = await self._coordinator.arm(uow)

        release = await self._coordinator.release(workflow_id) if armed else None
        return tuple(written), release

    async def get_ledger(self, workflow_id: str) -> RatingLedgerView:
        async with self._workflows.session_factory() as session:
            if not await WorkflowRepository(session).exists(workflow_id):
                raise WorkflowNotFoundError(workflow_id)
            rows = await RatingRepository(session).get_by_workflow(workflow_id)
            return RatingLedgerView(
                workflow_id=workflow_id,
                records=tuple(rating_to_domain(row) for row in rows),
            )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _validate_rating(self, rating: Decimal | float | int | str) -> Decimal:
        minimum = self._settings.rating_min
        maximum = self._settings.rating_max
        try:
            value = Decimal(str(rating))
        except InvalidOperation as err:
            raise RatingOutOfRangeError(rating, minimum, maximum) from err
        if not value.is_finite() or value < minimum or value > maximum:
            raise RatingOutOfRangeError(rating, minimum, maximum)
        return value.quantize(_RATING_STEP)

    async def _record(
        self,
        uow: WorkflowUnitOfWork,
        role: RaterRole,
        rater_id: str,
        value: Decimal,
        comment: str | None,
        *,
        auto_submitted: bool = False,
    ) -> RatingRecord:
        workflow_id = uow.workflow_id
        state = uow.state
        if not state.is_ratable:
            logger.warning("rating.invalid_state", state=state.value, rater_role=role.value)
            raise InvalidStateForRatingError(workflow_id, state.value)

        if not auto_submitted:
            expected = uow.row.company_id if role is RaterRole.COMPANY else uow.row.selected_guard_id
            if rater_id != expected:
                raise UnauthorizedActorError(rater_id, f"rate as {role.value}")

        if await uow.ratings.get_by_role(workflow_id, role) is not None:
            raise DuplicateRatingError(workflow_id, role.value)

        row = RatingModel(
            workflow_id=workflow_id,
            rater_role=role.value,
            rater_id=rater_id,
            rating=value,
            comment=comment,
            auto_submitted=auto_submitted,
            submitted_at=datetime.now(UTC),
        )
        try:
            await uow.ratings.create(row)
        except IntegrityError as err:
            raise DuplicateRatingError(workflow_id, role.value) from err

        logger.info(
            "rating.submitted",
            rater_role=role.value,
            rater_id=rater_id,
            rating=str(value),
            auto_submitted=auto_submitted,
        )
        return rating_to_domain(row)

    @staticmethod
    async def _is_complete(uow: WorkflowUnitOfWork) -> bool:
        ratings = await uow.ratings.get_by_workflow(uow.workflow_id)
        return {r.rater_role for r in ratings} == {role.value for role in RaterRole}
