"""Rating Window Monitor — what happens when a party never rates.

``complete_execution`` stamps a ``rating_deadline``. A sweep picks up
completed workflows past that deadline, reports them (warning log plus a
notification to both parties) and applies ``rating_expiry_policy``:

    neutral_rating  the missing role(s) get an auto-submitted neutral rating
                    from SYSTEM, which completes the ledger and releases
                    payment through the normal path.
    report_only     nothing else happens; the workflow waits at completed.

Usage:
    monitor = RatingWindowMonitor(workflows, ledger, side_effects, settings)
    await monitor.sweep()
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from secureshift.domain.exceptions import WorkflowError
from secureshift.infrastructure.database.repositories import (
    RatingRepository,
    WorkflowRepository,
)
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from secureshift.config import Settings
    from secureshift.domain.models import ReleaseOutcome
    from secureshift.services.rating_ledger import RatingLedger
    from secureshift.services.side_effects import SideEffectDispatcher
    from secureshift.services.workflow_service import WorkflowService

logger = get_logger(__name__)

AUTO_RATING_COMMENT = "Automatic neutral rating after the rating window expired"


@dataclass(frozen=True)
class ExpiredWindow:
    workflow_id: str
    missing_roles: tuple[str, ...]
    auto_rated: bool
    release: ReleaseOutcome | None = None


class RatingWindowMonitor:
    """Finds expired rating windows and applies the configured policy."""

    def __init__(
        self,
        workflows: WorkflowService,
        ledger: RatingLedger,
        side_effects: SideEffectDispatcher,
        settings: Settings,
    ) -> None:
        self._workflows = workflows
        self._ledger = ledger
        self._side_effects = side_effects
        self._settings = settings

    async def sweep(self, now: datetime | None = None) -> list[ExpiredWindow]:
        """Handle every completed workflow whose rating deadline is past ``now``."""
        now = now or datetime.now(UTC)
        async with self._workflows.session_factory() as session:
            expired_ids = await WorkflowRepository(session).get_expired_rating_windows(now)
            missing_by_id: dict[str, tuple[str, ...]] = {}
            for workflow_id in expired_ids:
                rated = {
                    r.rater_role
                    for r in await RatingRepository(session).get_by_workflow(workflow_id)
                }
                missing_by_id[workflow_id] = tuple(
                    role for role in ("guard", "company") if role not in rated
                )

        results: list[ExpiredWindow] = []
        for workflow_id in expired_ids:
            missing = missing_by_id[workflow_id]
            logger.warning(
                "rating.window_expired",
                workflow_id=workflow_id,
                missing_roles=list(missing),
                policy=self._settings.rating_expiry_policy,
            )
            workflow = await self._workflows.get_workflow(workflow_id)
            await self._side_effects.rating_window_expired(workflow, missing)

            if self._settings.rating_expiry_policy != "neutral_rating":
                results.append(ExpiredWindow(workflow_id, missing, auto_rated=False))
                continue

            try:
                written, release = await self._ledger.auto_rate_missing(
                    workflow_id, AUTO_RATING_COMMENT
                )
            except WorkflowError as exc:
                # One stuck workflow must not stop the sweep
                logger.error("rating.auto_rate_failed", workflow_id=workflow_id, error=exc.message)
                results.append(ExpiredWindow(workflow_id, missing, auto_rated=False))
                continue
            results.append(
                ExpiredWindow(workflow_id, missing, auto_rated=bool(written), release=release)
            )

        if results:
            logger.info("rating.window_sweep_finished", expired=len(results))
        return results
