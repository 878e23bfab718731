"""Compliance Gate — credential and legal checks before a transition.

Two checkpoints:
    - check_company: the hourly rate must meet the statutory minimum (checked
      first, no external call) and the company registration must verify.
    - check_guard: the guard's security certificate must verify.

Positive results are cached in ``compliance_checks`` and reused for
``compliance_snapshot_ttl_hours``; negative results are never cached, so a
rejected party can retry as soon as the registry is updated.

Provider calls run outside any workflow lock, bounded by
``verification_timeout_seconds`` and retried with tenacity on timeouts and
connection errors.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import IntegrityError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from secureshift.domain.exceptions import (
    CompanyUnverifiedError,
    ComplianceCheckFailedError,
    GuardNotCertifiedError,
    RateBelowMinimumError,
)
from secureshift.infrastructure.database.repositories import ComplianceRepository, as_utc
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from secureshift.config import Settings
    from secureshift.domain.collaborators import VerificationProvider
    from secureshift.infrastructure.database.orm_models import ComplianceCheckModel

logger = get_logger(__name__)

T = TypeVar("T")

COMPANY = "company"
GUARD = "guard"


@dataclass(frozen=True)
class CompanyClearance:
    company_id: str
    registration_id: str
    display_name: str | None
    verified_at: datetime
    from_cache: bool = False


@dataclass(frozen=True)
class GuardClearance:
    guard_id: str
    certificate_id: str
    verified_at: datetime
    from_cache: bool = False


class ComplianceGate:
    """Verifies companies and guards, caching positive answers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        provider: VerificationProvider,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._settings = settings

    # ------------------------------------------------------------------
    # Company
    # ------------------------------------------------------------------

    async def check_company(
        self,
        company_id: str,
        registration_id: str,
        hourly_rate: Decimal,
    ) -> CompanyClearance:
        """Check the rate floor, then the company registration.

        Raises:
            RateBelowMinimumError: rate under the statutory minimum.
            CompanyUnverifiedError: the registry says the registration is not valid.
            ComplianceCheckFailedError: the registry errored or timed out.
        """
        minimum = self._settings.statutory_minimum_hourly_rate
        if not hourly_rate.is_finite() or hourly_rate < minimum:
            logger.warning(
                "compliance.rate_below_minimum",
                company_id=company_id,
                hourly_rate=str(hourly_rate),
                minimum=str(minimum),
            )
            raise RateBelowMinimumError(hourly_rate, minimum)

        cached = await self._cached(COMPANY, registration_id, company_id)
        if cached is not None:
            logger.debug("compliance.cache_hit", kind=COMPANY, company_id=company_id)
            return CompanyClearance(
                company_id=company_id,
                registration_id=registration_id,
                display_name=cached.display_name,
                verified_at=as_utc(cached.verified_at),
                from_cache=True,
            )

        result = await self._verify(
            f"company {company_id}",
            lambda: self._provider.verify_company(registration_id),
        )
        if not result.verified:
            logger.warning(
                "compliance.company_unverified",
                company_id=company_id,
                registration_id=registration_id,
            )
            raise CompanyUnverifiedError(company_id, registration_id)

        verified_at = datetime.now(UTC)
        await self._store(COMPANY, registration_id, company_id, verified_at, result.display_name)
        logger.info("compliance.company_verified", company_id=company_id)
        return CompanyClearance(
            company_id=company_id,
            registration_id=registration_id,
            display_name=result.display_name,
            verified_at=verified_at,
        )

    # ------------------------------------------------------------------
    # Guard
    # ------------------------------------------------------------------

    async def check_guard(self, guard_id: str, certificate_id: str) -> GuardClearance:
        """Check a guard's certificate.

        Raises:
            GuardNotCertifiedError: the certificate is not valid.
            ComplianceCheckFailedError: the registry errored or timed out.
        """
        cached = await self._cached(GUARD, certificate_id, guard_id)
        if cached is not None:
            logger.debug("compliance.cache_hit", kind=GUARD, guard_id=guard_id)
            return GuardClearance(
                guard_id=guard_id,
                certificate_id=certificate_id,
                verified_at=as_utc(cached.verified_at),
                from_cache=True,
            )

        result = await self._verify(
            f"guard {guard_id}",
            lambda: self._provider.verify_guard_certificate(certificate_id),
        )
        if not result.verified:
            logger.warning(
                "compliance.guard_not_certified",
                guard_id=guard_id,
                certificate_id=certificate_id,
            )
            raise GuardNotCertifiedError(guard_id, certificate_id)

        verified_at = datetime.now(UTC)
        await self._store(GUARD, certificate_id, guard_id, verified_at)
        logger.info("compliance.guard_verified", guard_id=guard_id)
        return GuardClearance(
            guard_id=guard_id,
            certificate_id=certificate_id,
            verified_at=verified_at,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _verify(self, subject: str, call: Callable[[], Awaitable[T]]) -> T:
        """Call the provider under a timeout, retrying transient failures."""
        settings = self._settings
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(settings.verification_retry_attempts + 1),
                wait=wait_exponential(
                    multiplier=settings.verification_retry_wait_seconds,
                    max=settings.verification_retry_wait_seconds * 8,
                ),
                retry=retry_if_exception_type((TimeoutError, ConnectionError)),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.info(
                            "compliance.retrying",
                            subject=subject,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    return await asyncio.wait_for(
                        call(), timeout=settings.verification_timeout_seconds
                    )
        except TimeoutError as err:
            logger.error("compliance.check_timeout", subject=subject)
            raise ComplianceCheckFailedError(subject, "verification timed out") from err
        except Exception as err:
            logger.error("compliance.check_failed", subject=subject, error=str(err))
            raise ComplianceCheckFailedError(subject, str(err) or type(err).__name__) from err
        raise ComplianceCheckFailedError(subject, "no verification attempt was made")

    async def _cached(
        self, kind: str, reference_id: str, subject_id: str
    ) -> ComplianceCheckModel | None:
        """Return a fresh positive result for the same subject, if any."""
        async with self._session_factory() as session:
            row = await ComplianceRepository(session).get(kind, reference_id)
        if row is None or row.subject_id != subject_id:
            return None
        ttl = timedelta(hours=self._settings.compliance_snapshot_ttl_hours)
        if as_utc(row.verified_at) <= datetime.now(UTC) - ttl:
            logger.debug("compliance.cache_stale", kind=kind, subject_id=subject_id)
            return None
        return row

    async def _store(
        self,
        kind: str,
        reference_id: str,
        subject_id: str,
        verified_at: datetime,
        display_name: str | None = None,
    ) -> None:
        try:
            async with self._session_factory() as session, session.begin():
                await ComplianceRepository(session).upsert(
                    kind, reference_id, subject_id, verified_at, display_name
                )
        except IntegrityError:
            # A concurrent check stored the same reference first
            logger.debug("compliance.cache_race", kind=kind, reference_id=reference_id)
