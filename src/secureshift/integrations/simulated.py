"""Simulated collaborators for local runs, demos and tests.

Each class satisfies one Protocol from domain/collaborators.py without
calling anything external:

    - StaticVerificationProvider: verifies everything except configured ids.
    - SimulatedPaymentInitiator: returns a fake SEPA reference, one per workflow.
    - LoggingNotificationDispatcher: logs and keeps the notifications it was given.
    - SimulatedThreadFactory: hands out fake conversation ids.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from secureshift.domain.collaborators import (
    CertificateVerification,
    CompanyVerification,
    PaymentInitiation,
)
from secureshift.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from decimal import Decimal

logger = get_logger(__name__)


class StaticVerificationProvider:
    """Treats every registration and certificate as valid unless listed as rejected."""

    def __init__(
        self,
        rejected_registrations: Iterable[str] = (),
        rejected_certificates: Iterable[str] = (),
        display_names: dict[str, str] | None = None,
    ) -> None:
        self.rejected_registrations = set(rejected_registrations)
        self.rejected_certificates = set(rejected_certificates)
        self._display_names = dict(display_names or {})
        self.calls: list[str] = []

    async def verify_company(self, registration_id: str) -> CompanyVerification:
        self.calls.append(registration_id)
        verified = registration_id not in self.rejected_registrations
        logger.info("verification.company_simulated", registration_id=registration_id, verified=verified)
        return CompanyVerification(
            verified=verified,
            display_name=self._display_names.get(registration_id),
        )

    async def verify_guard_certificate(self, certificate_id: str) -> CertificateVerification:
        self.calls.append(certificate_id)
        verified = certificate_id not in self.rejected_certificates
        logger.info("verification.certificate_simulated", certificate_id=certificate_id, verified=verified)
        return CertificateVerification(verified=verified)


class SimulatedPaymentInitiator:
    """Generates fake payout references.

    Idempotent per workflow: a repeated call for the same workflow returns the
    reference issued the first time, like a real provider keyed on our id.
    """

    def __init__(self) -> None:
        self._issued: dict[str, str] = {}

    @property
    def issued(self) -> dict[str, str]:
        return dict(self._issued)

    async def initiate(self, workflow_id: str, payee_id: str, amount: Decimal) -> PaymentInitiation:
        reference_id = self._issued.get(workflow_id)
        if reference_id is None:
            reference_id = "SEPA-" + uuid.uuid4().hex[:16].upper()
            self._issued[workflow_id] = reference_id
        logger.info(
            "payment.initiation_simulated",
            workflow_id=workflow_id,
            payee_id=payee_id,
            amount=str(amount),
            reference_id=reference_id,
        )
        return PaymentInitiation(accepted=True, reference_id=reference_id)


@dataclass(frozen=True)
class SentNotification:
    recipient_id: str
    title: str
    body: str
    payload: dict[str, Any]


class LoggingNotificationDispatcher:
    """Writes notifications to the log instead of pushing them."""

    def __init__(self) -> None:
        self.sent: list[SentNotification] = []

    async def notify(self, recipient_id: str, title: str, body: str, payload: dict[str, Any]) -> None:
        self.sent.append(SentNotification(recipient_id, title, body, dict(payload)))
        logger.info(
            "notification.sent",
            recipient_id=recipient_id,
            type=payload.get("type"),
            title=title,
        )

    def for_recipient(self, recipient_id: str) -> list[SentNotification]:
        return [n for n in self.sent if n.recipient_id == recipient_id]


class SimulatedThreadFactory:
    def __init__(self) -> None:
        self.threads: dict[str, tuple[str, ...]] = {}

    async def create_thread(self, participants: Sequence[str], context: dict[str, Any]) -> str:
        conversation_id = f"conv-{uuid.uuid4().hex[:12]}"
        self.threads[conversation_id] = tuple(participants)
        logger.info(
            "thread.created_simulated",
            conversation_id=conversation_id,
            workflow_id=context.get("workflowId"),
        )
        return conversation_id
