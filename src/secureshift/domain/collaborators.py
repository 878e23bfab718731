"""Collaborator Protocols.

Interfaces for everything the workflow consumes but does not own: credential
verification (KvK registration, WPBR certificates), payment initiation,
notification delivery and chat threads. These are Protocols (structural
subtyping), so concrete adapters just need to match the shape.

The domain layer has ZERO imports from any provider SDK.

Concrete implementations:
    - integrations/simulated.py  (local runs and dry runs)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal


@dataclass(frozen=True)
class CompanyVerification:
    """Answer from the company registry.

    Attributes:
        verified: Whether the registration number belongs to an active company.
        display_name: Registered trade name, when the registry returns one.
    """

    verified: bool
    display_name: str | None = None


@dataclass(frozen=True)
class CertificateVerification:
    verified: bool


@dataclass(frozen=True)
class PaymentInitiation:
    """Answer from the payment initiator.

    Attributes:
        accepted: Whether the payment was accepted for processing.
        reference_id: Provider reference, present when accepted.
    """

    accepted: bool
    reference_id: str | None = None


@runtime_checkable
class VerificationProvider(Protocol):
    """Checks company registrations and guard certificates."""

    async def verify_company(self, registration_id: str) -> CompanyVerification:
        ...

    async def verify_guard_certificate(self, certificate_id: str) -> CertificateVerification:
        ...


@runtime_checkable
class PaymentInitiator(Protocol):
    """Starts the payout for a finished job. Must be idempotent per workflow."""

    async def initiate(
        self,
        workflow_id: str,
        payee_id: str,
        amount: Decimal,
    ) -> PaymentInitiation:
        ...


@runtime_checkable
class NotificationDispatcher(Protocol):
    async def notify(
        self,
        recipient_id: str,
        title: str,
        body: str,
        payload: dict[str, Any],
    ) -> None:
        ...


@runtime_checkable
class CommunicationThreadFactory(Protocol):
    async def create_thread(self, participants: Sequence[str], context: dict[str, Any]) -> str:
        """Create a chat thread and return its conversation id."""
        ...
