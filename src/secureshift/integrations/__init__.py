"""Collaborator adapters (verification, payments, notifications, chat)."""

from secureshift.integrations.simulated import (
    LoggingNotificationDispatcher,
    SimulatedPaymentInitiator,
    SimulatedThreadFactory,
    StaticVerificationProvider,
)

__all__ = [
    "LoggingNotificationDispatcher",
    "SimulatedPaymentInitiator",
    "SimulatedThreadFactory",
    "StaticVerificationProvider",
]
