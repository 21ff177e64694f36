"""Application layer for the attestation platform."""

from attestation_platform.application.background import BackgroundTaskRunner
from attestation_platform.application.idempotency import IdempotencyService, idempotent
from attestation_platform.application.orchestrator import CertificateOrchestrator

__all__ = [
    "BackgroundTaskRunner",
    "CertificateOrchestrator",
    "IdempotencyService",
    "idempotent",
]
