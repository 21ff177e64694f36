"""Domain entities for the attestation platform."""

from attestation_platform.domain.entities.audit import AuditAction, AuditRecord
from attestation_platform.domain.entities.certificate import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    BusinessKey,
    Certificate,
    CertificateStatus,
    can_transition,
)
from attestation_platform.domain.entities.idempotency import IdempotencyRecord, IdempotencyStatus
from attestation_platform.domain.entities.provider import (
    AttestationInfo,
    DownloadLink,
    DownloadType,
    EditionResponse,
    OperationCode,
    ProviderStatusCode,
    StatusCheckRequest,
    StatusCheckResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from attestation_platform.domain.entities.registry import InsuredData, PolicyData

__all__ = [
    "AuditAction",
    "AuditRecord",
    "ACTIVE_STATUSES",
    "ALLOWED_TRANSITIONS",
    "BusinessKey",
    "Certificate",
    "CertificateStatus",
    "can_transition",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "AttestationInfo",
    "DownloadLink",
    "DownloadType",
    "EditionResponse",
    "OperationCode",
    "ProviderStatusCode",
    "StatusCheckRequest",
    "StatusCheckResponse",
    "UpdateStatusRequest",
    "UpdateStatusResponse",
    "InsuredData",
    "PolicyData",
]
