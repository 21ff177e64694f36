"""Attestation platform domain layer."""

from attestation_platform.domain.entities.audit import AuditAction, AuditRecord
from attestation_platform.domain.entities.certificate import (
    Certificate,
    CertificateStatus,
    can_transition,
)
from attestation_platform.domain.entities.idempotency import IdempotencyRecord, IdempotencyStatus
from attestation_platform.domain.entities.registry import InsuredData, PolicyData
from attestation_platform.domain.exceptions import (
    AttestationError,
    ExternalApiError,
    IdempotencyConflictError,
    NotFoundError,
    ValidationError,
)
from attestation_platform.domain.services.duplicate_detection import find_active_conflict
from attestation_platform.domain.services.status_mapping import map_provider_status
from attestation_platform.domain.value_objects.identifiers import (
    CertificateId,
    IdempotencyKey,
    ReferenceNumber,
    create_certificate_id,
    create_idempotency_key,
    create_reference_number,
)

__all__ = [
    # Value objects
    "CertificateId",
    "IdempotencyKey",
    "ReferenceNumber",
    "create_certificate_id",
    "create_idempotency_key",
    "create_reference_number",
    # Entities
    "AuditAction",
    "AuditRecord",
    "Certificate",
    "CertificateStatus",
    "can_transition",
    "IdempotencyRecord",
    "IdempotencyStatus",
    "InsuredData",
    "PolicyData",
    # Errors
    "AttestationError",
    "ExternalApiError",
    "IdempotencyConflictError",
    "NotFoundError",
    "ValidationError",
    # Services
    "find_active_conflict",
    "map_provider_status",
]
