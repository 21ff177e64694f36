"""Value objects for the attestation domain."""

from attestation_platform.domain.value_objects.identifiers import (
    CertificateId,
    IdempotencyKey,
    ReferenceNumber,
    create_certificate_id,
    create_idempotency_key,
    create_reference_number,
)
from attestation_platform.domain.value_objects.metadata import (
    Metadata,
    MetadataValue,
    merge_metadata,
    validate_metadata,
)

__all__ = [
    "CertificateId",
    "IdempotencyKey",
    "ReferenceNumber",
    "create_certificate_id",
    "create_idempotency_key",
    "create_reference_number",
    "Metadata",
    "MetadataValue",
    "merge_metadata",
    "validate_metadata",
]
