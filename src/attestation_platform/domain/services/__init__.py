"""Domain services for the attestation platform."""

from attestation_platform.domain.services.duplicate_detection import find_active_conflict
from attestation_platform.domain.services.edition_mapper import (
    build_edition_request,
    validate_edition_request,
)
from attestation_platform.domain.services.status_mapping import (
    describe_provider_status,
    map_provider_status,
)

__all__ = [
    "find_active_conflict",
    "build_edition_request",
    "validate_edition_request",
    "describe_provider_status",
    "map_provider_status",
]
