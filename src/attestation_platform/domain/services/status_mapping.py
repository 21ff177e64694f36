"""Translation of provider status codes into certificate statuses.

Single source of truth for provider vocabulary; used by the asynchronous
submission and by status reconciliation.
"""

from __future__ import annotations

from attestation_platform.domain.entities.certificate import CertificateStatus
from attestation_platform.domain.entities.provider import ProviderStatusCode as Code

_STATUS_BY_CODE: dict[int, CertificateStatus] = {
    Code.SUCCESS: CertificateStatus.COMPLETED,
    Code.PENDING: CertificateStatus.PROCESSING,
    Code.GENERATING: CertificateStatus.PROCESSING,
    Code.READY_FOR_TRANSFER: CertificateStatus.COMPLETED,
    Code.TRANSFERRED: CertificateStatus.COMPLETED,
}

_DESCRIPTIONS: dict[int, str] = {
    Code.SUCCESS: "Operation completed successfully",
    Code.PENDING: "Attestation generation pending",
    Code.GENERATING: "Attestation being generated",
    Code.READY_FOR_TRANSFER: "Attestation ready for transfer",
    Code.TRANSFERRED: "Attestation transferred successfully",
    Code.RATE_LIMIT_EXCEEDED: "Rate limit exceeded",
    Code.UNAUTHORIZED: "Unauthorized to use the edition API",
    Code.DUPLICATE_EXISTS: "Duplicate attestation exists in database",
    Code.INVALID_CIRCULATION_ZONE: "Invalid circulation zone code",
    Code.INVALID_SUBSCRIBER_TYPE: "Invalid subscriber type code",
    Code.INVALID_INSURED_TYPE: "Invalid insured type code",
    Code.INVALID_PROFESSION: "Invalid profession code",
    Code.INVALID_VEHICLE_TYPE: "Invalid vehicle type code",
    Code.INVALID_VEHICLE_USAGE: "Invalid vehicle usage code",
    Code.INVALID_VEHICLE_GENRE: "Invalid vehicle genre code",
    Code.INVALID_ENERGY_SOURCE: "Invalid energy source code",
    Code.INVALID_VEHICLE_CATEGORY: "Invalid vehicle category code",
    Code.NO_INTERMEDIARY_RELATION: "No relationship between intermediary and company",
    Code.INVALID_INSURED_EMAIL: "Invalid insured email address",
    Code.INVALID_SUBSCRIBER_EMAIL: "Invalid subscriber email address",
    Code.INVALID_CERTIFICATE_COLOR: "Invalid certificate color code",
    Code.INVALID_SUBSCRIPTION_DATE: "Subscription date is before edition request date",
    Code.INVALID_EFFECT_DATE: "Effect date is before subscription date",
    Code.INVALID_DATE_FORMAT: "Invalid date format",
    Code.DATA_ERROR: "Data error in request",
    Code.SYSTEM_ERROR: "System error",
    Code.SAVE_ERROR: "Save error",
    Code.EDITION_FAILED: "Edition failed",
    Code.AUTHORIZATION_ERROR: "Certificate authorization error",
    Code.AUTHENTICATION_ERROR: "Authentication error",
    Code.INCORRECT_ACCESS_CODE: "Incorrect access code",
    Code.INVALID_FILE_FORMAT: "Invalid file format",
    Code.INVALID_FILE_STRUCTURE: "Invalid file structure",
    Code.INVALID_FILE_DATA: "Invalid file data",
    Code.INCORRECT_AUTHENTICATION: "Incorrect authentication",
    Code.DATE_ERROR: "Effect date and expiration date error",
    Code.CONTRACT_DURATION_ERROR: "Contract duration error",
    Code.COMPANY_STOCK_ERROR: "Company certificate stock error",
    Code.INTERMEDIARY_STOCK_ERROR: "Intermediary certificate stock error",
    Code.INVALID_INTERMEDIARY_CODE: "Invalid intermediary code",
    Code.INVALID_COMPANY_CODE: "Invalid company code",
    Code.DUPLICATE_ERROR: "Duplicate error",
}


def map_provider_status(code: int) -> CertificateStatus:
    """Map a provider ``statut`` code to a certificate status.

    0 -> completed; 121, 122 -> processing; 123, 124 -> completed;
    any negative code -> failed; anything else -> pending.
    """
    code = int(code)
    mapped = _STATUS_BY_CODE.get(code)
    if mapped is not None:
        return mapped
    if code < 0:
        return CertificateStatus.FAILED
    return CertificateStatus.PENDING


def describe_provider_status(code: int) -> str:
    """Human-readable description of a provider status code."""
    return _DESCRIPTIONS.get(int(code), f"Unknown status code: {code}")
