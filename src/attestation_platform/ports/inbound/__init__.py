"""Inbound ports - request/response contracts of the certificate service.

Dataclasses here are what upper layers (REST adapter, bulk jobs, tests) pass
to and receive from the orchestrator. ``to_dict`` renders the camelCase wire
shape; ``from_dict`` accepts it back.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Mapping, Optional, Protocol, TypeVar

from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus
from attestation_platform.domain.exceptions import ValidationError

T = TypeVar("T")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def certificate_to_dict(certificate: Certificate) -> dict[str, Any]:
    """Wire view of a certificate."""
    return {
        "id": certificate.id,
        "referenceNumber": certificate.reference_number,
        "status": certificate.status.value,
        "policyId": certificate.policy_id,
        "insuredId": certificate.insured_id,
        "policyNumber": certificate.policy_number,
        "registrationNumber": certificate.registration_number,
        "companyCode": certificate.company_code,
        "agentCode": certificate.agent_code,
        "createdBy": certificate.created_by,
        "providerRequestNumber": certificate.provider_request_number,
        "certificateNumber": certificate.certificate_number,
        "downloadUrl": certificate.download_url,
        "downloadExpiresAt": _iso(certificate.download_expires_at),
        "errorMessage": certificate.error_message,
        "metadata": dict(certificate.metadata),
        "idempotencyKey": certificate.idempotency_key,
        "createdAt": _iso(certificate.created_at),
        "updatedAt": _iso(certificate.updated_at),
    }


# =============================================================================
# Creation
# =============================================================================


@dataclass
class CertificateCreationRequest:
    """Request to issue a certificate for one vehicle of a policy."""
    policy_number: str
    registration_number: str
    company_code: str
    requested_by: str
    agent_code: Optional[str] = None
    idempotency_key: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    def validate(self) -> None:
        """Reject blank mandatory fields before any I/O.

        Raises:
            ValidationError: Naming every blank field.
        """
        mandatory = {
            "policyNumber": self.policy_number,
            "registrationNumber": self.registration_number,
            "companyCode": self.company_code,
            "requestedBy": self.requested_by,
        }
        missing = [name for name, value in mandatory.items() if not (value or "").strip()]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {"fields": missing},
            )

    def fingerprint(self) -> dict[str, Any]:
        """The logical request body, without the idempotency key."""
        body = self.to_dict()
        body.pop("idempotencyKey", None)
        return body

    def to_dict(self) -> dict[str, Any]:
        return {
            "policyNumber": self.policy_number,
            "registrationNumber": self.registration_number,
            "companyCode": self.company_code,
            "agentCode": self.agent_code,
            "requestedBy": self.requested_by,
            "idempotencyKey": self.idempotency_key,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CertificateCreationRequest:
        return cls(
            policy_number=data.get("policyNumber", ""),
            registration_number=data.get("registrationNumber", ""),
            company_code=data.get("companyCode", ""),
            requested_by=data.get("requestedBy", ""),
            agent_code=data.get("agentCode"),
            idempotency_key=data.get("idempotencyKey"),
            metadata=data.get("metadata"),
        )


@dataclass
class CertificateCreationResult:
    """Outcome of a creation request; status is ``pending`` on success."""
    certificate_id: str
    reference_number: str
    status: CertificateStatus
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "certificateId": self.certificate_id,
            "referenceNumber": self.reference_number,
            "status": self.status.value,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CertificateCreationResult:
        return cls(
            certificate_id=data["certificateId"],
            reference_number=data["referenceNumber"],
            status=CertificateStatus(data["status"]),
            message=data.get("message", ""),
        )


# =============================================================================
# Cancel / suspend
# =============================================================================


@dataclass
class CertificateOperationRequest:
    """Batch of certificates to cancel or suspend."""
    certificate_ids: list[str]
    requested_by: str
    reason: Optional[str] = None

    def validate(self) -> None:
        if not self.certificate_ids:
            raise ValidationError("certificateIds must not be empty", {"field": "certificateIds"})
        if not (self.requested_by or "").strip():
            raise ValidationError("requestedBy is required", {"field": "requestedBy"})


@dataclass(frozen=True)
class OperationFailure:
    certificate_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.certificate_id, "error": self.error}


@dataclass
class CertificateOperationResult:
    successful: list[str] = field(default_factory=list)
    failed: list[OperationFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "successful": list(self.successful),
            "failed": [f.to_dict() for f in self.failed],
        }


# =============================================================================
# Bulk
# =============================================================================


@dataclass
class BulkCertificateRequest:
    batch_id: str
    requests: list[CertificateCreationRequest]

    def validate(self) -> None:
        if not (self.batch_id or "").strip():
            raise ValidationError("batchId is required", {"field": "batchId"})
        if not self.requests:
            raise ValidationError("requests must not be empty", {"field": "requests"})


@dataclass
class BulkItemResult:
    """One line of a bulk result: either ``result`` or ``error`` is set."""
    request: CertificateCreationRequest
    result: Optional[CertificateCreationResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict[str, Any]:
        item: dict[str, Any] = {"request": self.request.to_dict()}
        if self.result is not None:
            item["result"] = self.result.to_dict()
        else:
            item["result"] = {"error": self.error}
        return item


@dataclass
class BulkCertificateResult:
    batch_id: str
    total_requests: int
    successful: int
    failed: int
    results: list[BulkItemResult]
    processing_time_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "totalRequests": self.total_requests,
            "successful": self.successful,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
            "processingTime": self.processing_time_ms,
        }


# =============================================================================
# Status / download / search
# =============================================================================


@dataclass
class StatusCheckResult:
    """Status of a certificate as last known, possibly reconciled with the provider."""
    certificate_id: str
    reference_number: str
    status: CertificateStatus
    provider_status: Optional[int] = None
    provider_message: Optional[str] = None
    reconciled: bool = False
    note: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "certificateId": self.certificate_id,
            "referenceNumber": self.reference_number,
            "status": self.status.value,
            "reconciled": self.reconciled,
        }
        if self.provider_status is not None:
            data["providerStatus"] = self.provider_status
        if self.provider_message:
            data["providerMessage"] = self.provider_message
        if self.note:
            data["note"] = self.note
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DownloadInfo:
    url: str
    type: str
    expires_at: Optional[datetime] = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "type": self.type,
            "expiresAt": _iso(self.expires_at),
            "cached": self.cached,
        }


@dataclass
class CertificateSearchCriteria:
    """Exact-match filters plus a creation date range."""
    policy_number: Optional[str] = None
    registration_number: Optional[str] = None
    company_code: Optional[str] = None
    status: Optional[CertificateStatus] = None
    created_by: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def to_filters(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class Page(Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    def to_dict(self, render: Any = None) -> dict[str, Any]:
        return {
            "items": [render(i) if render else i for i in self.items],
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "pages": self.pages,
        }


# =============================================================================
# Service port
# =============================================================================


class CertificateServicePort(Protocol):
    """Operations offered to inbound adapters."""

    @abstractmethod
    async def create_certificate(self, request: CertificateCreationRequest, tx: Any = None) -> CertificateCreationResult:
        ...

    @abstractmethod
    async def create_certificate_idempotent(self, request: CertificateCreationRequest) -> CertificateCreationResult:
        ...

    @abstractmethod
    async def get_certificate_by_id(self, certificate_id: str) -> Certificate:
        ...

    @abstractmethod
    async def get_certificate_by_reference(self, reference_number: str) -> Certificate:
        ...

    @abstractmethod
    async def search_certificates(
        self, criteria: CertificateSearchCriteria, page: int = 1, page_size: int = 20
    ) -> Page[Certificate]:
        ...

    @abstractmethod
    async def check_certificate_status(self, reference_number: str) -> StatusCheckResult:
        ...

    @abstractmethod
    async def cancel_certificates(self, request: CertificateOperationRequest) -> CertificateOperationResult:
        ...

    @abstractmethod
    async def suspend_certificates(self, request: CertificateOperationRequest) -> CertificateOperationResult:
        ...

    @abstractmethod
    async def download_certificate(self, certificate_id: str) -> DownloadInfo:
        ...

    @abstractmethod
    async def process_bulk_certificates(self, request: BulkCertificateRequest) -> BulkCertificateResult:
        ...


__all__ = [
    "certificate_to_dict",
    "CertificateCreationRequest",
    "CertificateCreationResult",
    "CertificateOperationRequest",
    "OperationFailure",
    "CertificateOperationResult",
    "BulkCertificateRequest",
    "BulkItemResult",
    "BulkCertificateResult",
    "StatusCheckResult",
    "DownloadInfo",
    "CertificateSearchCriteria",
    "Page",
    "CertificateServicePort",
]
