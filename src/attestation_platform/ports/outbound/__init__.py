"""Outbound ports - contracts for storage and external collaborators.

Adapters implement these protocols structurally:
- adapters/outbound/memory_storage.py (in-process, tests and local runs)
- adapters/outbound/sql_storage.py (SQLAlchemy, production)
- adapters/outbound/registry_client.py, provider_client.py (httpx)
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional, Protocol, runtime_checkable

from attestation_platform.domain.entities.audit import AuditRecord
from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus
from attestation_platform.domain.entities.idempotency import IdempotencyRecord
from attestation_platform.domain.entities.provider import (
    DownloadLink,
    EditionResponse,
    StatusCheckRequest,
    StatusCheckResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from attestation_platform.domain.entities.registry import InsuredData, PolicyData


# =============================================================================
# Storage
# =============================================================================


@runtime_checkable
class Transaction(Protocol):
    """A storage transaction spanning several writes.

    Callbacks registered with ``on_commit`` run once, only after a successful
    commit; they are discarded on rollback.
    """

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...

    @abstractmethod
    def on_commit(self, callback: Callable[[], None]) -> None:
        ...


class CertificateStore(Protocol):
    """Persistent record of certificates.

    Uniqueness rules enforced by the storage layer itself:
        - at most one certificate with an active status per business key
        - unique reference number
    Violations raise DuplicateRecordError from ``add``/``save``.
    """

    @abstractmethod
    async def begin(self) -> Transaction:
        """Open a transaction shared by the store and the audit sink."""
        ...

    @abstractmethod
    async def add(self, certificate: Certificate, tx: Optional[Transaction] = None) -> Certificate:
        ...

    @abstractmethod
    async def get(self, certificate_id: str) -> Optional[Certificate]:
        ...

    @abstractmethod
    async def get_by_reference(self, reference_number: str) -> Optional[Certificate]:
        ...

    @abstractmethod
    async def find_by_business_key(
        self,
        policy_number: str,
        registration_number: str,
        company_code: str,
        tx: Optional[Transaction] = None,
    ) -> list[Certificate]:
        """All certificates for the triple, oldest first."""
        ...

    @abstractmethod
    async def save(self, certificate: Certificate, tx: Optional[Transaction] = None) -> Certificate:
        """Persist every mutable field of an existing certificate."""
        ...

    @abstractmethod
    async def search(
        self,
        filters: dict[str, Any],
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Certificate], int]:
        """Filter by exact column values plus ``created_from``/``created_to``.

        Returns:
            (page of certificates newest first, total matching count)
        """
        ...

    @abstractmethod
    async def list_by_status(
        self,
        status: CertificateStatus,
        updated_before: Optional[datetime] = None,
    ) -> list[Certificate]:
        ...


class IdempotencyLedger(Protocol):
    """Persistent mapping of idempotency keys to request outcomes.

    Expired records are invisible: ``get`` returns None for them and
    ``create`` replaces them.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        ...

    @abstractmethod
    async def create(self, record: IdempotencyRecord) -> IdempotencyRecord:
        """Insert a new record; raises DuplicateRecordError if the key exists."""
        ...

    @abstractmethod
    async def claim_failed(self, key: str) -> bool:
        """Atomically move a ``failed`` record back to ``pending``.

        Returns:
            True if this caller won the claim.
        """
        ...

    @abstractmethod
    async def complete(self, key: str, response_body: Any) -> None:
        ...

    @abstractmethod
    async def fail(self, key: str) -> None:
        ...

    @abstractmethod
    async def delete_expired(self, now: datetime) -> int:
        ...


class AuditSink(Protocol):
    """Append-only destination for audit records."""

    @abstractmethod
    async def record(self, entry: AuditRecord, tx: Optional[Transaction] = None) -> None:
        ...


# =============================================================================
# External collaborators
# =============================================================================


class RegistryGateway(Protocol):
    """Policy/insured-party registry. Returns None when a record is absent.

    Raises:
        ExternalApiError: On transport failure, open circuit or timeout.
    """

    @abstractmethod
    async def get_policy_by_number(self, policy_number: str) -> Optional[PolicyData]:
        ...

    @abstractmethod
    async def get_insured_by_id(self, insured_id: str) -> Optional[InsuredData]:
        ...


class ProviderGateway(Protocol):
    """Attestation provider.

    Raises:
        ExternalApiError: On transport failure, open circuit, timeout, or when
            a status update / download is refused by the provider.
    """

    @abstractmethod
    async def create_attestation(self, request: dict[str, Any]) -> EditionResponse:
        ...

    @abstractmethod
    async def check_attestation_status(self, request: StatusCheckRequest) -> StatusCheckResponse:
        ...

    @abstractmethod
    async def update_attestation_status(self, request: UpdateStatusRequest) -> UpdateStatusResponse:
        ...

    @abstractmethod
    async def download_attestation(self, company_code: str, request_number: str) -> list[DownloadLink]:
        ...


__all__ = [
    "Transaction",
    "CertificateStore",
    "IdempotencyLedger",
    "AuditSink",
    "RegistryGateway",
    "ProviderGateway",
]
