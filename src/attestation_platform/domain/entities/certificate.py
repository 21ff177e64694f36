"""Certificate (attestation) entity and its lifecycle state machine.

A certificate is created ``pending``, moves to ``processing`` when the
asynchronous provider submission starts, and settles as ``completed`` or
``failed``. A ``completed`` certificate can still be cancelled or suspended
through the provider.

    (none) -> pending -> processing -> completed -> cancelled
                                   \\            \\-> suspended
                                    \\-> failed

Status reconciliation against the provider is the only path allowed to bypass
the transition table (see ``Certificate.reconcile_to``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from attestation_platform.domain.exceptions import InvalidTransitionError
from attestation_platform.domain.value_objects.identifiers import (
    CertificateId,
    ReferenceNumber,
    create_certificate_id,
    create_reference_number,
)
from attestation_platform.domain.value_objects.metadata import Metadata, merge_metadata


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateStatus(str, Enum):
    """Certificate lifecycle states (wire values)."""
    PENDING = "pending"          # Persisted, not yet submitted
    PROCESSING = "processing"    # Submission to provider in flight
    COMPLETED = "completed"      # Provider issued the attestation
    FAILED = "failed"            # Provider rejected or call failed
    CANCELLED = "cancelled"      # Revoked through the provider
    SUSPENDED = "suspended"      # Suspended through the provider

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES: frozenset[CertificateStatus] = frozenset({
    CertificateStatus.PENDING,
    CertificateStatus.PROCESSING,
    CertificateStatus.COMPLETED,
})

ALLOWED_TRANSITIONS: dict[CertificateStatus, frozenset[CertificateStatus]] = {
    CertificateStatus.PENDING: frozenset({CertificateStatus.PROCESSING}),
    CertificateStatus.PROCESSING: frozenset({CertificateStatus.COMPLETED, CertificateStatus.FAILED}),
    CertificateStatus.COMPLETED: frozenset({CertificateStatus.CANCELLED, CertificateStatus.SUSPENDED}),
    CertificateStatus.FAILED: frozenset(),
    CertificateStatus.CANCELLED: frozenset(),
    CertificateStatus.SUSPENDED: frozenset(),
}


def can_transition(current: CertificateStatus, target: CertificateStatus) -> bool:
    """Check whether ``current -> target`` is an edge of the state machine."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass(frozen=True)
class BusinessKey:
    """Policy/vehicle/company triple; at most one active certificate per key."""
    policy_number: str
    registration_number: str
    company_code: str


@dataclass
class Certificate:
    """Digital insurance certificate tracked by the platform."""
    reference_number: ReferenceNumber
    policy_id: str
    insured_id: str
    policy_number: str
    registration_number: str
    company_code: str
    created_by: str
    id: CertificateId = field(default_factory=create_certificate_id)
    status: CertificateStatus = CertificateStatus.PENDING
    agent_code: Optional[str] = None
    provider_request_number: Optional[str] = None
    certificate_number: Optional[str] = None
    download_url: Optional[str] = None
    download_expires_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Metadata = field(default_factory=dict)
    idempotency_key: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new_pending(
        cls,
        *,
        policy_id: str,
        insured_id: str,
        policy_number: str,
        registration_number: str,
        company_code: str,
        created_by: str,
        agent_code: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Certificate:
        """Create a certificate in ``pending`` with a fresh reference number."""
        now = utcnow()
        return cls(
            reference_number=create_reference_number(),
            policy_id=policy_id,
            insured_id=insured_id,
            policy_number=policy_number,
            registration_number=registration_number,
            company_code=company_code,
            created_by=created_by,
            agent_code=agent_code,
            metadata=merge_metadata({}, metadata),
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )

    @property
    def business_key(self) -> BusinessKey:
        return BusinessKey(self.policy_number, self.registration_number, self.company_code)

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def touch(self) -> None:
        self.updated_at = utcnow()

    def transition_to(self, target: CertificateStatus) -> CertificateStatus:
        """Move to ``target`` along an allowed edge.

        Returns:
            The previous status.

        Raises:
            InvalidTransitionError: If the edge is not in the state machine.
        """
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status.value, target.value)
        previous = self.status
        self.status = target
        self.touch()
        return previous

    def reconcile_to(self, target: CertificateStatus) -> CertificateStatus:
        """Overwrite the status with the provider's authoritative one."""
        previous = self.status
        self.status = target
        self.touch()
        return previous

    def merge_metadata(self, extra: Optional[Mapping[str, Any]]) -> None:
        """Merge keys into the metadata bag (never replaces it)."""
        if extra:
            self.metadata = merge_metadata(self.metadata, extra)
            self.touch()

    def cache_download(self, url: str, expires_at: datetime) -> None:
        self.download_url = url
        self.download_expires_at = expires_at
        self.touch()

    def has_cached_download(self, now: Optional[datetime] = None) -> bool:
        """True if a download URL is cached and has not expired yet."""
        if not self.download_url or self.download_expires_at is None:
            return False
        return self.download_expires_at > (now or utcnow())
