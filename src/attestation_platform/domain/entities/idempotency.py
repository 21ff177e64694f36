"""Idempotency ledger records.

A key is bound forever to the request hash it was first created with. The
record starts ``pending``, settles ``completed`` (response cached) or
``failed`` (may be retried), and expires after its TTL.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from attestation_platform.domain.entities.certificate import utcnow

DEFAULT_TTL = timedelta(hours=24)


class IdempotencyStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IdempotencyRecord:
    """One idempotency key and the outcome of executing its request once."""
    key: str
    request_hash: str
    expires_at: datetime
    status: IdempotencyStatus = IdempotencyStatus.PENDING
    response_body: Optional[Any] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new_pending(
        cls,
        key: str,
        request_hash: str,
        ttl: timedelta = DEFAULT_TTL,
        now: Optional[datetime] = None,
    ) -> IdempotencyRecord:
        now = now or utcnow()
        return cls(
            key=key,
            request_hash=request_hash,
            expires_at=now + ttl,
            created_at=now,
            updated_at=now,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at <= (now or utcnow())

    def matches(self, request_hash: str) -> bool:
        return self.request_hash == request_hash
