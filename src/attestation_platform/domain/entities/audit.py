"""Audit records for certificate actions.

Records are immutable once built; the audit sink only appends them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from attestation_platform.domain.entities.certificate import utcnow


class AuditAction(str, Enum):
    """Actions recorded against a certificate."""
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


@dataclass(frozen=True)
class AuditRecord:
    """Immutable record of one action on a resource."""
    action: AuditAction
    user_id: str
    resource_id: str
    resource_type: str = "certificate"
    old_values: dict[str, Any] = field(default_factory=dict)
    new_values: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def status_change(
        cls,
        action: AuditAction,
        user_id: str,
        certificate_id: str,
        old_status: str,
        new_status: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditRecord:
        return cls(
            action=action,
            user_id=user_id,
            resource_id=certificate_id,
            old_values={"status": old_status},
            new_values={"status": new_status},
            metadata=dict(metadata or {}),
        )
