"""Identifiers for the attestation platform (type-safe).

Uses Python's NewType for compile-time type safety without runtime overhead.
"""

from __future__ import annotations

import secrets
import string
import time
import uuid
from typing import NewType

CertificateId = NewType("CertificateId", str)
ReferenceNumber = NewType("ReferenceNumber", str)
IdempotencyKey = NewType("IdempotencyKey", str)

_BASE36 = string.digits + string.ascii_uppercase


def create_certificate_id() -> CertificateId:
    """Generate an opaque certificate identifier."""
    return CertificateId(str(uuid.uuid4()))


def create_reference_number(now_ms: int | None = None) -> ReferenceNumber:
    """Generate a human-traceable reference number.

    Format: ``REF`` + epoch milliseconds + 6 random base-36 characters,
    e.g. ``REF1718000000000K3F9QZ``.

    Args:
        now_ms: Override for the timestamp part (tests).

    Returns:
        Reference number.
    """
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return ReferenceNumber(f"REF{timestamp}{suffix}")


def create_idempotency_key() -> IdempotencyKey:
    """Generate a random idempotency key for clients that do not supply one."""
    return IdempotencyKey(str(uuid.uuid4()))
