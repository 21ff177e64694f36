"""In-memory storage adapters.

Implements CertificateStore, IdempotencyLedger and AuditSink on top of
dictionaries, for tests and local runs. Data is not persisted across
restarts.

Transactions stage their writes and apply them on commit, re-checking the
same uniqueness rules the SQL schema enforces:
    - one certificate per reference number
    - at most one active certificate per (policy, registration, company)

Usage:
    db = InMemoryDatabase()
    tx = await db.certificates.begin()
    await db.certificates.add(cert, tx)
    await tx.commit()
"""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

from attestation_platform.domain.entities.audit import AuditRecord
from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus, utcnow
from attestation_platform.domain.entities.idempotency import IdempotencyRecord, IdempotencyStatus
from attestation_platform.domain.exceptions import DuplicateRecordError

UQ_REFERENCE = "uq_certificates_reference_number"
UQ_ACTIVE_KEY = "uq_certificates_active_business_key"
PK_IDEMPOTENCY = "pk_idempotency_keys"


class InMemoryTransaction:
    """Unit of work over an InMemoryDatabase."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db
        self._certificates: dict[str, Certificate] = {}
        self._audit: list[AuditRecord] = []
        self._callbacks: list[Callable[[], None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_commit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def stage_certificate(self, certificate: Certificate) -> None:
        self._ensure_open()
        self._db.check_certificate_constraints(certificate, self._certificates.values())
        self._certificates[certificate.id] = copy.deepcopy(certificate)

    def stage_audit(self, entry: AuditRecord) -> None:
        self._ensure_open()
        self._audit.append(entry)

    def staged_certificates(self) -> Iterable[Certificate]:
        return self._certificates.values()

    async def commit(self) -> None:
        self._ensure_open()
        self._closed = True
        # Concurrent transactions may have committed since staging
        staged = list(self._certificates.values())
        for cert in staged:
            self._db.check_certificate_constraints(cert, [c for c in staged if c.id != cert.id])
        self._db.apply(staged, self._audit)

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    async def rollback(self) -> None:
        self._closed = True
        self._certificates.clear()
        self._audit.clear()
        self._callbacks.clear()

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")


class InMemoryDatabase:
    """Shared state behind the in-memory adapters."""

    def __init__(self) -> None:
        self.certificate_rows: dict[str, Certificate] = {}
        self.idempotency_rows: dict[str, IdempotencyRecord] = {}
        self.audit_rows: list[AuditRecord] = []
        self.certificates = InMemoryCertificateStore(self)
        self.idempotency = InMemoryIdempotencyLedger(self)
        self.audit = InMemoryAuditSink(self)

    def begin(self) -> InMemoryTransaction:
        return InMemoryTransaction(self)

    def check_certificate_constraints(
        self,
        certificate: Certificate,
        staged: Iterable[Certificate] = (),
    ) -> None:
        """Raise DuplicateRecordError if ``certificate`` breaks a unique rule.

        Rows with the same id as ``certificate`` are the row itself and are
        ignored; staged rows shadow committed rows with the same id.
        """
        rows = dict(self.certificate_rows)
        rows.update({c.id: c for c in staged})
        for other in rows.values():
            if other.id == certificate.id:
                continue
            if other.reference_number == certificate.reference_number:
                raise DuplicateRecordError("certificate", UQ_REFERENCE)
            if (
                certificate.is_active
                and other.is_active
                and other.business_key == certificate.business_key
            ):
                raise DuplicateRecordError("certificate", UQ_ACTIVE_KEY)

    def apply(self, certificates: Iterable[Certificate], audit: Iterable[AuditRecord]) -> None:
        for cert in certificates:
            self.certificate_rows[cert.id] = copy.deepcopy(cert)
        self.audit_rows.extend(audit)


class InMemoryCertificateStore:
    """CertificateStore over an InMemoryDatabase."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def begin(self) -> InMemoryTransaction:
        return self._db.begin()

    async def add(self, certificate: Certificate, tx: Optional[InMemoryTransaction] = None) -> Certificate:
        if certificate.id in self._db.certificate_rows:
            raise DuplicateRecordError("certificate", "pk_certificates")
        await self._write(certificate, tx)
        return certificate

    async def save(self, certificate: Certificate, tx: Optional[InMemoryTransaction] = None) -> Certificate:
        if certificate.id not in self._db.certificate_rows and (
            tx is None or all(c.id != certificate.id for c in tx.staged_certificates())
        ):
            raise KeyError(f"Certificate {certificate.id} does not exist")
        await self._write(certificate, tx)
        return certificate

    async def get(self, certificate_id: str) -> Optional[Certificate]:
        row = self._db.certificate_rows.get(certificate_id)
        return copy.deepcopy(row) if row else None

    async def get_by_reference(self, reference_number: str) -> Optional[Certificate]:
        for row in self._db.certificate_rows.values():
            if row.reference_number == reference_number:
                return copy.deepcopy(row)
        return None

    async def find_by_business_key(
        self,
        policy_number: str,
        registration_number: str,
        company_code: str,
        tx: Optional[InMemoryTransaction] = None,
    ) -> list[Certificate]:
        rows = dict(self._db.certificate_rows)
        if tx is not None:
            rows.update({c.id: c for c in tx.staged_certificates()})
        matches = [
            copy.deepcopy(c) for c in rows.values()
            if c.policy_number == policy_number
            and c.registration_number == registration_number
            and c.company_code == company_code
        ]
        return sorted(matches, key=lambda c: c.created_at)

    async def search(
        self,
        filters: dict[str, Any],
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Certificate], int]:
        filters = dict(filters)
        created_from = filters.pop("created_from", None)
        created_to = filters.pop("created_to", None)

        def matches(cert: Certificate) -> bool:
            if created_from and cert.created_at < created_from:
                return False
            if created_to and cert.created_at > created_to:
                return False
            return all(getattr(cert, name) == value for name, value in filters.items())

        found = sorted(
            (c for c in self._db.certificate_rows.values() if matches(c)),
            key=lambda c: c.created_at,
            reverse=True,
        )
        return [copy.deepcopy(c) for c in found[offset:offset + limit]], len(found)

    async def list_by_status(
        self,
        status: CertificateStatus,
        updated_before: Optional[datetime] = None,
    ) -> list[Certificate]:
        return [
            copy.deepcopy(c) for c in sorted(self._db.certificate_rows.values(), key=lambda c: c.created_at)
            if c.status == status and (updated_before is None or c.updated_at < updated_before)
        ]

    async def _write(self, certificate: Certificate, tx: Optional[InMemoryTransaction]) -> None:
        if tx is not None:
            tx.stage_certificate(certificate)
            return
        own = self._db.begin()
        own.stage_certificate(certificate)
        await own.commit()


class InMemoryIdempotencyLedger:
    """IdempotencyLedger over an InMemoryDatabase."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._rows = db.idempotency_rows

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        record = self._rows.get(key)
        if record is None or record.is_expired():
            return None
        return copy.deepcopy(record)

    async def create(self, record: IdempotencyRecord) -> IdempotencyRecord:
        existing = self._rows.get(record.key)
        if existing is not None and not existing.is_expired():
            raise DuplicateRecordError("idempotency_key", PK_IDEMPOTENCY)
        self._rows[record.key] = copy.deepcopy(record)
        return record

    async def claim_failed(self, key: str) -> bool:
        record = self._rows.get(key)
        if record is None or record.is_expired() or record.status != IdempotencyStatus.FAILED:
            return False
        record.status = IdempotencyStatus.PENDING
        record.updated_at = utcnow()
        return True

    async def complete(self, key: str, response_body: Any) -> None:
        self._settle(key, IdempotencyStatus.COMPLETED, copy.deepcopy(response_body))

    async def fail(self, key: str) -> None:
        self._settle(key, IdempotencyStatus.FAILED, None)

    async def delete_expired(self, now: datetime) -> int:
        expired = [k for k, r in self._rows.items() if r.expires_at <= now]
        for key in expired:
            del self._rows[key]
        return len(expired)

    def _settle(self, key: str, status: IdempotencyStatus, body: Any) -> None:
        record = self._rows.get(key)
        if record is None:
            return
        record.status = status
        record.response_body = body
        record.updated_at = utcnow()


class InMemoryAuditSink:
    """AuditSink appending to an InMemoryDatabase."""

    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    async def record(self, entry: AuditRecord, tx: Optional[InMemoryTransaction] = None) -> None:
        if tx is not None:
            tx.stage_audit(entry)
        else:
            self._db.audit_rows.append(entry)

    async def for_resource(self, resource_id: str) -> list[AuditRecord]:
        return [r for r in self._db.audit_rows if r.resource_id == resource_id]
