"""SQLAlchemy storage adapters (async).

Tables:
    certificates            - one row per certificate; partial unique index
                              on the business key over active statuses
    idempotency_keys        - primary key ``key``, indexed ``expires_at``
    certificate_audit_logs  - append-only audit trail

Datetimes are stored as naive UTC and returned timezone-aware. Unique
violations surface as DuplicateRecordError.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    delete,
    func,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from attestation_platform.domain.entities.audit import AuditAction, AuditRecord
from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus, utcnow
from attestation_platform.domain.entities.idempotency import IdempotencyRecord, IdempotencyStatus
from attestation_platform.domain.exceptions import DuplicateRecordError
from attestation_platform.infrastructure.config import DatabaseConfig
from attestation_platform.infrastructure.logging import get_logger

UQ_REFERENCE = "uq_certificates_reference_number"
UQ_ACTIVE_KEY = "uq_certificates_active_business_key"
PK_IDEMPOTENCY = "pk_idempotency_keys"

_ACTIVE_FILTER = "status IN ('pending', 'processing', 'completed')"

logger = get_logger(__name__)


class UTCDateTime(TypeDecorator):
    """Naive UTC in the database, aware UTC in Python."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    reference_number: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    policy_id: Mapped[str] = mapped_column(String(64), nullable=False)
    insured_id: Mapped[str] = mapped_column(String(64), nullable=False)
    policy_number: Mapped[str] = mapped_column(String(64), nullable=False)
    registration_number: Mapped[str] = mapped_column(String(32), nullable=False)
    company_code: Mapped[str] = mapped_column(String(32), nullable=False)
    agent_code: Mapped[Optional[str]] = mapped_column(String(32))
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_request_number: Mapped[Optional[str]] = mapped_column(String(64))
    certificate_number: Mapped[Optional[str]] = mapped_column(String(64))
    download_url: Mapped[Optional[str]] = mapped_column(Text)
    download_expires_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("reference_number", name=UQ_REFERENCE),
        Index(
            UQ_ACTIVE_KEY,
            "policy_number",
            "registration_number",
            "company_code",
            unique=True,
            sqlite_where=text(_ACTIVE_FILTER),
            postgresql_where=text(_ACTIVE_FILTER),
        ),
        Index("ix_certificates_status_updated_at", "status", "updated_at"),
        Index("ix_certificates_created_at", "created_at"),
    )


class IdempotencyRow(Base):
    __tablename__ = "idempotency_keys"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    response_body: Mapped[Optional[Any]] = mapped_column(JSON)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class AuditRow(Base):
    __tablename__ = "certificate_audit_logs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    old_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    new_values: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# =============================================================================
# Mapping
# =============================================================================


_MUTABLE_FIELDS = (
    "status",
    "provider_request_number",
    "certificate_number",
    "download_url",
    "download_expires_at",
    "error_message",
    "updated_at",
)


def _certificate_to_row(cert: Certificate) -> CertificateRow:
    return CertificateRow(
        id=cert.id,
        reference_number=cert.reference_number,
        status=cert.status.value,
        policy_id=cert.policy_id,
        insured_id=cert.insured_id,
        policy_number=cert.policy_number,
        registration_number=cert.registration_number,
        company_code=cert.company_code,
        agent_code=cert.agent_code,
        created_by=cert.created_by,
        provider_request_number=cert.provider_request_number,
        certificate_number=cert.certificate_number,
        download_url=cert.download_url,
        download_expires_at=cert.download_expires_at,
        error_message=cert.error_message,
        metadata_=dict(cert.metadata),
        idempotency_key=cert.idempotency_key,
        created_at=cert.created_at,
        updated_at=cert.updated_at,
    )


def _certificate_from_row(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        reference_number=row.reference_number,
        status=CertificateStatus(row.status),
        policy_id=row.policy_id,
        insured_id=row.insured_id,
        policy_number=row.policy_number,
        registration_number=row.registration_number,
        company_code=row.company_code,
        agent_code=row.agent_code,
        created_by=row.created_by,
        provider_request_number=row.provider_request_number,
        certificate_number=row.certificate_number,
        download_url=row.download_url,
        download_expires_at=row.download_expires_at,
        error_message=row.error_message,
        metadata=dict(row.metadata_ or {}),
        idempotency_key=row.idempotency_key,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _record_from_row(row: IdempotencyRow) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=row.key,
        request_hash=row.request_hash,
        status=IdempotencyStatus(row.status),
        response_body=row.response_body,
        expires_at=row.expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _duplicate_error(error: IntegrityError) -> DuplicateRecordError:
    message = str(error.orig).lower()
    if "idempotency_keys" in message:
        return DuplicateRecordError("idempotency_key", PK_IDEMPOTENCY)
    if "reference_number" in message:
        return DuplicateRecordError("certificate", UQ_REFERENCE)
    return DuplicateRecordError("certificate", UQ_ACTIVE_KEY)


# =============================================================================
# Database / transactions
# =============================================================================


class SqlTransaction:
    """Transaction bound to one AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._callbacks: list[Callable[[], None]] = []
        self._closed = False

    def on_commit(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    async def commit(self) -> None:
        if self._closed:
            raise RuntimeError("Transaction is already closed")
        self._closed = True
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise _duplicate_error(e) from e
        finally:
            await self.session.close()

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()

    async def rollback(self) -> None:
        self._callbacks.clear()
        if self._closed:
            return
        self._closed = True
        try:
            await self.session.rollback()
        finally:
            await self.session.close()


class SqlDatabase:
    """Engine, session factory and the adapters sharing them."""

    def __init__(self, url: str, echo: bool = False) -> None:
        self.engine = create_async_engine(url, echo=echo)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)
        self.certificates = SqlCertificateStore(self)
        self.idempotency = SqlIdempotencyLedger(self)
        self.audit = SqlAuditSink(self)

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> SqlDatabase:
        return cls(config.url, echo=config.echo)

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database_schema_ready", url=self.engine.url.render_as_string(hide_password=True))

    async def dispose(self) -> None:
        await self.engine.dispose()

    def begin(self) -> SqlTransaction:
        return SqlTransaction(self.session_factory())

    @asynccontextmanager
    async def session(self, tx: Optional[SqlTransaction] = None) -> AsyncIterator[AsyncSession]:
        """Session of ``tx``, or a short-lived session committed on exit."""
        if tx is not None:
            yield tx.session
            return
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise _duplicate_error(e) from e


async def _flush(session: AsyncSession) -> None:
    try:
        await session.flush()
    except IntegrityError as e:
        raise _duplicate_error(e) from e


# =============================================================================
# Adapters
# =============================================================================


class SqlCertificateStore:
    """CertificateStore on SQLAlchemy."""

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    async def begin(self) -> SqlTransaction:
        return self._db.begin()

    async def add(self, certificate: Certificate, tx: Optional[SqlTransaction] = None) -> Certificate:
        async with self._db.session(tx) as session:
            session.add(_certificate_to_row(certificate))
            await _flush(session)
        return certificate

    async def save(self, certificate: Certificate, tx: Optional[SqlTransaction] = None) -> Certificate:
        async with self._db.session(tx) as session:
            row = await session.get(CertificateRow, certificate.id)
            if row is None:
                raise KeyError(f"Certificate {certificate.id} does not exist")
            for name in _MUTABLE_FIELDS:
                value = getattr(certificate, name)
                setattr(row, name, value.value if isinstance(value, CertificateStatus) else value)
            row.metadata_ = dict(certificate.metadata)
            await _flush(session)
        return certificate

    async def get(self, certificate_id: str) -> Optional[Certificate]:
        async with self._db.session() as session:
            row = await session.get(CertificateRow, certificate_id)
            return _certificate_from_row(row) if row else None

    async def get_by_reference(self, reference_number: str) -> Optional[Certificate]:
        async with self._db.session() as session:
            row = await session.scalar(
                select(CertificateRow).where(CertificateRow.reference_number == reference_number)
            )
            return _certificate_from_row(row) if row else None

    async def find_by_business_key(
        self,
        policy_number: str,
        registration_number: str,
        company_code: str,
        tx: Optional[SqlTransaction] = None,
    ) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(
                CertificateRow.policy_number == policy_number,
                CertificateRow.registration_number == registration_number,
                CertificateRow.company_code == company_code,
            )
            .order_by(CertificateRow.created_at)
        )
        async with self._db.session(tx) as session:
            rows = (await session.scalars(stmt)).all()
            return [_certificate_from_row(r) for r in rows]

    async def search(
        self,
        filters: dict[str, Any],
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[Certificate], int]:
        conditions = []
        for name, value in filters.items():
            if name == "created_from":
                conditions.append(CertificateRow.created_at >= value)
            elif name == "created_to":
                conditions.append(CertificateRow.created_at <= value)
            else:
                if isinstance(value, CertificateStatus):
                    value = value.value
                conditions.append(getattr(CertificateRow, name) == value)

        async with self._db.session() as session:
            total = await session.scalar(
                select(func.count()).select_from(CertificateRow).where(*conditions)
            )
            rows = (await session.scalars(
                select(CertificateRow)
                .where(*conditions)
                .order_by(CertificateRow.created_at.desc())
                .offset(offset)
                .limit(limit)
            )).all()
            return [_certificate_from_row(r) for r in rows], int(total or 0)

    async def list_by_status(
        self,
        status: CertificateStatus,
        updated_before: Optional[datetime] = None,
    ) -> list[Certificate]:
        stmt = select(CertificateRow).where(CertificateRow.status == status.value)
        if updated_before is not None:
            stmt = stmt.where(CertificateRow.updated_at < updated_before)
        async with self._db.session() as session:
            rows = (await session.scalars(stmt.order_by(CertificateRow.created_at))).all()
            return [_certificate_from_row(r) for r in rows]


class SqlIdempotencyLedger:
    """IdempotencyLedger on SQLAlchemy; the primary key arbitrates races."""

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        async with self._db.session() as session:
            row = await session.get(IdempotencyRow, key)
            if row is None or row.expires_at <= utcnow():
                return None
            return _record_from_row(row)

    async def create(self, record: IdempotencyRecord) -> IdempotencyRecord:
        async with self._db.session() as session:
            await session.execute(
                delete(IdempotencyRow)
                .where(IdempotencyRow.key == record.key, IdempotencyRow.expires_at <= utcnow())
                .execution_options(synchronize_session=False)
            )
            session.add(IdempotencyRow(
                key=record.key,
                request_hash=record.request_hash,
                status=record.status.value,
                response_body=record.response_body,
                expires_at=record.expires_at,
                created_at=record.created_at,
                updated_at=record.updated_at,
            ))
            await _flush(session)
        return record

    async def claim_failed(self, key: str) -> bool:
        now = utcnow()
        async with self._db.session() as session:
            result = await session.execute(
                update(IdempotencyRow)
                .where(
                    IdempotencyRow.key == key,
                    IdempotencyRow.status == IdempotencyStatus.FAILED.value,
                    IdempotencyRow.expires_at > now,
                )
                .values(status=IdempotencyStatus.PENDING.value, response_body=None, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def complete(self, key: str, response_body: Any) -> None:
        await self._settle(key, IdempotencyStatus.COMPLETED, response_body)

    async def fail(self, key: str) -> None:
        await self._settle(key, IdempotencyStatus.FAILED, None)

    async def delete_expired(self, now: datetime) -> int:
        async with self._db.session() as session:
            result = await session.execute(
                delete(IdempotencyRow)
                .where(IdempotencyRow.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

    async def _settle(self, key: str, status: IdempotencyStatus, body: Any) -> None:
        async with self._db.session() as session:
            await session.execute(
                update(IdempotencyRow)
                .where(IdempotencyRow.key == key)
                .values(status=status.value, response_body=body, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )


class SqlAuditSink:
    """AuditSink writing to ``certificate_audit_logs``."""

    def __init__(self, db: SqlDatabase) -> None:
        self._db = db

    async def record(self, entry: AuditRecord, tx: Optional[SqlTransaction] = None) -> None:
        async with self._db.session(tx) as session:
            session.add(AuditRow(
                id=entry.id,
                action=entry.action.value,
                user_id=entry.user_id,
                resource_type=entry.resource_type,
                resource_id=entry.resource_id,
                old_values=dict(entry.old_values),
                new_values=dict(entry.new_values),
                metadata_=dict(entry.metadata),
                created_at=entry.created_at,
            ))
            await _flush(session)

    async def for_resource(self, resource_id: str) -> list[AuditRecord]:
        async with self._db.session() as session:
            rows = (await session.scalars(
                select(AuditRow).where(AuditRow.resource_id == resource_id).order_by(AuditRow.created_at)
            )).all()
            return [
                AuditRecord(
                    id=r.id,
                    action=AuditAction(r.action),
                    user_id=r.user_id,
                    resource_type=r.resource_type,
                    resource_id=r.resource_id,
                    old_values=dict(r.old_values or {}),
                    new_values=dict(r.new_values or {}),
                    metadata=dict(r.metadata_ or {}),
                    created_at=r.created_at,
                )
                for r in rows
            ]
