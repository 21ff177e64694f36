"""In-memory storage adapter tests."""

from datetime import timedelta

import pytest

from attestation_platform.adapters.outbound.memory_storage import UQ_ACTIVE_KEY, UQ_REFERENCE
from attestation_platform.domain.entities.audit import AuditAction, AuditRecord
from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus, utcnow
from attestation_platform.domain.entities.idempotency import IdempotencyRecord, IdempotencyStatus
from attestation_platform.domain.exceptions import DuplicateRecordError


def make_certificate(**overrides) -> Certificate:
    fields = {
        "policy_id": "policy-1",
        "insured_id": "insured-1",
        "policy_number": "POL-1",
        "registration_number": "AB-123-CD",
        "company_code": "COMP01",
        "created_by": "user-1",
    }
    fields.update(overrides)
    return Certificate.new_pending(**fields)


class TestTransactions:

    async def test_staged_writes_are_invisible_until_commit(self, database):
        store = database.certificates
        cert = make_certificate()
        tx = await store.begin()

        await store.add(cert, tx)
        assert await store.get(cert.id) is None
        assert len(await store.find_by_business_key("POL-1", "AB-123-CD", "COMP01", tx)) == 1

        await tx.commit()
        assert (await store.get(cert.id)).reference_number == cert.reference_number

    async def test_on_commit_runs_after_commit_only(self, database):
        store = database.certificates
        fired = []

        tx = await store.begin()
        await store.add(make_certificate(), tx)
        tx.on_commit(lambda: fired.append("committed"))
        assert fired == []
        await tx.commit()
        assert fired == ["committed"]

        tx = await store.begin()
        await store.add(make_certificate(policy_number="POL-2"), tx)
        tx.on_commit(lambda: fired.append("rolled back"))
        await tx.rollback()
        assert fired == ["committed"]
        assert len(database.certificate_rows) == 1

    async def test_closed_transaction_rejects_writes(self, database):
        tx = await database.certificates.begin()
        await tx.commit()
        with pytest.raises(RuntimeError):
            await database.certificates.add(make_certificate(), tx)

    async def test_reads_return_copies(self, database):
        cert = make_certificate()
        await database.certificates.add(cert)

        loaded = await database.certificates.get(cert.id)
        loaded.status = CertificateStatus.FAILED

        assert database.certificate_rows[cert.id].status == CertificateStatus.PENDING


class TestConstraints:
    """Uniqueness rules mirror the SQL schema."""

    async def test_second_active_certificate_is_rejected(self, database):
        await database.certificates.add(make_certificate())

        with pytest.raises(DuplicateRecordError) as exc_info:
            await database.certificates.add(make_certificate(created_by="user-2"))
        assert exc_info.value.constraint == UQ_ACTIVE_KEY

    async def test_conflict_detected_at_commit(self, database):
        """Two transactions racing on the same business key: the second commit fails."""
        store = database.certificates
        first, second = await store.begin(), await store.begin()
        await store.add(make_certificate(), first)
        await store.add(make_certificate(), second)

        await first.commit()
        with pytest.raises(DuplicateRecordError):
            await second.commit()
        assert len(database.certificate_rows) == 1

    async def test_inactive_certificate_frees_the_key(self, database):
        failed = make_certificate()
        failed.status = CertificateStatus.FAILED
        await database.certificates.add(failed)

        await database.certificates.add(make_certificate())
        assert len(database.certificate_rows) == 2

    async def test_reference_number_is_unique(self, database):
        cert = make_certificate()
        await database.certificates.add(cert)
        clash = make_certificate(policy_number="POL-2")
        clash.reference_number = cert.reference_number

        with pytest.raises(DuplicateRecordError) as exc_info:
            await database.certificates.add(clash)
        assert exc_info.value.constraint == UQ_REFERENCE

    async def test_save_unknown_certificate(self, database):
        with pytest.raises(KeyError):
            await database.certificates.save(make_certificate())


class TestQueries:

    async def test_search_filters_and_pages(self, database):
        store = database.certificates
        base = utcnow()
        for n in range(5):
            cert = make_certificate(policy_number=f"POL-{n}", company_code="A" if n % 2 else "B")
            cert.created_at = base + timedelta(seconds=n)
            await store.add(cert)

        rows, total = await store.search({"company_code": "B"}, offset=0, limit=2)

        assert total == 3
        assert [c.policy_number for c in rows] == ["POL-4", "POL-2"]

    async def test_search_by_creation_window(self, database):
        old = make_certificate(policy_number="POL-OLD")
        old.created_at -= timedelta(days=10)
        await database.certificates.add(old)
        await database.certificates.add(make_certificate(policy_number="POL-NEW"))

        rows, total = await database.certificates.search({"created_from": utcnow() - timedelta(days=1)})

        assert total == 1
        assert rows[0].policy_number == "POL-NEW"

    async def test_list_by_status(self, database):
        stale = make_certificate(policy_number="POL-STALE")
        stale.updated_at -= timedelta(minutes=10)
        await database.certificates.add(stale)
        await database.certificates.add(make_certificate(policy_number="POL-FRESH"))

        rows = await database.certificates.list_by_status(
            CertificateStatus.PENDING, updated_before=utcnow() - timedelta(minutes=5)
        )
        assert [c.policy_number for c in rows] == ["POL-STALE"]


class TestIdempotencyLedger:

    async def test_create_is_unique(self, database):
        ledger = database.idempotency
        await ledger.create(IdempotencyRecord.new_pending("k1", "h1"))

        with pytest.raises(DuplicateRecordError):
            await ledger.create(IdempotencyRecord.new_pending("k1", "h1"))

    async def test_expired_key_can_be_reused(self, database):
        ledger = database.idempotency
        await ledger.create(IdempotencyRecord.new_pending("k1", "h1", now=utcnow() - timedelta(days=2)))

        assert await ledger.get("k1") is None
        await ledger.create(IdempotencyRecord.new_pending("k1", "h2"))
        assert (await ledger.get("k1")).request_hash == "h2"

    async def test_claim_failed_once(self, database):
        ledger = database.idempotency
        await ledger.create(IdempotencyRecord.new_pending("k1", "h1"))
        assert not await ledger.claim_failed("k1")

        await ledger.fail("k1")
        assert await ledger.claim_failed("k1")
        assert not await ledger.claim_failed("k1")
        assert (await ledger.get("k1")).status == IdempotencyStatus.PENDING

    async def test_complete_stores_body(self, database):
        ledger = database.idempotency
        await ledger.create(IdempotencyRecord.new_pending("k1", "h1"))
        body = {"certificateId": "c-1"}

        await ledger.complete("k1", body)
        body["certificateId"] = "mutated"

        assert (await ledger.get("k1")).response_body == {"certificateId": "c-1"}


class TestAuditSink:

    async def test_audit_follows_transaction(self, database):
        tx = await database.certificates.begin()
        await database.audit.record(AuditRecord(action=AuditAction.CREATED, user_id="u", resource_id="c-1"), tx)
        assert await database.audit.for_resource("c-1") == []

        await tx.commit()
        await database.audit.record(
            AuditRecord.status_change(AuditAction.CANCELLED, "admin", "c-1", "completed", "cancelled")
        )

        records = await database.audit.for_resource("c-1")
        assert [r.action for r in records] == [AuditAction.CREATED, AuditAction.CANCELLED]
