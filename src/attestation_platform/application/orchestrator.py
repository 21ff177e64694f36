"""Certificate orchestrator.

Drives certificates through their lifecycle:
- Creation: duplicate check, registry fetch, pending row and audit record in
  one transaction; provider submission starts only after commit
- Submission (background): pending -> processing -> completed | failed
- Reconciliation against the provider's authoritative status
- Cancel / suspend batches, download links with a cached URL, bulk creation

Reconciliation never moves a certificate out of ``cancelled`` or
``suspended``: those states are set locally only after the provider
acknowledged them, so a differing provider status is treated as lag.
"""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from attestation_platform.application.background import BackgroundTaskRunner
from attestation_platform.application.idempotency import IdempotencyService
from attestation_platform.domain.entities.audit import AuditAction, AuditRecord
from attestation_platform.domain.entities.certificate import Certificate, CertificateStatus, utcnow
from attestation_platform.domain.entities.provider import (
    DownloadType,
    OperationCode,
    StatusCheckRequest,
    UpdateStatusRequest,
)
from attestation_platform.domain.entities.registry import InsuredData, PolicyData
from attestation_platform.domain.exceptions import (
    AttestationError,
    DuplicateRecordError,
    ExternalApiError,
    NotFoundError,
    ValidationError,
)
from attestation_platform.domain.services.duplicate_detection import find_active_conflict
from attestation_platform.domain.services.edition_mapper import build_edition_request
from attestation_platform.domain.services.status_mapping import (
    describe_provider_status,
    map_provider_status,
)
from attestation_platform.domain.value_objects.metadata import validate_metadata
from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry
from attestation_platform.infrastructure.tracing import trace_span
from attestation_platform.ports.inbound import (
    BulkCertificateRequest,
    BulkCertificateResult,
    BulkItemResult,
    CertificateCreationRequest,
    CertificateCreationResult,
    CertificateOperationRequest,
    CertificateOperationResult,
    CertificateSearchCriteria,
    DownloadInfo,
    OperationFailure,
    Page,
    StatusCheckResult,
)
from attestation_platform.ports.outbound import (
    AuditSink,
    CertificateStore,
    ProviderGateway,
    RegistryGateway,
    Transaction,
)

logger = get_logger(__name__)

# Local states reconciliation must not overwrite
_RECONCILE_PROTECTED = frozenset({CertificateStatus.CANCELLED, CertificateStatus.SUSPENDED})

MAX_PAGE_SIZE = 100


class CertificateOrchestrator:
    """State-machine driver for certificate issuance.

    Args:
        store: Certificate store.
        audit: Audit sink (shares transactions with the store).
        registry: Policy/insured registry gateway.
        provider: Attestation provider gateway.
        idempotency: Idempotency service for keyed creation requests.
        background: Runner for detached provider submissions.
        metrics: Metrics registry.
        requester_code: ``code_demandeur`` sent to the provider.
        download_ttl: How long a fetched download URL is served from cache.
        clock: Current UTC time (tests).
    """

    def __init__(
        self,
        store: CertificateStore,
        audit: AuditSink,
        registry: RegistryGateway,
        provider: ProviderGateway,
        idempotency: IdempotencyService | None = None,
        background: BackgroundTaskRunner | None = None,
        metrics: MetricsRegistry | None = None,
        requester_code: str = "SYSTEM",
        download_ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._registry = registry
        self._provider = provider
        self._idempotency = idempotency
        self._background = background or BackgroundTaskRunner(metrics)
        self._metrics = metrics
        self._requester_code = requester_code
        self._download_ttl = download_ttl
        self._clock = clock

        self._counters = {
            "certificates_created": 0,
            "submissions_completed": 0,
            "submissions_failed": 0,
            "certificates_cancelled": 0,
            "certificates_suspended": 0,
            "reconciliations": 0,
            "download_cache_hits": 0,
            "download_cache_misses": 0,
            "bulk_batches": 0,
        }

    @property
    def background(self) -> BackgroundTaskRunner:
        return self._background

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_certificate(
        self,
        request: CertificateCreationRequest,
        tx: Optional[Transaction] = None,
    ) -> CertificateCreationResult:
        """Create a pending certificate and schedule its provider submission.

        Runs in ``tx`` when given (the caller commits), otherwise in a
        transaction opened and committed here. Submission starts only after
        the commit.

        Raises:
            ValidationError: Blank mandatory field, bad metadata, or an active
                certificate already exists for the policy/vehicle/company.
            NotFoundError: Policy or insured party unknown to the registry.
            ExternalApiError: Registry unavailable.
        """
        request.validate()
        metadata = validate_metadata(request.metadata)

        owns_tx = tx is None
        if tx is None:
            tx = await self._store.begin()

        with trace_span("certificate.create", {"policy.number": request.policy_number}):
            try:
                conflict = await find_active_conflict(
                    self._store,
                    request.policy_number,
                    request.registration_number,
                    request.company_code,
                    tx=tx,
                )
                if conflict is not None:
                    raise self._conflict_error(conflict)

                policy, insured = await self._fetch_registry_data(request.policy_number)

                certificate = Certificate.new_pending(
                    policy_id=policy.id,
                    insured_id=insured.id,
                    policy_number=request.policy_number,
                    registration_number=request.registration_number,
                    company_code=request.company_code,
                    created_by=request.requested_by,
                    agent_code=request.agent_code,
                    metadata=metadata,
                    idempotency_key=request.idempotency_key,
                )
                await self._store.add(certificate, tx)
                await self._audit.record(
                    AuditRecord(
                        action=AuditAction.CREATED,
                        user_id=request.requested_by,
                        resource_id=certificate.id,
                        new_values={
                            "referenceNumber": certificate.reference_number,
                            "status": certificate.status.value,
                            "policyNumber": certificate.policy_number,
                            "registrationNumber": certificate.registration_number,
                            "companyCode": certificate.company_code,
                        },
                    ),
                    tx,
                )
                tx.on_commit(lambda: self._on_created(certificate, policy, insured))

                if owns_tx:
                    await tx.commit()
            except DuplicateRecordError as e:
                if owns_tx:
                    await tx.rollback()
                raise await self._duplicate_error(request, e) from e
            except BaseException:
                if owns_tx:
                    await tx.rollback()
                raise

        logger.info(
            "certificate_created",
            certificate_id=certificate.id,
            reference_number=certificate.reference_number,
            policy_number=certificate.policy_number,
        )
        return CertificateCreationResult(
            certificate_id=certificate.id,
            reference_number=certificate.reference_number,
            status=certificate.status,
            message="Certificate creation initiated; submission to the provider is in progress",
        )

    async def create_certificate_idempotent(self, request: CertificateCreationRequest) -> CertificateCreationResult:
        """``create_certificate`` executed at most once per idempotency key.

        Requests without a key run once, with no replay.
        """
        if not request.idempotency_key or self._idempotency is None:
            return await self.create_certificate(request)

        return await self._idempotency.process_idempotent_request(
            request.idempotency_key,
            IdempotencyService.compute_request_hash(request.fingerprint()),
            lambda: self.create_certificate(request),
            encode=CertificateCreationResult.to_dict,
            decode=CertificateCreationResult.from_dict,
        )

    def _on_created(self, certificate: Certificate, policy: PolicyData, insured: InsuredData) -> None:
        self._counters["certificates_created"] += 1
        if self._metrics is not None:
            self._metrics.certificates_created_total.labels(company_code=certificate.company_code).inc()
        self._launch_submission(certificate.id, policy, insured)

    def _launch_submission(
        self,
        certificate_id: str,
        policy: PolicyData | None = None,
        insured: InsuredData | None = None,
    ) -> None:
        self._background.submit(
            f"submit-{certificate_id}",
            lambda: self.submit_certificate(certificate_id, policy, insured),
        )

    def _conflict_error(self, conflict: Certificate) -> ValidationError:
        return ValidationError(
            f"An active certificate ({conflict.id}) already exists for this policy and vehicle "
            f"with status {conflict.status.value}",
            {"existingCertificateId": conflict.id, "existingStatus": conflict.status.value},
        )

    async def _duplicate_error(
        self,
        request: CertificateCreationRequest,
        error: DuplicateRecordError,
    ) -> AttestationError:
        """Map a storage-level uniqueness rejection (lost race) to a validation error."""
        if "business_key" not in error.constraint:
            return error
        conflict = await find_active_conflict(
            self._store, request.policy_number, request.registration_number, request.company_code
        )
        if conflict is None:
            return ValidationError(
                "An active certificate already exists for this policy and vehicle",
                {"constraint": error.constraint},
            )
        return self._conflict_error(conflict)

    # ------------------------------------------------------------------
    # Asynchronous submission
    # ------------------------------------------------------------------

    async def submit_certificate(
        self,
        certificate_id: str,
        policy: PolicyData | None = None,
        insured: InsuredData | None = None,
    ) -> Certificate | None:
        """Submit a pending certificate to the provider. Never raises.

        Registry data is fetched again when not supplied (resumed submissions).
        Any failure after the move to ``processing`` settles the certificate
        as ``failed`` with the error message.
        """
        with trace_span("certificate.submit", {"certificate.id": certificate_id}):
            try:
                return await self._submit(certificate_id, policy, insured)
            except Exception:
                logger.exception("certificate_submission_crashed", certificate_id=certificate_id)
                return None

    async def _submit(
        self,
        certificate_id: str,
        policy: PolicyData | None,
        insured: InsuredData | None,
    ) -> Certificate | None:
        certificate = await self._store.get(certificate_id)
        if certificate is None:
            logger.error("certificate_submission_missing", certificate_id=certificate_id)
            return None
        if certificate.status != CertificateStatus.PENDING:
            logger.warning(
                "certificate_submission_skipped",
                certificate_id=certificate_id,
                status=certificate.status.value,
            )
            return certificate

        try:
            await self._transition(certificate, CertificateStatus.PROCESSING)
        except Exception:
            # pending -> failed is not an edge; leave it pending for resume_pending_submissions
            logger.exception("certificate_processing_transition_failed", certificate_id=certificate_id)
            return certificate

        try:
            if policy is None or insured is None:
                policy, insured = await self._fetch_registry_data(certificate.policy_number)
            payload = build_edition_request(policy, insured, certificate.company_code, certificate.agent_code)
            response = await self._provider.create_attestation(payload)
        except Exception as e:
            logger.warning("certificate_submission_failed", certificate_id=certificate_id, error=str(e))
            return await self._settle_failed(certificate, str(e) or type(e).__name__)

        certificate.provider_request_number = response.numero_demande
        certificate.merge_metadata({
            "providerStatus": response.statut,
            "attestations": [info.to_dict() for info in response.infos],
        })

        mapped = map_provider_status(response.statut)
        if mapped == CertificateStatus.COMPLETED:
            certificate.certificate_number = response.certificate_number
            await self._transition(certificate, CertificateStatus.COMPLETED)
            self._counters["submissions_completed"] += 1
            logger.info(
                "certificate_completed",
                certificate_id=certificate_id,
                certificate_number=certificate.certificate_number,
            )
        elif mapped == CertificateStatus.PROCESSING:
            # Still being generated on the provider side; reconciliation picks it up
            await self._store.save(certificate)
            logger.info(
                "certificate_awaiting_provider",
                certificate_id=certificate_id,
                provider_status=response.statut,
            )
        else:
            # Rejections and codes the provider does not document
            return await self._settle_failed(
                certificate,
                f"Provider error {response.statut}: {describe_provider_status(response.statut)}",
            )
        return certificate

    async def _settle_failed(self, certificate: Certificate, message: str) -> Certificate:
        certificate.error_message = message
        await self._transition(certificate, CertificateStatus.FAILED)
        self._counters["submissions_failed"] += 1
        logger.warning("certificate_failed", certificate_id=certificate.id, error=message)
        return certificate

    async def _transition(
        self,
        certificate: Certificate,
        target: CertificateStatus,
        tx: Optional[Transaction] = None,
    ) -> CertificateStatus:
        previous = certificate.transition_to(target)
        await self._store.save(certificate, tx)
        self._record_transition(previous, target)
        return previous

    def _record_transition(self, previous: CertificateStatus, target: CertificateStatus) -> None:
        if self._metrics is not None:
            self._metrics.status_transitions_total.labels(
                from_status=previous.value, to_status=target.value
            ).inc()

    async def resume_pending_submissions(self, older_than: timedelta = timedelta(minutes=5)) -> int:
        """Relaunch submission for certificates stuck in ``pending``.

        In-flight submissions are lost on restart; this picks up every
        pending certificate not touched for ``older_than``. Certificates left
        in ``processing`` without a provider request number were interrupted
        before the provider answered and are settled as ``failed``, which
        frees their business key for a new request.

        Returns:
            Number of submissions scheduled.
        """
        cutoff = self._clock() - older_than
        stale = await self._store.list_by_status(CertificateStatus.PENDING, updated_before=cutoff)
        scheduled = 0
        for certificate in stale:
            if certificate.provider_request_number:
                continue
            self._launch_submission(certificate.id)
            scheduled += 1
        if scheduled:
            logger.info("pending_submissions_resumed", count=scheduled)

        interrupted = await self._store.list_by_status(CertificateStatus.PROCESSING, updated_before=cutoff)
        for certificate in interrupted:
            if certificate.provider_request_number:
                continue
            await self._settle_failed(certificate, "Submission interrupted before the provider responded")
        return scheduled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_certificate_by_id(self, certificate_id: str) -> Certificate:
        certificate = await self._store.get(certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate", certificate_id)
        return certificate

    async def get_certificate_by_reference(self, reference_number: str) -> Certificate:
        certificate = await self._store.get_by_reference(reference_number)
        if certificate is None:
            raise NotFoundError("Certificate", reference_number)
        return certificate

    async def search_certificates(
        self,
        criteria: CertificateSearchCriteria,
        page: int = 1,
        page_size: int = 20,
    ) -> Page[Certificate]:
        if page < 1:
            raise ValidationError("page must be >= 1", {"field": "page"})
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"pageSize must be between 1 and {MAX_PAGE_SIZE}", {"field": "pageSize"})
        items, total = await self._store.search(
            criteria.to_filters(), offset=(page - 1) * page_size, limit=page_size
        )
        return Page(items=items, total=total, page=page, page_size=page_size)

    # ------------------------------------------------------------------
    # Status updates and reconciliation
    # ------------------------------------------------------------------

    async def update_certificate_status(
        self,
        certificate_id: str,
        status: CertificateStatus,
        metadata: Optional[dict[str, Any]] = None,
        user_id: Optional[str] = None,
        *,
        reconcile: bool = False,
    ) -> Certificate:
        """Write a new status and merge metadata into the existing bag.

        Only edges of the state machine are accepted, unless ``reconcile`` is
        set (provider status overwrite). An audit record is written only when
        ``user_id`` is given.

        Raises:
            NotFoundError: Unknown certificate.
            InvalidTransitionError: Status change outside the state machine.
        """
        certificate = await self.get_certificate_by_id(certificate_id)
        extra = validate_metadata(metadata)

        previous = certificate.status
        if status != previous:
            if reconcile:
                certificate.reconcile_to(status)
            else:
                certificate.transition_to(status)
        certificate.merge_metadata(extra)
        certificate.touch()

        tx = await self._store.begin()
        try:
            await self._store.save(certificate, tx)
            if user_id:
                await self._audit.record(
                    AuditRecord.status_change(
                        AuditAction.UPDATED,
                        user_id,
                        certificate.id,
                        previous.value,
                        status.value,
                        metadata=extra,
                    ),
                    tx,
                )
            await tx.commit()
        except BaseException:
            await tx.rollback()
            raise

        if status != previous:
            self._record_transition(previous, status)
        logger.info(
            "certificate_status_updated",
            certificate_id=certificate_id,
            from_status=previous.value,
            to_status=status.value,
            reconcile=reconcile,
        )
        return certificate

    async def check_certificate_status(self, reference_number: str) -> StatusCheckResult:
        """Status of a certificate, reconciled with the provider when possible.

        Provider failures never propagate: the last known status is returned
        with an error annotation.

        Raises:
            NotFoundError: Unknown reference number.
        """
        certificate = await self.get_certificate_by_reference(reference_number)
        result = StatusCheckResult(
            certificate_id=certificate.id,
            reference_number=certificate.reference_number,
            status=certificate.status,
        )
        if not certificate.provider_request_number:
            result.note = "Certificate has not been registered with the provider yet; local status returned"
            return result

        with trace_span("certificate.reconcile", {"certificate.id": certificate.id}):
            try:
                response = await self._provider.check_attestation_status(
                    StatusCheckRequest(self._requester_code, certificate.provider_request_number)
                )
            except Exception as e:
                logger.warning("certificate_status_check_failed", certificate_id=certificate.id, error=str(e))
                self._count_reconciliation("provider_error")
                result.error = f"Provider unavailable ({e}); last known status is {certificate.status.value}"
                return result

            result.provider_status = response.statut
            result.provider_message = response.message or describe_provider_status(response.statut)
            mapped = map_provider_status(response.statut)
            if mapped == certificate.status:
                self._count_reconciliation("in_sync")
                return result

            if certificate.status in _RECONCILE_PROTECTED:
                self._count_reconciliation("kept_local")
                result.note = (
                    f"Provider reports {mapped.value}; local {certificate.status.value} status kept"
                )
                return result

            try:
                updated = await self.update_certificate_status(
                    certificate.id,
                    mapped,
                    metadata={
                        "lastProviderStatus": response.statut,
                        "reconciledAt": self._clock().isoformat(),
                    },
                    reconcile=True,
                )
            except DuplicateRecordError:
                # Reactivating would collide with a newer active certificate
                logger.warning(
                    "certificate_reconciliation_conflict",
                    certificate_id=certificate.id,
                    provider_status=response.statut,
                    local_status=certificate.status.value,
                )
                self._count_reconciliation("conflict")
                result.note = (
                    f"Provider reports {mapped.value}, but another active certificate exists for "
                    f"this policy and vehicle; local {certificate.status.value} status kept"
                )
                return result
            self._counters["reconciliations"] += 1
            self._count_reconciliation("reconciled")
            result.status = updated.status
            result.reconciled = True
            return result

    def _count_reconciliation(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.reconciliations_total.labels(outcome=outcome).inc()

    # ------------------------------------------------------------------
    # Cancel / suspend
    # ------------------------------------------------------------------

    async def cancel_certificates(self, request: CertificateOperationRequest) -> CertificateOperationResult:
        return await self._apply_operation_batch(
            request, OperationCode.CANCEL, CertificateStatus.CANCELLED, AuditAction.CANCELLED, "cancel"
        )

    async def suspend_certificates(self, request: CertificateOperationRequest) -> CertificateOperationResult:
        return await self._apply_operation_batch(
            request, OperationCode.SUSPEND, CertificateStatus.SUSPENDED, AuditAction.SUSPENDED, "suspend"
        )

    async def _apply_operation_batch(
        self,
        request: CertificateOperationRequest,
        operation: OperationCode,
        target: CertificateStatus,
        action: AuditAction,
        verb: str,
    ) -> CertificateOperationResult:
        request.validate()
        result = CertificateOperationResult()
        for certificate_id in request.certificate_ids:
            try:
                await self._apply_operation(certificate_id, request, operation, target, action, verb)
            except AttestationError as e:
                logger.info(f"certificate_{verb}_rejected", certificate_id=certificate_id, error=e.message)
                result.failed.append(OperationFailure(certificate_id, e.message))
            except Exception as e:
                logger.exception(f"certificate_{verb}_error", certificate_id=certificate_id)
                result.failed.append(OperationFailure(certificate_id, str(e)))
            else:
                result.successful.append(certificate_id)
        return result

    async def _apply_operation(
        self,
        certificate_id: str,
        request: CertificateOperationRequest,
        operation: OperationCode,
        target: CertificateStatus,
        action: AuditAction,
        verb: str,
    ) -> None:
        certificate = await self.get_certificate_by_id(certificate_id)
        if certificate.status != CertificateStatus.COMPLETED:
            raise ValidationError(
                f"Cannot {verb} certificate in {certificate.status.value} status",
                {"certificateId": certificate_id, "currentStatus": certificate.status.value},
            )
        if not certificate.certificate_number:
            raise ValidationError(
                f"Cannot {verb} certificate without a provider certificate number",
                {"certificateId": certificate_id},
            )

        await self._provider.update_attestation_status(
            UpdateStatusRequest(
                code_demandeur=self._requester_code,
                numero_attestation=(certificate.certificate_number,),
                code_operation=operation,
            )
        )

        extra = {f"{target.value}By": request.requested_by, f"{target.value}At": self._clock().isoformat()}
        if request.reason:
            extra[f"{verb}Reason"] = request.reason
        certificate.merge_metadata(extra)

        tx = await self._store.begin()
        try:
            previous = await self._transition(certificate, target, tx)
            await self._audit.record(
                AuditRecord.status_change(
                    action,
                    request.requested_by,
                    certificate.id,
                    previous.value,
                    target.value,
                    metadata={"reason": request.reason} if request.reason else None,
                ),
                tx,
            )
            await tx.commit()
        except BaseException:
            await tx.rollback()
            raise

        self._counters[f"certificates_{target.value}"] += 1
        logger.info(f"certificate_{target.value}", certificate_id=certificate_id, user_id=request.requested_by)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download_certificate(self, certificate_id: str) -> DownloadInfo:
        """Download link of a completed certificate, cached for ``download_ttl``.

        Raises:
            NotFoundError: Unknown certificate.
            ValidationError: Certificate is not completed.
            ExternalApiError: Provider failure or no links available.
        """
        certificate = await self.get_certificate_by_id(certificate_id)
        if certificate.status != CertificateStatus.COMPLETED:
            raise ValidationError(
                f"Certificate must be completed to download, current status: {certificate.status.value}",
                {"certificateId": certificate_id, "currentStatus": certificate.status.value},
            )

        now = self._clock()
        if certificate.has_cached_download(now):
            self._count_download("hit")
            return DownloadInfo(
                url=certificate.download_url,
                type=certificate.metadata.get("downloadType", DownloadType.PDF.value),
                expires_at=certificate.download_expires_at,
                cached=True,
            )

        self._count_download("miss")
        if not certificate.provider_request_number:
            raise ExternalApiError(
                "provider", "Certificate has no provider request number", "DOWNLOAD_UNAVAILABLE"
            )

        with trace_span("certificate.download", {"certificate.id": certificate_id}):
            links = await self._provider.download_attestation(
                certificate.company_code, certificate.provider_request_number
            )
        if not links:
            raise ExternalApiError(
                "provider", "No download links available for certificate", "DOWNLOAD_UNAVAILABLE"
            )

        link = next((candidate for candidate in links if candidate.type == DownloadType.PDF), links[0])
        expires_at = now + self._download_ttl
        certificate.cache_download(link.url, expires_at)
        certificate.merge_metadata({"downloadType": link.type.value})
        await self._store.save(certificate)

        return DownloadInfo(url=link.url, type=link.type.value, expires_at=expires_at, cached=False)

    def _count_download(self, result: str) -> None:
        self._counters[f"download_cache_{result}s"] += 1
        if self._metrics is not None:
            self._metrics.download_cache_total.labels(result=result).inc()

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def process_bulk_certificates(self, request: BulkCertificateRequest) -> BulkCertificateResult:
        """Create certificates one after another, isolating item failures.

        Each item runs in its own transaction, so a failure never rolls back
        its siblings.

        Raises:
            ValidationError: Only for a malformed batch (no id, no items).
        """
        request.validate()
        start = time.perf_counter()
        results: list[BulkItemResult] = []

        for item in request.requests:
            try:
                created = await self.create_certificate_idempotent(item)
            except AttestationError as e:
                results.append(BulkItemResult(request=item, error=e.message))
            except Exception as e:
                logger.exception("bulk_item_error", batch_id=request.batch_id)
                results.append(BulkItemResult(request=item, error=str(e)))
            else:
                results.append(BulkItemResult(request=item, result=created))

        successful = sum(1 for r in results if r.succeeded)
        failed = len(results) - successful
        elapsed_ms = round((time.perf_counter() - start) * 1000, 3)

        self._counters["bulk_batches"] += 1
        if self._metrics is not None:
            self._metrics.bulk_batch_size.observe(len(results))
            self._metrics.bulk_items_total.labels(outcome="successful").inc(successful)
            self._metrics.bulk_items_total.labels(outcome="failed").inc(failed)
        logger.info(
            "bulk_batch_processed",
            batch_id=request.batch_id,
            total=len(results),
            successful=successful,
            failed=failed,
        )
        return BulkCertificateResult(
            batch_id=request.batch_id,
            total_requests=len(results),
            successful=successful,
            failed=failed,
            results=results,
            processing_time_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch_registry_data(self, policy_number: str) -> tuple[PolicyData, InsuredData]:
        policy = await self._registry.get_policy_by_number(policy_number)
        if policy is None:
            raise NotFoundError("Policy", policy_number)
        insured = await self._registry.get_insured_by_id(policy.insured_id)
        if insured is None:
            raise NotFoundError("Insured", policy.insured_id)
        return policy, insured

    def get_stats(self) -> dict[str, Any]:
        """Orchestrator counters plus background task state."""
        return {**self._counters, "background": self._background.stats()}

    async def shutdown(self, timeout: float | None = None) -> None:
        await self._background.drain(timeout)
