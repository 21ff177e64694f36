"""FastAPI REST adapter for the attestation platform.

Provides HTTP endpoints for certificate creation, status checks, cancel /
suspend batches and downloads.

Usage:
    from attestation_platform.adapters.inbound.rest_api import create_app

    container = build_container(get_config())
    app = create_app(container.resolve(CertificateOrchestrator))
    # Run with: uvicorn module:app --host 0.0.0.0 --port 8080

Platform errors are rendered as RFC 7807 problem details with the status code
carried by the exception class.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from attestation_platform import __version__
from attestation_platform.domain.entities.certificate import CertificateStatus
from attestation_platform.domain.exceptions import AttestationError
from attestation_platform.infrastructure.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
)
from attestation_platform.ports.inbound import (
    BulkCertificateRequest,
    CertificateCreationRequest,
    CertificateOperationRequest,
    CertificateSearchCriteria,
    CertificateServicePort,
    certificate_to_dict,
)

logger = get_logger(__name__)

PROBLEM_JSON = "application/problem+json"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateCertificateRequestModel(_CamelModel):
    """Request to issue a certificate."""

    policy_number: str = Field(..., alias="policyNumber", description="Registry policy number")
    registration_number: str = Field(..., alias="registrationNumber", description="Vehicle registration")
    company_code: str = Field(..., alias="companyCode", description="Insurer code")
    requested_by: str = Field(..., alias="requestedBy", description="Requesting user")
    agent_code: Optional[str] = Field(default=None, alias="agentCode")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    metadata: Optional[dict[str, Any]] = None

    def to_request(self, idempotency_key: Optional[str] = None) -> CertificateCreationRequest:
        return CertificateCreationRequest(
            policy_number=self.policy_number,
            registration_number=self.registration_number,
            company_code=self.company_code,
            requested_by=self.requested_by,
            agent_code=self.agent_code,
            idempotency_key=idempotency_key or self.idempotency_key,
            metadata=self.metadata,
        )


class BulkRequestModel(_CamelModel):
    """Batch of creation requests processed sequentially."""

    batch_id: str = Field(..., alias="batchId")
    requests: list[CreateCertificateRequestModel] = Field(..., min_length=1)


class OperationRequestModel(_CamelModel):
    """Cancel or suspend request."""

    certificate_ids: list[str] = Field(..., alias="certificateIds", min_length=1)
    requested_by: str = Field(..., alias="requestedBy")
    reason: Optional[str] = None

    def to_request(self) -> CertificateOperationRequest:
        return CertificateOperationRequest(
            certificate_ids=list(self.certificate_ids),
            requested_by=self.requested_by,
            reason=self.reason,
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str = __version__


def create_app(
    orchestrator: CertificateServicePort,
    idempotency_header: str = "Idempotency-Key",
    lifespan: Any = None,
) -> FastAPI:
    """Create FastAPI application with attestation endpoints.

    Args:
        orchestrator: CertificateOrchestrator (or any CertificateServicePort).
        idempotency_header: Request header carrying the idempotency key.
        lifespan: Optional lifespan context manager (startup/shutdown hooks).

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Attestation Platform API",
        description="Digital insurance certificate issuance with provider reconciliation",
        version=__version__,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        bind_request_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(AttestationError)
    async def attestation_error_handler(request: Request, exc: AttestationError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("request_failed", code=exc.code, error=exc.message)
        return JSONResponse(
            exc.to_problem_details(request.url.path),
            status_code=exc.status_code,
            media_type=PROBLEM_JSON,
        )

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        """Check platform health status."""
        return HealthResponse(status="healthy")

    @app.get("/stats", response_model=dict, tags=["System"])
    async def get_stats():
        """Orchestrator counters."""
        stats = getattr(orchestrator, "get_stats", None)
        return stats() if stats else {}

    @app.post(
        "/certificates",
        response_model=dict,
        status_code=status.HTTP_201_CREATED,
        tags=["Certificates"],
    )
    async def create_certificate(body: CreateCertificateRequestModel, request: Request):
        """Create a certificate; submission to the provider continues in the background."""
        creation = body.to_request(request.headers.get(idempotency_header))
        result = await orchestrator.create_certificate_idempotent(creation)
        return result.to_dict()

    @app.post("/certificates/bulk", response_model=dict, tags=["Certificates"])
    async def create_bulk(body: BulkRequestModel):
        """Create many certificates; failures are reported per item."""
        result = await orchestrator.process_bulk_certificates(
            BulkCertificateRequest(batch_id=body.batch_id, requests=[r.to_request() for r in body.requests])
        )
        return result.to_dict()

    @app.get("/certificates", response_model=dict, tags=["Certificates"])
    async def search_certificates(
        policy_number: Optional[str] = Query(default=None, alias="policyNumber"),
        registration_number: Optional[str] = Query(default=None, alias="registrationNumber"),
        company_code: Optional[str] = Query(default=None, alias="companyCode"),
        certificate_status: Optional[CertificateStatus] = Query(default=None, alias="status"),
        created_by: Optional[str] = Query(default=None, alias="createdBy"),
        created_from: Optional[datetime] = Query(default=None, alias="createdFrom"),
        created_to: Optional[datetime] = Query(default=None, alias="createdTo"),
        page: int = Query(default=1),
        page_size: int = Query(default=20, alias="pageSize"),
    ):
        """Search certificates, newest first."""
        criteria = CertificateSearchCriteria(
            policy_number=policy_number,
            registration_number=registration_number,
            company_code=company_code,
            status=certificate_status,
            created_by=created_by,
            created_from=created_from,
            created_to=created_to,
        )
        result = await orchestrator.search_certificates(criteria, page=page, page_size=page_size)
        return result.to_dict(certificate_to_dict)

    @app.get("/certificates/{certificate_id}", response_model=dict, tags=["Certificates"])
    async def get_certificate(certificate_id: str):
        certificate = await orchestrator.get_certificate_by_id(certificate_id)
        return certificate_to_dict(certificate)

    @app.get("/certificates/reference/{reference_number}/status", response_model=dict, tags=["Certificates"])
    async def check_status(reference_number: str):
        """Certificate status, reconciled with the provider when reachable."""
        result = await orchestrator.check_certificate_status(reference_number)
        return result.to_dict()

    @app.post("/certificates/cancel", response_model=dict, tags=["Operations"])
    async def cancel_certificates(body: OperationRequestModel):
        result = await orchestrator.cancel_certificates(body.to_request())
        return result.to_dict()

    @app.post("/certificates/suspend", response_model=dict, tags=["Operations"])
    async def suspend_certificates(body: OperationRequestModel):
        result = await orchestrator.suspend_certificates(body.to_request())
        return result.to_dict()

    @app.get("/certificates/{certificate_id}/download", response_model=dict, tags=["Certificates"])
    async def download_certificate(certificate_id: str):
        """Download link of a completed certificate."""
        info = await orchestrator.download_certificate(certificate_id)
        return info.to_dict()

    return app
