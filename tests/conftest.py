"""Pytest configuration and shared fixtures for attestation platform tests."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import pytest
from prometheus_client import CollectorRegistry

from attestation_platform.adapters.outbound.memory_storage import InMemoryDatabase
from attestation_platform.application.background import BackgroundTaskRunner
from attestation_platform.application.idempotency import IdempotencyService
from attestation_platform.application.orchestrator import CertificateOrchestrator
from attestation_platform.domain.entities.provider import (
    AttestationInfo,
    DownloadLink,
    DownloadType,
    EditionResponse,
    StatusCheckRequest,
    StatusCheckResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from attestation_platform.domain.entities.registry import InsuredData, PolicyData
from attestation_platform.infrastructure.config import Config
from attestation_platform.infrastructure.metrics import MetricsRegistry
from attestation_platform.ports.inbound import CertificateCreationRequest

POLICY_NUMBER = "POL-2024-0001"
REGISTRATION = "AB-123-CD"
COMPANY = "COMP01"


class FakeRegistryGateway:
    """In-process registry with call counting and switchable failures."""

    def __init__(self) -> None:
        self.policies: dict[str, PolicyData] = {}
        self.insured: dict[str, InsuredData] = {}
        self.error: Optional[Exception] = None
        self.calls: list[tuple[str, str]] = []

    def add(self, policy: PolicyData, insured: InsuredData) -> None:
        self.policies[policy.policy_number] = policy
        self.insured[insured.id] = insured

    async def get_policy_by_number(self, policy_number: str) -> Optional[PolicyData]:
        self.calls.append(("policy", policy_number))
        if self.error:
            raise self.error
        return self.policies.get(policy_number)

    async def get_insured_by_id(self, insured_id: str) -> Optional[InsuredData]:
        self.calls.append(("insured", insured_id))
        if self.error:
            raise self.error
        return self.insured.get(insured_id)


class FakeProviderGateway:
    """Scriptable provider: responses and errors are set per operation."""

    def __init__(self) -> None:
        self.edition_response = EditionResponse(
            statut=0,
            numero_demande="DEM-0001",
            infos=[AttestationInfo(numero_attestation="ATT-0001", lien_telechargement="https://provider/att/1")],
        )
        self.edition_error: Optional[Exception] = None
        self.status_response = StatusCheckResponse(statut=0, reference_demande="DEM-0001")
        self.status_error: Optional[Exception] = None
        self.update_error: Optional[Exception] = None
        self.links = [
            DownloadLink("https://provider/att/1&type=1", DownloadType.PDF),
            DownloadLink("https://provider/att/1&type=2", DownloadType.IMAGE),
            DownloadLink("https://provider/att/1&type=3", DownloadType.QRCODE),
        ]
        self.download_error: Optional[Exception] = None
        self.edition_requests: list[dict[str, Any]] = []
        self.status_requests: list[StatusCheckRequest] = []
        self.update_requests: list[UpdateStatusRequest] = []
        self.download_requests: list[tuple[str, str]] = []

    async def create_attestation(self, request: dict[str, Any]) -> EditionResponse:
        self.edition_requests.append(request)
        if self.edition_error:
            raise self.edition_error
        return self.edition_response

    async def check_attestation_status(self, request: StatusCheckRequest) -> StatusCheckResponse:
        self.status_requests.append(request)
        if self.status_error:
            raise self.status_error
        return self.status_response

    async def update_attestation_status(self, request: UpdateStatusRequest) -> UpdateStatusResponse:
        self.update_requests.append(request)
        if self.update_error:
            raise self.update_error
        return UpdateStatusResponse(statut=0, liste_numero_attestation=list(request.numero_attestation))

    async def download_attestation(self, company_code: str, request_number: str) -> list[DownloadLink]:
        self.download_requests.append((company_code, request_number))
        if self.download_error:
            raise self.download_error
        return list(self.links)


@pytest.fixture
def test_config() -> Config:
    """In-memory storage configuration."""
    return Config(database={"url": "memory://"})


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(collector_registry: CollectorRegistry) -> MetricsRegistry:
    """Metrics bound to a private CollectorRegistry."""
    return MetricsRegistry(collector_registry)


@pytest.fixture
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def policy() -> PolicyData:
    return PolicyData(
        id="policy-1",
        policy_number=POLICY_NUMBER,
        insured_id="insured-1",
        subscription_date=date(2024, 1, 1),
        effective_date=date(2024, 1, 1),
        expiration_date=date(2024, 12, 31),
        vehicle_registration=REGISTRATION,
        vehicle_type="passenger_car",
        vehicle_usage="personal",
        vehicle_make="Toyota",
        vehicle_model="Corolla",
        vehicle_year=2019,
        guarantees={"rc": 10000000, "vol": 150000},
        premium_amount=100000,
    )


@pytest.fixture
def insured() -> InsuredData:
    return InsuredData(
        id="insured-1",
        first_name="Awa",
        last_name="Kone",
        email="awa.kone@example.com",
        phone="0700000000",
        profession="employee",
    )


@pytest.fixture
def registry(policy: PolicyData, insured: InsuredData) -> FakeRegistryGateway:
    gateway = FakeRegistryGateway()
    gateway.add(policy, insured)
    return gateway


@pytest.fixture
def provider() -> FakeProviderGateway:
    return FakeProviderGateway()


@pytest.fixture
def idempotency(database: InMemoryDatabase, metrics: MetricsRegistry) -> IdempotencyService:
    return IdempotencyService(database.idempotency, metrics=metrics)


@pytest.fixture
def orchestrator(
    database: InMemoryDatabase,
    registry: FakeRegistryGateway,
    provider: FakeProviderGateway,
    idempotency: IdempotencyService,
    metrics: MetricsRegistry,
) -> CertificateOrchestrator:
    return CertificateOrchestrator(
        store=database.certificates,
        audit=database.audit,
        registry=registry,
        provider=provider,
        idempotency=idempotency,
        background=BackgroundTaskRunner(metrics),
        metrics=metrics,
        requester_code="REQ01",
    )


@pytest.fixture
def creation_request():
    """Factory for creation requests on the sample policy."""

    def make(**overrides: Any) -> CertificateCreationRequest:
        fields = {
            "policy_number": POLICY_NUMBER,
            "registration_number": REGISTRATION,
            "company_code": COMPANY,
            "requested_by": "user-1",
        }
        fields.update(overrides)
        return CertificateCreationRequest(**fields)

    return make


# Pytest markers
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
