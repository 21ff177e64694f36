"""Provider HTTP gateway tests (httpx.MockTransport)."""

import json
from datetime import date

import httpx
import pytest

from attestation_platform.adapters.outbound.circuit_breaker import CircuitBreaker, CircuitState
from attestation_platform.adapters.outbound.provider_client import (
    ENDPOINT_DOWNLOAD,
    ENDPOINT_EDITION,
    ENDPOINT_UPDATE_STATUS,
    ENDPOINT_VERIFICATION,
    HttpProviderGateway,
)
from attestation_platform.domain.entities.provider import (
    DownloadType,
    OperationCode,
    StatusCheckRequest,
    UpdateStatusRequest,
)
from attestation_platform.domain.exceptions import ExternalApiError, ValidationError
from attestation_platform.domain.services.edition_mapper import build_edition_request


class FakeProvider:
    """Answers each endpoint with a scripted JSON body."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses = {
            ENDPOINT_EDITION: (200, {
                "statut": 0,
                "numero_demande": "DEM-1",
                "infos": [{"numero_attestation": "ATT-1", "lien_telechargement": "https://p/att?id=1"}],
            }),
            ENDPOINT_VERIFICATION: (200, {"statut": 121, "reference_demande": "DEM-1"}),
            ENDPOINT_UPDATE_STATUS: (200, {"statut": 0, "liste_numero_attestation": ["ATT-1"]}),
            ENDPOINT_DOWNLOAD: (200, {
                "statut": 0,
                "infos": [{"lien_telechargement": "https://p/att?id=1"}],
            }),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body = self.responses.get(request.url.path, (404, {}))
        if isinstance(body, bytes):
            return httpx.Response(status, content=body)
        return httpx.Response(status, json=body)

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def edition_payload(policy, insured) -> dict:
    return build_edition_request(policy, insured, "COMP01", today=date(2024, 1, 2))


def make_gateway(handler, breaker=None, metrics=None) -> HttpProviderGateway:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://provider",
        headers={"Authorization": "Bearer tok"},
    )
    return HttpProviderGateway(
        "http://provider", "tok", requester_code="REQ01", breaker=breaker, metrics=metrics, client=client,
    )


class TestEdition:

    async def test_create_attestation(self, fake_provider, edition_payload):
        gateway = make_gateway(fake_provider)

        response = await gateway.create_attestation(edition_payload)

        assert response.success
        assert response.numero_demande == "DEM-1"
        assert response.certificate_number == "ATT-1"
        assert fake_provider.requests[0].headers["Authorization"] == "Bearer tok"
        assert fake_provider.body()["numero_police"] == "POL-2024-0001"
        await gateway.aclose()

    async def test_invalid_payload_is_rejected_before_sending(self, fake_provider, edition_payload):
        """Field rule violations never reach the provider."""
        gateway = make_gateway(fake_provider)
        edition_payload["adresse_mail_assure"] = "not-an-email"
        edition_payload["genre_vehicule"] = "GV99"

        with pytest.raises(ValidationError) as exc_info:
            await gateway.create_attestation(edition_payload)

        errors = exc_info.value.details["errors"]
        assert "adresse_mail_assure must be a valid email address" in errors
        assert "genre_vehicule value 'GV99' is not valid" in errors
        assert fake_provider.requests == []

    async def test_business_rejection_is_returned(self, fake_provider, edition_payload):
        fake_provider.responses[ENDPOINT_EDITION] = (200, {"statut": -37})
        gateway = make_gateway(fake_provider)

        response = await gateway.create_attestation(edition_payload)

        assert not response.success
        assert response.statut == -37


class TestStatusAndUpdate:

    async def test_check_status(self, fake_provider):
        gateway = make_gateway(fake_provider)

        response = await gateway.check_attestation_status(StatusCheckRequest("REQ01", "DEM-1"))

        assert response.statut == 121
        assert fake_provider.body() == {"code_demandeur": "REQ01", "reference_demande": "DEM-1"}

    async def test_update_status(self, fake_provider):
        gateway = make_gateway(fake_provider)

        response = await gateway.update_attestation_status(
            UpdateStatusRequest("REQ01", ("ATT-1",), OperationCode.CANCEL)
        )

        assert response.liste_numero_attestation == ["ATT-1"]
        assert fake_provider.body()["code_operation"] == "109"

    async def test_refused_update_does_not_trip_breaker(self, fake_provider, metrics):
        """A refusal is a business answer, not a transport failure."""
        fake_provider.responses[ENDPOINT_UPDATE_STATUS] = (200, {"statut": -14})
        breaker = CircuitBreaker("provider", volume_threshold=2, metrics=metrics)
        gateway = make_gateway(fake_provider, breaker=breaker)
        request = UpdateStatusRequest("REQ01", ("ATT-1",), OperationCode.SUSPEND)

        for _ in range(3):
            with pytest.raises(ExternalApiError) as exc_info:
                await gateway.update_attestation_status(request)
            assert exc_info.value.code == "PROVIDER_UPDATE_FAILED"

        assert exc_info.value.details["operation"] == "120"
        assert breaker.state == CircuitState.CLOSED


class TestDownload:

    async def test_expands_variants(self, fake_provider):
        gateway = make_gateway(fake_provider)

        links = await gateway.download_attestation("COMP01", "DEM-1")

        assert [(link.type, link.url) for link in links] == [
            (DownloadType.PDF, "https://p/att?id=1&type=1"),
            (DownloadType.IMAGE, "https://p/att?id=1&type=2"),
            (DownloadType.QRCODE, "https://p/att?id=1&type=3"),
        ]
        assert fake_provider.body() == {
            "code_demandeur": "REQ01",
            "code_compagnie": "COMP01",
            "numero_demande": "DEM-1",
        }

    async def test_no_infos_gives_no_links(self, fake_provider):
        fake_provider.responses[ENDPOINT_DOWNLOAD] = (200, {"statut": 0, "infos": []})
        gateway = make_gateway(fake_provider)
        assert await gateway.download_attestation("COMP01", "DEM-1") == []

    async def test_download_failure(self, fake_provider):
        fake_provider.responses[ENDPOINT_DOWNLOAD] = (200, {"statut": -17})
        gateway = make_gateway(fake_provider)

        with pytest.raises(ExternalApiError) as exc_info:
            await gateway.download_attestation("COMP01", "DEM-1")
        assert exc_info.value.code == "PROVIDER_DOWNLOAD_FAILED"


class TestTransportFailures:

    async def test_http_error_status(self, fake_provider):
        fake_provider.responses[ENDPOINT_VERIFICATION] = (500, {})
        gateway = make_gateway(fake_provider)

        with pytest.raises(ExternalApiError) as exc_info:
            await gateway.check_attestation_status(StatusCheckRequest("REQ01", "DEM-1"))

        assert exc_info.value.status_code == 502
        assert exc_info.value.details["statusCode"] == 500

    async def test_invalid_json(self, fake_provider):
        fake_provider.responses[ENDPOINT_VERIFICATION] = (200, b"<html>")
        gateway = make_gateway(fake_provider)

        with pytest.raises(ExternalApiError, match="invalid JSON"):
            await gateway.check_attestation_status(StatusCheckRequest("REQ01", "DEM-1"))

    async def test_server_errors_trip_breaker(self, fake_provider, metrics):
        fake_provider.responses[ENDPOINT_VERIFICATION] = (503, {})
        breaker = CircuitBreaker("provider", volume_threshold=2, metrics=metrics)
        gateway = make_gateway(fake_provider, breaker=breaker)

        for _ in range(2):
            with pytest.raises(ExternalApiError):
                await gateway.check_attestation_status(StatusCheckRequest("REQ01", "DEM-1"))

        assert breaker.state == CircuitState.OPEN

    async def test_call_metrics(self, fake_provider, metrics, collector_registry):
        fake_provider.responses[ENDPOINT_VERIFICATION] = (500, {})
        gateway = make_gateway(fake_provider, metrics=metrics)

        await gateway.download_attestation("COMP01", "DEM-1")
        with pytest.raises(ExternalApiError):
            await gateway.check_attestation_status(StatusCheckRequest("REQ01", "DEM-1"))

        sample = collector_registry.get_sample_value
        assert sample("attestation_provider_calls_total", {"operation": "download", "outcome": "ok"}) == 1.0
        assert sample("attestation_provider_calls_total", {"operation": "verification", "outcome": "error"}) == 1.0
        assert sample("attestation_provider_latency_seconds_count", {"operation": "download"}) == 1.0

    async def test_check_connection(self, fake_provider):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        assert await make_gateway(fake_provider).check_connection() is True
        assert await make_gateway(refuse).check_connection() is False
