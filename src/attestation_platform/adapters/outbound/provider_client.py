"""HTTP client for the attestation provider.

All operations are JSON POSTs authenticated with a static bearer token.
Transport failures trip the gateway's circuit breaker; business rejections
(``statut != 0``) do not, they are raised after the guarded exchange.
"""

from __future__ import annotations

import time
from typing import Any

import httpx

from attestation_platform.adapters.outbound.circuit_breaker import CircuitBreaker
from attestation_platform.domain.entities.provider import (
    DownloadLink,
    DownloadType,
    EditionResponse,
    ProviderStatusCode,
    StatusCheckRequest,
    StatusCheckResponse,
    UpdateStatusRequest,
    UpdateStatusResponse,
)
from attestation_platform.domain.exceptions import ExternalApiError, ValidationError
from attestation_platform.domain.services.edition_mapper import validate_edition_request
from attestation_platform.domain.services.status_mapping import describe_provider_status
from attestation_platform.infrastructure.config import ProviderConfig
from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry

SERVICE = "provider"

ENDPOINT_EDITION = "/edition/1.0/Apiediton"
ENDPOINT_VERIFICATION = "/Verification-statutdemande-edition/1.0/Api-Verification-statut-demande-edition"
ENDPOINT_UPDATE_STATUS = "/actualisation-dustatut-dattestation/1.0/apiactualisation-statut-attestation"
ENDPOINT_DOWNLOAD = "/recuperationAttestation/"

# Suffix appended to ``lien_telechargement`` for each artifact variant.
_DOWNLOAD_VARIANTS = (
    (DownloadType.PDF, "&type=1"),
    (DownloadType.IMAGE, "&type=2"),
    (DownloadType.QRCODE, "&type=3"),
)

logger = get_logger(__name__)


class HttpProviderGateway:
    """Provider gateway over httpx.

    Args:
        base_url: Provider API root.
        token: Bearer token.
        requester_code: ``code_demandeur`` sent on download requests.
        breaker: Circuit breaker owned by this gateway.
        timeout_s: HTTP timeout.
        metrics: Metrics registry for call counters and latency.
        client: Preconfigured client (tests).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        requester_code: str = "SYSTEM",
        breaker: CircuitBreaker | None = None,
        timeout_s: float = 30.0,
        metrics: MetricsRegistry | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.requester_code = requester_code
        self._breaker = breaker or CircuitBreaker(SERVICE)
        self._metrics = metrics
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "Authorization": f"Bearer {token}",
            },
            timeout=timeout_s,
        )

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        breaker: CircuitBreaker,
        metrics: MetricsRegistry | None = None,
    ) -> HttpProviderGateway:
        return cls(
            config.base_url,
            config.token,
            requester_code=config.requester_code,
            breaker=breaker,
            timeout_s=config.timeout_s,
            metrics=metrics,
        )

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_attestation(self, request: dict[str, Any]) -> EditionResponse:
        """Submit an edition request.

        Raises:
            ValidationError: The payload fails the provider's field rules.
            ExternalApiError: Transport failure, open circuit or timeout.
        """
        errors = validate_edition_request(request)
        if errors:
            raise ValidationError("Invalid attestation request", {"errors": errors})

        payload = await self._post("edition", ENDPOINT_EDITION, request)
        response = EditionResponse.from_payload(payload)
        logger.info(
            "provider_edition_response",
            statut=response.statut,
            request_number=response.numero_demande,
        )
        return response

    async def check_attestation_status(self, request: StatusCheckRequest) -> StatusCheckResponse:
        payload = await self._post("verification", ENDPOINT_VERIFICATION, request.to_payload())
        return StatusCheckResponse.from_payload(payload)

    async def update_attestation_status(self, request: UpdateStatusRequest) -> UpdateStatusResponse:
        """Cancel or suspend attestations.

        Raises:
            ExternalApiError: Also when the provider refuses the operation.
        """
        payload = await self._post("update_status", ENDPOINT_UPDATE_STATUS, request.to_payload())
        response = UpdateStatusResponse.from_payload(payload)
        if response.statut != ProviderStatusCode.SUCCESS:
            raise ExternalApiError(
                SERVICE,
                f"Status update failed: {describe_provider_status(response.statut)}",
                "PROVIDER_UPDATE_FAILED",
                {"statut": response.statut, "operation": request.code_operation.value},
            )
        return response

    async def download_attestation(self, company_code: str, request_number: str) -> list[DownloadLink]:
        """Fetch download links (PDF, image, QR code) for a request.

        Raises:
            ExternalApiError: Also when the provider reports a failure.
        """
        payload = await self._post(
            "download",
            ENDPOINT_DOWNLOAD,
            {
                "code_demandeur": self.requester_code,
                "code_compagnie": company_code,
                "numero_demande": request_number,
            },
        )
        statut = int(payload.get("statut", ProviderStatusCode.SYSTEM_ERROR))
        if statut != ProviderStatusCode.SUCCESS:
            raise ExternalApiError(
                SERVICE,
                f"Download failed: {describe_provider_status(statut)}",
                "PROVIDER_DOWNLOAD_FAILED",
                {"statut": statut},
            )

        links = []
        for info in payload.get("infos") or []:
            base = info.get("lien_telechargement")
            if base:
                links.extend(DownloadLink(url=f"{base}{suffix}", type=kind) for kind, suffix in _DOWNLOAD_VARIANTS)
        return links

    async def check_connection(self) -> bool:
        probe = StatusCheckRequest(code_demandeur="HEALTH_CHECK", reference_demande="HC001")
        try:
            await self._client.post(ENDPOINT_VERIFICATION, json=probe.to_payload())
        except httpx.HTTPError as e:
            logger.warning("provider_health_check_failed", error=str(e))
            return False
        return True

    async def _post(self, operation: str, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        outcome = "error"
        try:
            body = await self._breaker.call(self._send, operation, endpoint, payload)
            outcome = "ok"
            return body
        finally:
            if self._metrics is not None:
                self._metrics.provider_calls_total.labels(operation=operation, outcome=outcome).inc()
                self._metrics.provider_latency_seconds.labels(operation=operation).observe(
                    time.perf_counter() - start
                )

    async def _send(self, operation: str, endpoint: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(endpoint, json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error("provider_http_error", operation=operation, status_code=e.response.status_code)
            raise ExternalApiError(
                SERVICE,
                f"Provider returned HTTP {e.response.status_code}",
                details={"statusCode": e.response.status_code, "operation": operation},
            ) from e
        except httpx.HTTPError as e:
            logger.error("provider_request_failed", operation=operation, error=str(e))
            raise ExternalApiError(SERVICE, f"Provider request failed: {e}") from e
        except ValueError as e:
            raise ExternalApiError(SERVICE, f"Provider returned invalid JSON: {e}") from e
