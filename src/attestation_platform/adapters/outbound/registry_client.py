"""HTTP client for the policy/insured-party registry.

Authenticates with an API key (``POST /auth/login``) and caches the bearer
token until it expires. Every request goes through the gateway's own circuit
breaker. A 404 or a ``success: false`` envelope means "not found" and
returns None.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx

from attestation_platform.adapters.outbound.circuit_breaker import CircuitBreaker
from attestation_platform.domain.entities.registry import InsuredData, PolicyData
from attestation_platform.domain.exceptions import ExternalApiError
from attestation_platform.infrastructure.config import RegistryConfig
from attestation_platform.infrastructure.logging import get_logger

SERVICE = "registry"

logger = get_logger(__name__)


class HttpRegistryGateway:
    """Registry gateway over httpx.

    Args:
        base_url: Registry API root.
        api_key: Key exchanged for a bearer token.
        breaker: Circuit breaker owned by this gateway.
        timeout_s: HTTP timeout (the breaker applies its own, usually shorter).
        client: Preconfigured client (tests inject one with a MockTransport).
        clock: Monotonic clock used for token expiry.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        breaker: CircuitBreaker | None = None,
        timeout_s: float = 30.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_key = api_key
        self._breaker = breaker or CircuitBreaker(SERVICE)
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout_s,
        )
        self._clock = clock
        self._token: str | None = None
        self._token_expires_at = 0.0

    @classmethod
    def from_config(cls, config: RegistryConfig, breaker: CircuitBreaker) -> HttpRegistryGateway:
        return cls(config.base_url, config.api_key, breaker=breaker, timeout_s=config.timeout_s)

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def authenticate(self) -> str:
        """Exchange the API key for a bearer token."""
        response = await self._breaker.call(
            self._send,
            "POST",
            "/auth/login",
            json={"apiKey": self._api_key, "timestamp": datetime.now(timezone.utc).isoformat()},
        )
        if response.status_code != 200:
            raise ExternalApiError(
                SERVICE,
                "Registry authentication failed",
                "REGISTRY_AUTH_FAILED",
                {"statusCode": response.status_code},
            )
        body = response.json()
        self._token = body["token"]
        self._token_expires_at = self._clock() + float(body.get("expiresIn", 3600))
        logger.info("registry_authenticated", expires_in=body.get("expiresIn"))
        return self._token

    async def refresh_token(self) -> str:
        self._token = None
        return await self.authenticate()

    async def _ensure_authenticated(self) -> None:
        if not self._token or self._clock() >= self._token_expires_at:
            await self.authenticate()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_policy_by_number(self, policy_number: str) -> PolicyData | None:
        data = await self._get_data(f"/policies/{policy_number}")
        if data is None:
            logger.info("registry_policy_not_found", policy_number=policy_number)
            return None
        return PolicyData.from_payload(data)

    async def get_insured_by_id(self, insured_id: str) -> InsuredData | None:
        data = await self._get_data(f"/insured/{insured_id}")
        if data is None:
            logger.info("registry_insured_not_found", insured_id=insured_id)
            return None
        return InsuredData.from_payload(data)

    async def search_policies(self, **params: Any) -> tuple[list[PolicyData], dict[str, Any]]:
        """Search policies; returns the page and the registry's pagination block."""
        query = {k: str(v) for k, v in params.items() if v is not None}
        body = await self._get_body("/policies", params=query)
        if body is None:
            raise ExternalApiError(SERVICE, "Failed to search policies")
        policies = [PolicyData.from_payload(p) for p in body.get("data") or []]
        return policies, dict(body.get("pagination") or {})

    async def check_connection(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.HTTPError as e:
            logger.warning("registry_health_check_failed", error=str(e))
            return False
        return response.status_code < 500

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _get_data(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any] | None:
        body = await self._get_body(path, params)
        return body.get("data") if body is not None else None

    async def _get_body(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any] | None:
        """Response envelope, or None for 404 and ``success: false``."""
        await self._ensure_authenticated()
        response = await self._breaker.call(self._send, "GET", path, params=params)
        if response.status_code == 401:
            await self.refresh_token()
            response = await self._breaker.call(self._send, "GET", path, params=params)
        if response.status_code == 401:
            raise ExternalApiError(SERVICE, "Registry rejected the token", "REGISTRY_AUTH_FAILED")
        if response.status_code == 404:
            return None

        body = response.json()
        if not body.get("success", False):
            return None
        return body

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """One HTTP exchange; 401/404 are returned, other errors raised."""
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("registry_request_failed", method=method, path=path, error=str(e))
            raise ExternalApiError(SERVICE, f"Registry request failed: {e}") from e

        if response.status_code in (401, 404):
            return response
        if response.is_error:
            logger.error("registry_http_error", method=method, path=path, status_code=response.status_code)
            raise ExternalApiError(
                SERVICE,
                f"Registry returned HTTP {response.status_code}",
                details={"statusCode": response.status_code, "path": path},
            )
        return response
