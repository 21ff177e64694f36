"""Service entry point.

Builds the container from configuration and serves the REST API:

    attestation-platform            # console script
    uvicorn attestation_platform.main:build_app --factory
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from attestation_platform import __version__
from attestation_platform.adapters.inbound.rest_api import create_app
from attestation_platform.application.orchestrator import CertificateOrchestrator
from attestation_platform.infrastructure.config import Config, get_config
from attestation_platform.infrastructure.container import build_container, start_platform, stop_platform
from attestation_platform.infrastructure.logging import setup_logging
from attestation_platform.infrastructure.metrics import setup_metrics
from attestation_platform.infrastructure.tracing import setup_tracing


def build_app(config: Config | None = None) -> FastAPI:
    """Configure logging, tracing and metrics, then wire the application."""
    config = config or get_config()
    obs = config.observability
    setup_logging(obs.log_level, obs.log_format)
    setup_tracing(obs.otel_service_name, obs.otel_endpoint, __version__)
    metrics = setup_metrics(config.server.metrics_port)

    container = build_container(config, metrics=metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await start_platform(container)
        try:
            yield
        finally:
            await stop_platform(container)

    return create_app(
        container.resolve(CertificateOrchestrator),
        idempotency_header=config.idempotency.header_name,
        lifespan=lifespan,
    )


def run() -> None:
    config = get_config()
    uvicorn.run(build_app(config), host=config.server.host, port=config.server.http_port)


if __name__ == "__main__":
    run()
