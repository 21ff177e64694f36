"""Dependency injection container."""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Callable, TypeVar, Union

from attestation_platform.adapters.outbound.circuit_breaker import CircuitBreaker
from attestation_platform.adapters.outbound.memory_storage import InMemoryDatabase
from attestation_platform.adapters.outbound.provider_client import HttpProviderGateway
from attestation_platform.adapters.outbound.registry_client import HttpRegistryGateway
from attestation_platform.adapters.outbound.sql_storage import SqlDatabase
from attestation_platform.application.background import BackgroundTaskRunner
from attestation_platform.application.idempotency import IdempotencyService
from attestation_platform.application.orchestrator import CertificateOrchestrator
from attestation_platform.infrastructure.config import Config
from attestation_platform.infrastructure.logging import get_logger
from attestation_platform.infrastructure.metrics import MetricsRegistry, get_metrics
from attestation_platform.ports.outbound import ProviderGateway, RegistryGateway

T = TypeVar("T")

Database = Union[InMemoryDatabase, SqlDatabase]

logger = get_logger(__name__)


class Container:
    """Simple DI container."""

    def __init__(self) -> None:
        self._factories: dict[type, Callable[[Container], Any]] = {}
        self._instances: dict[type, Any] = {}

    def register_singleton(self, interface: type[T], instance: T) -> None:
        self._instances[interface] = instance

    def register_factory(self, interface: type[T], factory: Callable[[Container], T]) -> None:
        self._factories[interface] = factory

    def resolve(self, interface: type[T]) -> T:
        if interface in self._instances:
            return self._instances[interface]
        if interface in self._factories:
            instance = self._factories[interface](self)
            self._instances[interface] = instance
            return instance
        raise KeyError(f"No registration for {interface}")


def build_container(
    config: Config,
    *,
    database: Database | None = None,
    registry: RegistryGateway | None = None,
    provider: ProviderGateway | None = None,
    metrics: MetricsRegistry | None = None,
) -> Container:
    """Wire storage, gateways, idempotency, background runner and orchestrator.

    Storage defaults to the in-memory database for ``memory://`` URLs and to
    SQLAlchemy otherwise. Each HTTP gateway gets its own circuit breaker.
    Everything is resolved lazily.
    """
    container = Container()
    container.register_singleton(Config, config)
    container.register_singleton(MetricsRegistry, metrics or get_metrics())

    if database is None:
        database = InMemoryDatabase() if config.uses_memory_storage else SqlDatabase.from_config(config.database)
    container.register_singleton(type(database), database)

    if registry is not None:
        container.register_singleton(RegistryGateway, registry)
    else:
        container.register_factory(
            RegistryGateway,
            lambda c: HttpRegistryGateway.from_config(
                config.registry,
                CircuitBreaker.from_config("registry", config.circuit_breaker, c.resolve(MetricsRegistry)),
            ),
        )

    if provider is not None:
        container.register_singleton(ProviderGateway, provider)
    else:
        container.register_factory(
            ProviderGateway,
            lambda c: HttpProviderGateway.from_config(
                config.provider,
                CircuitBreaker.from_config("provider", config.circuit_breaker, c.resolve(MetricsRegistry)),
                c.resolve(MetricsRegistry),
            ),
        )

    container.register_factory(
        IdempotencyService,
        lambda c: IdempotencyService.from_config(database.idempotency, config.idempotency, c.resolve(MetricsRegistry)),
    )
    container.register_factory(
        BackgroundTaskRunner,
        lambda c: BackgroundTaskRunner(c.resolve(MetricsRegistry)),
    )
    container.register_factory(
        CertificateOrchestrator,
        lambda c: CertificateOrchestrator(
            store=database.certificates,
            audit=database.audit,
            registry=c.resolve(RegistryGateway),
            provider=c.resolve(ProviderGateway),
            idempotency=c.resolve(IdempotencyService),
            background=c.resolve(BackgroundTaskRunner),
            metrics=c.resolve(MetricsRegistry),
            requester_code=config.provider.requester_code,
            download_ttl=timedelta(hours=config.download.link_ttl_hours),
        ),
    )
    return container


def resolve_database(container: Container) -> Database:
    for kind in (SqlDatabase, InMemoryDatabase):
        try:
            return container.resolve(kind)
        except KeyError:
            continue
    raise KeyError("No database registered")


async def start_platform(container: Container, resume_older_than: timedelta = timedelta(minutes=5)) -> None:
    """Create the schema if needed and resume submissions lost by a restart."""
    database = resolve_database(container)
    if isinstance(database, SqlDatabase):
        await database.create_all()
    resumed = await container.resolve(CertificateOrchestrator).resume_pending_submissions(resume_older_than)
    logger.info("platform_started", storage=type(database).__name__, resumed_submissions=resumed)


async def stop_platform(container: Container, timeout: float | None = 30.0) -> None:
    """Drain background submissions, then release clients and connections."""
    await container.resolve(CertificateOrchestrator).shutdown(timeout)
    for gateway in (container.resolve(RegistryGateway), container.resolve(ProviderGateway)):
        aclose = getattr(gateway, "aclose", None)
        if aclose is not None:
            await aclose()
    database = resolve_database(container)
    if isinstance(database, SqlDatabase):
        await database.dispose()
    logger.info("platform_stopped")

