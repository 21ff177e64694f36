"""Outbound adapters - implementations for external dependencies.

Storage adapters persist certificates, idempotency keys and audit records;
HTTP gateways talk to the registry and the attestation provider, each behind
its own circuit breaker.
"""

from attestation_platform.adapters.outbound.circuit_breaker import CircuitBreaker, CircuitState
from attestation_platform.adapters.outbound.memory_storage import InMemoryDatabase
from attestation_platform.adapters.outbound.provider_client import HttpProviderGateway
from attestation_platform.adapters.outbound.registry_client import HttpRegistryGateway
from attestation_platform.adapters.outbound.sql_storage import SqlDatabase

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "InMemoryDatabase",
    "HttpProviderGateway",
    "HttpRegistryGateway",
    "SqlDatabase",
]
