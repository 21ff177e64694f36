"""Prometheus metrics for the attestation platform."""

from __future__ import annotations

from prometheus_client import (
    Counter, Gauge, Histogram, Info, start_http_server, REGISTRY, CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all attestation platform metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry or REGISTRY

        # Certificate lifecycle
        self.certificates_created_total = Counter(
            "attestation_certificates_created_total", "Certificates created", ["company_code"],
            registry=self._registry,
        )

        self.status_transitions_total = Counter(
            "attestation_status_transitions_total", "Certificate status transitions",
            ["from_status", "to_status"],
            registry=self._registry,
        )

        self.reconciliations_total = Counter(
            "attestation_reconciliations_total", "Status checks against the provider", ["outcome"],
            registry=self._registry,
        )

        # Provider calls
        self.provider_calls_total = Counter(
            "attestation_provider_calls_total", "Provider gateway calls", ["operation", "outcome"],
            registry=self._registry,
        )

        self.provider_latency_seconds = Histogram(
            "attestation_provider_latency_seconds", "Provider gateway call latency", ["operation"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
            registry=self._registry,
        )

        self.download_cache_total = Counter(
            "attestation_download_cache_total", "Download link cache lookups", ["result"],
            registry=self._registry,
        )

        # Idempotency
        self.idempotency_requests_total = Counter(
            "attestation_idempotency_requests_total", "Idempotent request outcomes", ["outcome"],
            registry=self._registry,
        )

        self.idempotency_keys_expired_total = Counter(
            "attestation_idempotency_keys_expired_total", "Expired idempotency keys removed",
            registry=self._registry,
        )

        # Circuit breakers (0 closed, 1 half-open, 2 open)
        self.circuit_state = Gauge(
            "attestation_circuit_state", "Circuit breaker state", ["name"],
            registry=self._registry,
        )

        # Bulk processing
        self.bulk_batch_size = Histogram(
            "attestation_bulk_batch_size", "Requests per bulk batch",
            buckets=(1, 5, 10, 25, 50, 100, 250, 500),
            registry=self._registry,
        )

        self.bulk_items_total = Counter(
            "attestation_bulk_items_total", "Bulk items processed", ["outcome"],
            registry=self._registry,
        )

        self.background_tasks = Gauge(
            "attestation_background_tasks", "Background tasks in flight",
            registry=self._registry,
        )

        self.info = Info("attestation_platform", "Platform information", registry=self._registry)


_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8003, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """Set up Prometheus metrics."""
    global _metrics
    _metrics = MetricsRegistry(registry)
    from attestation_platform import __version__
    _metrics.info.info({"version": __version__})
    start_http_server(port, registry=registry or REGISTRY)
    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
