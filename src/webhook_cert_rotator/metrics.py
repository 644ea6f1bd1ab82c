"""Prometheus metrics for the Webhook Certificate Rotator."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class RotatorMetrics:
    """Metrics shared by the rotator, the reconciler and the object store.

    All collectors are registered on ``registry`` when the object is
    constructed, so tests can pass a fresh ``CollectorRegistry``.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY, prefix: str = "cert_rotator"):
        self.registry = registry

        # Rotation metrics
        self.refresh_total = Counter(
            f"{prefix}_refresh_total",
            "Total number of certificate refresh checks",
            ["scope", "result"],
            registry=registry,
        )

        self.refresh_duration_seconds = Histogram(
            f"{prefix}_refresh_duration_seconds",
            "Duration of certificate refresh checks in seconds",
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        self.certificate_expiry_timestamp_seconds = Gauge(
            f"{prefix}_certificate_expiry_timestamp_seconds",
            "Expiry of the stored certificates as a unix timestamp",
            ["certificate"],
            registry=registry,
        )

        # Injection metrics
        self.injection_total = Counter(
            f"{prefix}_injection_total",
            "Total number of CA injections into consumer resources",
            ["kind", "result"],
            registry=registry,
        )

        self.reconcile_total = Counter(
            f"{prefix}_reconcile_total",
            "Total number of webhook reconciliations",
            ["result"],
            registry=registry,
        )

        self.reconcile_duration_seconds = Histogram(
            f"{prefix}_reconcile_duration_seconds",
            "Duration of webhook reconciliations in seconds",
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=registry,
        )

        # API call metrics
        self.api_call_total = Counter(
            f"{prefix}_api_call_total",
            "Total number of Kubernetes API calls",
            ["operation", "result"],
            registry=registry,
        )

        self.api_call_duration_seconds = Histogram(
            f"{prefix}_api_call_duration_seconds",
            "Duration of Kubernetes API calls in seconds",
            ["operation"],
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0],
            registry=registry,
        )

        self.ready = Gauge(
            f"{prefix}_ready",
            "Whether certificates are mounted and the CA is injected",
            registry=registry,
        )
