"""Prometheus metrics for the identity service.

Counters are created once per process behind :func:`get_registry` so repeated
service construction (tests, multiple services per process) does not try to
register the same collector twice.
"""
from __future__ import annotations

from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, REGISTRY


class MetricsRegistry:
    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.registrations = Counter(
            "certid_identity_registrations_total",
            "Identities and keys newly registered",
            ["kind"],
            registry=registry,
        )
        self.conflicts = Counter(
            "certid_registration_conflicts_total",
            "Registrations rejected because the key already has a different owner",
            ["operation"],
            registry=registry,
        )
        self.assertions = Counter(
            "certid_ownership_assertions_total",
            "Ownership assertions by outcome",
            ["outcome"],
            registry=registry,
        )
        self.cache_lookups = Counter(
            "certid_cache_lookups_total",
            "Ownership cache lookups by result",
            ["result"],
            registry=registry,
        )

    def observe_registration(self, kind: str) -> None:
        self.registrations.labels(kind=kind).inc()

    def observe_conflict(self, operation: str) -> None:
        self.conflicts.labels(operation=operation).inc()

    def observe_assertion(self, outcome: str) -> None:
        self.assertions.labels(outcome=outcome).inc()

    def observe_cache(self, hit: bool) -> None:
        self.cache_lookups.labels(result="hit" if hit else "miss").inc()

    def sample(self, name: str, labels: Dict[str, str]) -> float:
        """Current value of a sample, 0.0 when it has not been observed yet."""
        return self.registry.get_sample_value(name, labels) or 0.0


_registry: Optional[MetricsRegistry] = None


def get_registry() -> MetricsRegistry:
    global _registry
    if _registry is None:
        _registry = MetricsRegistry()
    return _registry


__all__ = ["get_registry", "MetricsRegistry"]
