from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from prometheus_client import CollectorRegistry, Counter, Histogram

from .models import ResolutionOutcome

WHOIS_LATENCY_METRIC = "tailscale_whois_latency_milliseconds"
DEFAULT_LATENCY_BUCKETS_MS = (1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)


class LatencyRecorder:
    def observe(self, duration_ms: float) -> None:
        raise NotImplementedError


class NullLatencyRecorder(LatencyRecorder):
    def observe(self, duration_ms: float) -> None:
        return None


class HistogramLatencyRecorder(LatencyRecorder):
    """Feeds lookup latency into a prometheus histogram (lock-protected per sample)."""

    def __init__(self, histogram: Histogram) -> None:
        self._histogram = histogram

    def observe(self, duration_ms: float) -> None:
        self._histogram.observe(max(0.0, float(duration_ms)))


def validate_buckets(buckets: Sequence[float]) -> tuple[float, ...]:
    values = tuple(float(b) for b in buckets)
    if not values:
        raise ValueError("latency buckets must be non-empty")
    if values[0] <= 0.0:
        raise ValueError("latency buckets must be positive")
    for prev, cur in zip(values, values[1:]):
        if cur <= prev:
            raise ValueError("latency buckets must be strictly increasing")
    return values


@dataclass(frozen=True)
class ServiceMetrics:
    registry: CollectorRegistry
    whois_latency: Histogram
    resolutions: Counter
    identifiers_issued: Counter

    def latency_recorder(self) -> LatencyRecorder:
        return HistogramLatencyRecorder(self.whois_latency)

    def record_outcome(self, outcome: ResolutionOutcome) -> None:
        if outcome.accepted:
            self.resolutions.labels(outcome="accepted", reason="").inc()
        else:
            self.resolutions.labels(outcome="rejected", reason=outcome.reason.value).inc()


def build_metrics(
    buckets: Sequence[float] = DEFAULT_LATENCY_BUCKETS_MS,
    registry: CollectorRegistry | None = None,
) -> ServiceMetrics:
    if registry is None:
        registry = CollectorRegistry()
    whois_latency = Histogram(
        WHOIS_LATENCY_METRIC,
        "The latency of Tailscale WhoIs requests in milliseconds",
        registry=registry,
        buckets=validate_buckets(buckets),
    )
    resolutions = Counter(
        "peerhello_identity_resolutions_total",
        "Identity resolution outcomes by reason",
        ["outcome", "reason"],
        registry=registry,
    )
    identifiers_issued = Counter(
        "peerhello_identifiers_issued_total",
        "Random identifiers issued by /api/uuid",
        registry=registry,
    )
    return ServiceMetrics(
        registry=registry,
        whois_latency=whois_latency,
        resolutions=resolutions,
        identifiers_issued=identifiers_issued,
    )
