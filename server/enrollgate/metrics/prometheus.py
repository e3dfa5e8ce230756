# pyright: reportMissingTypeStubs=false
# pyright: reportUnknownMemberType=false

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest


_REDEMPTIONS = Counter(
    "enrollgate_redemptions_total",
    "Redemption attempts by outcome (ok or an error code).",
    labelnames=("outcome",),
)
_REDEMPTION_LATENCY = Histogram(
    "enrollgate_redemption_latency_seconds",
    "Wall time of a redemption attempt, including rollback.",
)
_PROVISIONING_RECORDS = Counter(
    "enrollgate_provisioning_records_total",
    "Provisioning records processed by outcome.",
    labelnames=("outcome",),
)


def record_redemption(*, outcome: str, latency_s: float | None = None) -> None:
    _REDEMPTIONS.labels(outcome=outcome).inc()
    # Attempts turned away before reaching storage have no latency worth observing.
    if latency_s is not None:
        _REDEMPTION_LATENCY.observe(max(0.0, float(latency_s)))


def record_provisioning(*, outcome: str, count: int = 1) -> None:
    if count > 0:
        _PROVISIONING_RECORDS.labels(outcome=outcome).inc(count)


def metrics_payload() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
