from __future__ import annotations

from prometheus_client import Counter, Histogram

_BLOB_OPERATIONS_TOTAL = Counter(
    "ipfsblob_operations_total",
    "Total blob store operations by backend, operation and outcome.",
    labelnames=("backend", "op", "outcome"),
)
_BLOB_OPERATION_DURATION_SECONDS = Histogram(
    "ipfsblob_operation_duration_seconds",
    "Blob store operation duration in seconds.",
    labelnames=("backend", "op"),
)


def observe_blob_operation(
    *,
    backend: str,
    op: str,
    outcome: str,
    duration_ms: int,
) -> None:
    _BLOB_OPERATIONS_TOTAL.labels(backend=backend, op=op, outcome=outcome).inc()
    _BLOB_OPERATION_DURATION_SECONDS.labels(backend=backend, op=op).observe(
        max(0.0, duration_ms / 1000.0)
    )
