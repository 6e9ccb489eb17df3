from __future__ import annotations

import json
import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass

from ipfsblob.core.metrics import observe_blob_operation
from ipfsblob.errors import (
    BlobNotFoundError,
    BlobTimeoutError,
    BlobUnsupportedError,
)

logger = logging.getLogger("ipfsblob")


@dataclass
class OperationRecord:
    backend: str
    op: str
    key: bytes | None = None
    size_bytes: int | None = None


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")


def classify_outcome(exc: BaseException | None) -> str:
    if exc is None:
        return "ok"
    if isinstance(exc, BlobNotFoundError):
        return "not_found"
    if isinstance(exc, BlobTimeoutError):
        return "timeout"
    if isinstance(exc, BlobUnsupportedError):
        return "unsupported"
    return "error"


def log_blob_operation(
    *,
    record: OperationRecord,
    outcome: str,
    duration_ms: int,
    error: str | None,
) -> None:
    payload: dict[str, object] = {
        "event": f"blob.{record.op}.{'completed' if outcome == 'ok' else 'failed'}",
        "backend": record.backend,
        "op": record.op,
        "outcome": outcome,
        "duration_ms": duration_ms,
    }
    if record.key is not None:
        payload["key"] = record.key.hex()
    if record.size_bytes is not None:
        payload["size_bytes"] = record.size_bytes
    if error is not None:
        payload["error"] = error

    level = logging.INFO if outcome in {"ok", "not_found"} else logging.WARNING
    logger.log(level, json.dumps(payload, separators=(",", ":"), sort_keys=True))


@contextmanager
def track_operation(
    backend: str, op: str, *, key: bytes | None = None
) -> Generator[OperationRecord, None, None]:
    record = OperationRecord(backend=backend, op=op, key=key)
    start_ts = time.monotonic()
    exc: BaseException | None = None
    try:
        yield record
    except BaseException as e:
        exc = e
        raise
    finally:
        duration_ms = int((time.monotonic() - start_ts) * 1000)
        outcome = classify_outcome(exc)
        observe_blob_operation(
            backend=record.backend, op=record.op, outcome=outcome, duration_ms=duration_ms
        )
        log_blob_operation(
            record=record,
            outcome=outcome,
            duration_ms=duration_ms,
            error=str(exc) if exc is not None else None,
        )
