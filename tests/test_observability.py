from __future__ import annotations

import json
import logging

import pytest
from prometheus_client import REGISTRY

from ipfsblob.errors import BlobNotFoundError
from ipfsblob.storage.sql import SqlBlobStore


def _count(backend: str, op: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value(
        "ipfsblob_operations_total",
        {"backend": backend, "op": op, "outcome": outcome},
    )
    return value or 0.0


def test_operations_emit_json_log_lines_and_metrics(
    sql_store: SqlBlobStore, caplog: pytest.LogCaptureFixture
) -> None:
    puts_before = _count("sql", "put", "ok")
    misses_before = _count("sql", "get", "not_found")

    with caplog.at_level(logging.INFO, logger="ipfsblob"):
        key = sql_store.put(b"observed")
        sql_store.delete(key)
        with pytest.raises(BlobNotFoundError):
            sql_store.get(key)

    assert _count("sql", "put", "ok") == puts_before + 1
    assert _count("sql", "get", "not_found") == misses_before + 1

    events = [json.loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
    by_event = {e["event"]: e for e in events}
    assert by_event["blob.put.completed"]["key"] == key.hex()
    assert by_event["blob.put.completed"]["size_bytes"] == len(b"observed")
    assert by_event["blob.get.failed"]["outcome"] == "not_found"
    assert by_event["blob.delete.completed"]["backend"] == "sql"
