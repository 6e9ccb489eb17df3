from __future__ import annotations

import os
from datetime import UTC, datetime

from ipfsblob.core.config import Settings, get_settings
from ipfsblob.db.session import get_engine
from ipfsblob.services.cluster import build_cluster_client
from ipfsblob.storage.base import BlobStore
from ipfsblob.storage.cluster import ClusterBlobConfig, ClusterBlobStore
from ipfsblob.storage.keys import make_server_exec_id
from ipfsblob.storage.sql import SqlBlobConfig, SqlBlobStore


def resolve_server_exec_id(settings: Settings, *, started_at: datetime | None = None) -> int:
    if settings.SERVER_EXEC_ID is not None:
        return settings.SERVER_EXEC_ID
    # 32-bit hash: a repeat of an earlier exec id makes puts fail on the primary key.
    started_at = started_at or datetime.now(UTC)
    return make_server_exec_id(f"{settings.SERVER_ID}:{os.getpid()}", started_at)


def build_blob_store(settings: Settings | None = None) -> BlobStore:
    settings = settings or get_settings()
    if settings.BLOB_BACKEND == "sql":
        return SqlBlobStore(
            SqlBlobConfig(
                engine=get_engine(),
                server_exec_id=resolve_server_exec_id(settings),
                default_timeout_seconds=settings.DEFAULT_TIMEOUT_SECONDS,
            )
        )
    if settings.BLOB_BACKEND == "cluster":
        return ClusterBlobStore(
            ClusterBlobConfig(
                temp_dir=settings.CLUSTER_TEMP_DIR,
                default_timeout_seconds=settings.DEFAULT_TIMEOUT_SECONDS,
                repl_factor_min=settings.REPL_FACTOR_MIN,
                repl_factor_max=settings.REPL_FACTOR_MAX,
                local=settings.CLUSTER_LOCAL,
            ),
            build_cluster_client(settings),
        )
    raise ValueError(f"Unsupported BLOB_BACKEND: {settings.BLOB_BACKEND}")
