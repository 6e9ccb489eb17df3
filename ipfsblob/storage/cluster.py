from __future__ import annotations

import os
import queue
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path

import httpx

from ipfsblob.core.observability import logger, track_operation
from ipfsblob.core.timeouts import TimeoutScope, timeout_scope
from ipfsblob.errors import (
    BlobBackendError,
    BlobConfigurationError,
    BlobNotFoundError,
    BlobTimeoutError,
    BlobUnsupportedError,
)
from ipfsblob.services.cluster import (
    AddedOutput,
    AddParams,
    ClusterApiError,
    ClusterClient,
    ClusterPeer,
    ClusterRequestCancelled,
)
from ipfsblob.storage.base import BlobStore
from ipfsblob.storage.keys import decode_cid, encode_cid

_STAGED_FILE_MODE = 0o644
_LISTENER_POLL_SECONDS = 0.05
ADD_DONE = object()


@dataclass(frozen=True)
class ClusterBlobConfig:
    temp_dir: str
    default_timeout_seconds: float = 30.0  # 0 means never time out
    # -1: all peers, 0: cluster default, >0: that many peers
    repl_factor_min: int = 0
    repl_factor_max: int = 0
    local: bool = False


@dataclass(frozen=True)
class _AddFailed:
    error: BaseException


def drain_added_events(
    events: queue.Queue,
    result: Future[str],
    cancel: threading.Event,
) -> None:
    """Resolve ``result`` once the add call has ended.

    The first cid reported is kept but only handed out after the add call
    returns cleanly; an error reported later in the stream wins. This is
    the only writer of ``result`` and it returns right after resolving it.
    Exits without resolving once ``cancel`` is set.
    """
    cid: str | None = None
    while not cancel.is_set():
        try:
            item = events.get(timeout=_LISTENER_POLL_SECONDS)
        except queue.Empty:
            continue
        if isinstance(item, _AddFailed):
            result.set_exception(item.error)
            return
        if item is ADD_DONE:
            if cid is None:
                result.set_exception(
                    BlobBackendError("add finished without returning a cid", op="put")
                )
            else:
                result.set_result(cid)
            return
        if not isinstance(item, AddedOutput) or item.cid is None:
            # Progress event.
            continue
        if cid is None:
            cid = item.cid


class ClusterBlobStore(BlobStore):
    backend_name = "cluster"

    def __init__(self, config: ClusterBlobConfig, client: ClusterClient) -> None:
        if config.default_timeout_seconds < 0:
            raise BlobConfigurationError(
                f"default timeout must be >= 0, got {config.default_timeout_seconds}"
            )
        for name in ("repl_factor_min", "repl_factor_max"):
            if getattr(config, name) < -1:
                raise BlobConfigurationError(f"{name} must be -1, 0 or a positive peer count")
        self._config = config
        self._client = client
        self._temp_dir = Path(config.temp_dir)
        try:
            self._temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BlobConfigurationError(f"unable to create temp dir {self._temp_dir}: {e}") from e

        # Fail at construction rather than on the first put.
        with timeout_scope(config.default_timeout_seconds) as scope:
            try:
                self._peer = scope.call("connect", client.id)
            except (ClusterApiError, httpx.HTTPError, BlobTimeoutError) as e:
                raise BlobConfigurationError(f"unable to fetch cluster id: {e}") from e
        logger.info("connected to cluster peer %s (%s)", self._peer.id, self._peer.peername)

    @property
    def config(self) -> ClusterBlobConfig:
        return self._config

    @property
    def cluster_peer(self) -> ClusterPeer:
        return self._peer

    def _add_params(self, path: Path) -> AddParams:
        return AddParams(
            replication_factor_min=self._config.repl_factor_min,
            replication_factor_max=self._config.repl_factor_max,
            name=str(path),
            local=self._config.local,
        )

    def _stage(self, data: bytes) -> Path:
        # The add API only takes file paths. Named by a random token, not the content hash.
        path = self._temp_dir / str(uuid.uuid4())
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _STAGED_FILE_MODE)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        except OSError as e:
            path.unlink(missing_ok=True)
            raise BlobBackendError(f"error writing temp file: {e}", op="put") from e
        return path

    def _add(self, path: Path, scope: TimeoutScope) -> str:
        events: queue.Queue = queue.Queue()
        result: Future[str] = Future()
        params = self._add_params(path)

        def _run_add() -> None:
            try:
                self._client.add([path], params, events, scope.cancelled)
            except BaseException as e:  # noqa: BLE001
                events.put(_AddFailed(e))
            finally:
                events.put(ADD_DONE)

        threading.Thread(
            target=drain_added_events,
            args=(events, result, scope.cancelled),
            name="ipfsblob-add-listener",
            daemon=True,
        ).start()
        threading.Thread(target=_run_add, name="ipfsblob-add", daemon=True).start()

        try:
            return scope.wait(result, op="put", message="cid not returned before deadline")
        except (ClusterApiError, httpx.HTTPError, OSError, ValueError) as e:
            raise BlobBackendError(f"cluster add failed: {e}", op="put") from e

    def put(self, data: bytes) -> bytes:
        payload = bytes(data)
        with track_operation(self.backend_name, "put") as record:
            record.size_bytes = len(payload)
            with timeout_scope(self._config.default_timeout_seconds) as scope:
                path = self._stage(payload)
                try:
                    scope.check("put")
                    cid = self._add(path, scope)
                finally:
                    # The add thread already holds the file open, or gave up.
                    path.unlink(missing_ok=True)
            key = encode_cid(cid)
            record.key = key
            return key

    def get(self, key: bytes) -> bytes:
        key = bytes(key)
        with track_operation(self.backend_name, "get", key=key) as record:
            cid = decode_cid(key)
            with timeout_scope(self._config.default_timeout_seconds) as scope:
                try:
                    data = scope.call("get", self._client.cat, cid, cancel=scope.cancelled)
                except ClusterApiError as e:
                    if e.is_not_found:
                        raise BlobNotFoundError(key) from e
                    raise BlobBackendError(
                        f"unable to fetch cid {cid}: {e}", op="get", key=key
                    ) from e
                except (httpx.HTTPError, ClusterRequestCancelled) as e:
                    raise BlobBackendError(
                        f"error reading cid data {cid}: {e}", op="get", key=key
                    ) from e
            record.size_bytes = len(data)
            return data

    def delete(self, key: bytes) -> None:
        key = bytes(key)
        with track_operation(self.backend_name, "delete", key=key):
            raise BlobUnsupportedError("delete is not supported by the cluster blob store")

    def close(self) -> None:
        self._client.close()
