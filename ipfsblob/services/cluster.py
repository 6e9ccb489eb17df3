from __future__ import annotations

import queue
import threading
from collections.abc import Sequence
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import orjson

from ipfsblob.core.config import Settings

CLUSTER_ID_PATH = "/id"
CLUSTER_ADD_PATH = "/add"
IPFS_CAT_PATH = "/api/v0/cat"


@dataclass(frozen=True)
class ClusterPeer:
    id: str
    peername: str | None
    version: str | None


@dataclass(frozen=True)
class AddParams:
    # -1: all peers, 0: cluster default, >0: that many peers
    replication_factor_min: int = 0
    replication_factor_max: int = 0
    name: str = ""
    local: bool = False

    def to_query(self) -> dict[str, str]:
        params = {
            "replication-min": str(self.replication_factor_min),
            "replication-max": str(self.replication_factor_max),
            "local": "true" if self.local else "false",
            "stream-channels": "true",
        }
        if self.name:
            params["name"] = self.name
        return params


@dataclass(frozen=True)
class AddedOutput:
    name: str
    cid: str | None
    progress_bytes: int | None = None
    size: int | None = None
    allocations: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> AddedOutput:
        raw_cid = payload.get("cid")
        # Older clusters wrap cids as {"/": "<cid>"}, newer ones send the string.
        if isinstance(raw_cid, dict):
            raw_cid = raw_cid.get("/")
        size_raw = payload.get("size")
        bytes_raw = payload.get("bytes")
        return cls(
            name=str(payload.get("name") or ""),
            cid=str(raw_cid) if raw_cid else None,
            progress_bytes=int(bytes_raw) if bytes_raw is not None else None,
            size=int(size_raw) if size_raw not in (None, "") else None,
            allocations=[str(p) for p in payload.get("allocations") or []],
        )


class ClusterApiError(RuntimeError):
    def __init__(self, *, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404 or "not found" in str(self).lower()


class ClusterRequestCancelled(RuntimeError):
    pass


class ClusterClient:
    """Minimal IPFS Cluster REST client: identity, add/pin and cat."""

    def __init__(
        self,
        http_client: httpx.Client,
        *,
        api_url: str,
        ipfs_proxy_url: str,
    ) -> None:
        self._http = http_client
        self._api_url = api_url.rstrip("/")
        self._ipfs_proxy_url = ipfs_proxy_url.rstrip("/")

    def close(self) -> None:
        self._http.close()

    def id(self) -> ClusterPeer:
        res = self._http.get(f"{self._api_url}{CLUSTER_ID_PATH}")
        _raise_for_cluster_error(res, default_message="cluster id lookup failed")
        payload = res.json()
        if payload.get("error"):
            raise ClusterApiError(status_code=res.status_code, message=str(payload["error"]))
        return ClusterPeer(
            id=str(payload["id"]),
            peername=payload.get("peername"),
            version=payload.get("version"),
        )

    def add(
        self,
        paths: Sequence[str | Path],
        params: AddParams,
        events: queue.Queue,
        cancel: threading.Event,
    ) -> None:
        """Upload files and push every AddedOutput the cluster streams back into ``events``.

        Progress events carry no cid. Stops reading once ``cancel`` is set.
        """
        with ExitStack() as stack:
            files = []
            for path in paths:
                p = Path(path)
                fh = stack.enter_context(open(p, "rb"))
                files.append(("file", (p.name, fh, "application/octet-stream")))

            with self._http.stream(
                "POST",
                f"{self._api_url}{CLUSTER_ADD_PATH}",
                params=params.to_query(),
                files=files,
            ) as res:
                if res.status_code >= 400:
                    res.read()
                    _raise_for_cluster_error(res, default_message="cluster add failed")
                for line in res.iter_lines():
                    if cancel.is_set():
                        return
                    if not line.strip():
                        continue
                    payload = orjson.loads(line)
                    if not isinstance(payload, dict):
                        raise ClusterApiError(
                            status_code=res.status_code,
                            message=f"unexpected add event: {line[:200]}",
                        )
                    if _is_error_payload(payload):
                        raise ClusterApiError(
                            status_code=int(payload.get("code") or res.status_code),
                            message=str(payload.get("message") or "cluster add failed"),
                        )
                    events.put(AddedOutput.from_payload(payload))

    def cat(self, cid: str, *, cancel: threading.Event | None = None) -> bytes:
        with self._http.stream(
            "POST",
            f"{self._ipfs_proxy_url}{IPFS_CAT_PATH}",
            params={"arg": cid},
        ) as res:
            if res.status_code >= 400:
                res.read()
                _raise_for_cluster_error(res, default_message=f"cat {cid} failed")
            chunks: list[bytes] = []
            for chunk in res.iter_bytes():
                if cancel is not None and cancel.is_set():
                    raise ClusterRequestCancelled(f"cat {cid} cancelled")
                chunks.append(chunk)
        return b"".join(chunks)


def build_cluster_client(settings: Settings) -> ClusterClient:
    # Operation deadlines come from the store's timeout scope; only connect is bounded here.
    timeout = httpx.Timeout(None, connect=settings.CLUSTER_CONNECT_TIMEOUT_SECONDS or None)
    return ClusterClient(
        httpx.Client(timeout=timeout),
        api_url=settings.CLUSTER_API_URL,
        ipfs_proxy_url=settings.IPFS_PROXY_URL,
    )


def _is_error_payload(payload: object) -> bool:
    return (
        isinstance(payload, dict)
        and "message" in payload
        and "code" in payload
        and "cid" not in payload
    )


def _raise_for_cluster_error(res: httpx.Response, *, default_message: str) -> None:
    if res.status_code < 400:
        return
    message = default_message
    try:
        payload = res.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        # Cluster uses {"code", "message"}; the IPFS API uses {"Code", "Message"}.
        message = str(payload.get("message") or payload.get("Message") or default_message)
    elif res.text.strip():
        message = res.text.strip()
    raise ClusterApiError(status_code=res.status_code, message=message)
