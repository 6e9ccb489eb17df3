from __future__ import annotations

import hashlib
import time
from collections.abc import Generator
from contextlib import suppress
from pathlib import Path

import httpx
import orjson
import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from ipfsblob.services.cluster import ClusterClient
from ipfsblob.storage.sql import SqlBlobConfig, SqlBlobStore, setup_db

TEST_EXEC_ID = 0x1234ABCD
CLUSTER_API_URL = "http://cluster.test:9094"
IPFS_PROXY_URL = "http://cluster.test:9095"


def make_sqlite_engine(path: Path) -> Engine:
    # Calls run on helper threads, so connections must be shareable across threads.
    return create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False, "timeout": 2},
    )


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "blobs.db"


@pytest.fixture()
def engine(db_path: Path) -> Generator[Engine, None, None]:
    eng = make_sqlite_engine(db_path)
    yield eng
    with suppress(Exception):
        eng.dispose()


@pytest.fixture()
def kv_engine(engine: Engine) -> Engine:
    setup_db(engine, timeout_seconds=10)
    return engine


@pytest.fixture()
def sql_store(kv_engine: Engine) -> SqlBlobStore:
    return SqlBlobStore(
        SqlBlobConfig(engine=kv_engine, server_exec_id=TEST_EXEC_ID, default_timeout_seconds=10)
    )


@pytest.fixture(autouse=True)
def _clear_cached_settings() -> Generator[None, None, None]:
    from ipfsblob.core.config import get_settings
    from ipfsblob.db.session import get_engine

    get_settings.cache_clear()
    get_engine.cache_clear()
    yield
    if get_engine.cache_info().currsize:
        with suppress(Exception):
            get_engine().dispose()
    get_engine.cache_clear()
    get_settings.cache_clear()


def fake_cid(data: bytes) -> str:
    return "bafkrei" + hashlib.sha256(data).hexdigest()[:52]


def parse_multipart_files(request: httpx.Request) -> list[tuple[str, bytes]]:
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].strip('"').encode()
    body = request.read()
    files: list[tuple[str, bytes]] = []
    for part in body.split(b"--" + boundary):
        if b"\r\n\r\n" not in part:
            continue
        headers, content = part.split(b"\r\n\r\n", 1)
        disposition = headers.decode("utf-8", "replace")
        if "filename=" not in disposition:
            continue
        filename = disposition.split('filename="', 1)[1].split('"', 1)[0]
        files.append((filename, content[: -len(b"\r\n")] if content.endswith(b"\r\n") else content))
    return files


class FakeCluster:
    """In-process stand-in for an IPFS Cluster peer and its IPFS proxy."""

    def __init__(
        self,
        *,
        progress_events: int = 2,
        add_delay: float = 0.0,
        cat_delay: float = 0.0,
        add_status: int = 200,
        id_status: int = 200,
        emit_cid: bool = True,
        string_cids: bool = False,
        trailing_lines: tuple[bytes, ...] = (),
        add_body: bytes | None = None,
    ) -> None:
        self.progress_events = progress_events
        self.add_delay = add_delay
        self.cat_delay = cat_delay
        self.add_status = add_status
        self.id_status = id_status
        self.emit_cid = emit_cid
        self.string_cids = string_cids
        # Appended after all per-file events, e.g. a late pin error.
        self.trailing_lines = trailing_lines
        # Replaces the whole add response body when set.
        self.add_body = add_body
        self.blobs: dict[str, bytes] = {}
        self.add_requests: list[httpx.Request] = []
        self.uploaded: list[tuple[str, bytes]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        port = request.url.port
        path = request.url.path

        if port == 9094 and path == "/id":
            if self.id_status >= 400:
                return httpx.Response(self.id_status, json={"code": self.id_status, "message": "boom"})
            return httpx.Response(
                200,
                json={"id": "12D3KooWTestPeer", "peername": "peer0", "version": "1.0.0", "error": ""},
            )

        if port == 9094 and path == "/add":
            self.add_requests.append(request)
            if self.add_delay:
                time.sleep(self.add_delay)
            if self.add_status >= 400:
                return httpx.Response(
                    self.add_status, json={"code": self.add_status, "message": "add exploded"}
                )
            if self.add_body is not None:
                return httpx.Response(200, content=self.add_body)
            lines: list[bytes] = []
            for name, data in parse_multipart_files(request):
                self.uploaded.append((name, data))
                for i in range(self.progress_events):
                    lines.append(orjson.dumps({"name": name, "bytes": (i + 1) * max(1, len(data) // 2)}))
                if not self.emit_cid:
                    continue
                cid = fake_cid(data)
                self.blobs[cid] = data
                lines.append(
                    orjson.dumps(
                        {
                            "name": name,
                            "cid": cid if self.string_cids else {"/": cid},
                            "size": len(data),
                            "allocations": ["12D3KooWTestPeer"],
                        }
                    )
                )
            lines.extend(self.trailing_lines)
            return httpx.Response(200, content=b"\n".join(lines) + b"\n")

        if port == 9095 and path == "/api/v0/cat":
            if self.cat_delay:
                time.sleep(self.cat_delay)
            cid = request.url.params.get("arg", "")
            data = self.blobs.get(cid)
            if data is None:
                return httpx.Response(
                    500, json={"Message": "merkledag: not found", "Code": 0, "Type": "error"}
                )
            return httpx.Response(200, content=data)

        return httpx.Response(404, json={"code": 404, "message": "not found"})

    def client(self) -> ClusterClient:
        return ClusterClient(
            httpx.Client(transport=httpx.MockTransport(self.handler), timeout=10.0),
            api_url=CLUSTER_API_URL,
            ipfs_proxy_url=IPFS_PROXY_URL,
        )


@pytest.fixture()
def fake_cluster() -> FakeCluster:
    return FakeCluster()
