from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import bindparam, delete, inspect, insert, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ipfsblob.core.observability import logger, track_operation
from ipfsblob.core.timeouts import timeout_scope
from ipfsblob.db.session import make_sessionmaker
from ipfsblob.errors import (
    BlobBackendError,
    BlobConfigurationError,
    BlobNotFoundError,
    BlobStoreAlreadySetupError,
    BlobTimeoutError,
)
from ipfsblob.models.kv import KvRecord
from ipfsblob.storage.base import BlobStore
from ipfsblob.storage.keys import KeyMinter, decode_sql_key, encode_sql_key

kv_table = KvRecord.__table__


@dataclass(frozen=True)
class SqlBlobConfig:
    engine: Engine
    server_exec_id: int
    default_timeout_seconds: float = 30.0  # 0 means never time out


def setup_db(engine: Engine, *, timeout_seconds: float = 0.0) -> None:
    """Create the kv table, refusing to touch a database that already has one."""

    def _create(conn: Connection) -> None:
        if inspect(conn).has_table(kv_table.name):
            raise BlobStoreAlreadySetupError(
                f"table {kv_table.name} already exists (db is setup)"
            )
        kv_table.create(conn)

    def _run() -> None:
        with engine.begin() as conn:
            _create(conn)

    with timeout_scope(timeout_seconds) as scope:
        try:
            scope.call("setup_db", _run)
        except SQLAlchemyError as e:
            raise BlobBackendError(
                f"unable to create {kv_table.name} table: {e}", op="setup_db"
            ) from e
    logger.info("created %s table", kv_table.name)


class SqlBlobStore(BlobStore):
    backend_name = "sql"

    def __init__(self, config: SqlBlobConfig) -> None:
        if not isinstance(config.engine, Engine):
            raise BlobConfigurationError("SqlBlobConfig.engine must be an open SQLAlchemy Engine")
        if config.default_timeout_seconds < 0:
            raise BlobConfigurationError(
                f"default timeout must be >= 0, got {config.default_timeout_seconds}"
            )
        self._config = config
        self._minter = KeyMinter(config.server_exec_id)
        self._sessionmaker = make_sessionmaker(config.engine)

        self._st_insert = insert(kv_table)
        self._st_get = select(kv_table.c.v).where(kv_table.c.k == bindparam("key"))
        self._st_del = delete(kv_table).where(kv_table.c.k == bindparam("key"))

        with timeout_scope(config.default_timeout_seconds) as scope:
            try:
                scope.call("connect", self._ping)
            except (SQLAlchemyError, BlobTimeoutError) as e:
                raise BlobConfigurationError(f"unable to reach database: {e}") from e

    @property
    def config(self) -> SqlBlobConfig:
        return self._config

    @property
    def server_exec_id(self) -> int:
        return self._minter.server_exec_id

    def _ping(self) -> None:
        with self._config.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def _insert(self, key: int, data: bytes) -> None:
        with self._sessionmaker.begin() as session:
            session.execute(self._st_insert, {"k": key, "v": data})

    def _select(self, key: int) -> bytes | None:
        with self._sessionmaker() as session:
            value = session.execute(self._st_get, {"key": key}).scalar_one_or_none()
        return bytes(value) if value is not None else None

    def _delete(self, key: int) -> int:
        with self._sessionmaker.begin() as session:
            res = session.execute(self._st_del, {"key": key})
        return res.rowcount

    def put(self, data: bytes) -> bytes:
        payload = bytes(data)
        with track_operation(self.backend_name, "put") as record:
            key = encode_sql_key(self._minter.next_key())
            record.key = key
            record.size_bytes = len(payload)
            with timeout_scope(self._config.default_timeout_seconds) as scope:
                try:
                    scope.call("put", self._insert, decode_sql_key(key), payload)
                except SQLAlchemyError as e:
                    raise BlobBackendError(str(e), op="put", key=key) from e
            return key

    def get(self, key: bytes) -> bytes:
        key = bytes(key)
        with track_operation(self.backend_name, "get", key=key) as record:
            db_key = decode_sql_key(key)
            with timeout_scope(self._config.default_timeout_seconds) as scope:
                try:
                    data = scope.call("get", self._select, db_key)
                except SQLAlchemyError as e:
                    raise BlobBackendError(str(e), op="get", key=key) from e
            if data is None:
                raise BlobNotFoundError(key)
            record.size_bytes = len(data)
            return data

    def delete(self, key: bytes) -> None:
        key = bytes(key)
        with track_operation(self.backend_name, "delete", key=key):
            db_key = decode_sql_key(key)
            with timeout_scope(self._config.default_timeout_seconds) as scope:
                try:
                    # Deleting a missing key affects zero rows and is not an error.
                    scope.call("delete", self._delete, db_key)
                except SQLAlchemyError as e:
                    raise BlobBackendError(str(e), op="delete", key=key) from e
