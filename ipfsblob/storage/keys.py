from __future__ import annotations

import hashlib
import struct
import threading
from datetime import datetime

from ipfsblob.errors import (
    BlobConfigurationError,
    InvalidBlobKeyError,
    KeyspaceExhaustedError,
)

SQL_KEY_SIZE = 8
MAX_EXEC_ID = 0xFFFFFFFF
MAX_COUNTER = 0xFFFFFFFF

_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")


def encode_sql_key(key: int) -> bytes:
    # Accept both the unsigned minted value and the signed column value.
    return _U64.pack(key & 0xFFFFFFFFFFFFFFFF)


def decode_sql_key(key: bytes) -> int:
    """Decode an 8-byte identifier into the signed value stored in the BIGINT column."""
    if len(key) != SQL_KEY_SIZE:
        raise InvalidBlobKeyError(key, f"expected {SQL_KEY_SIZE} bytes, got {len(key)}")
    return _I64.unpack(bytes(key))[0]


def split_sql_key(key: bytes) -> tuple[int, int]:
    if len(key) != SQL_KEY_SIZE:
        raise InvalidBlobKeyError(key, f"expected {SQL_KEY_SIZE} bytes, got {len(key)}")
    value = _U64.unpack(bytes(key))[0]
    return value >> 32, value & MAX_COUNTER


def make_server_exec_id(server_id: str, started_at: datetime) -> int:
    """Derive a non-zero 32-bit execution-instance id for one process start."""
    material = f"{server_id}|{started_at.isoformat()}".encode()
    exec_id = int.from_bytes(hashlib.blake2b(material, digest_size=4).digest(), "little")
    return exec_id or 1


class KeyMinter:
    """Mints collision-free 64-bit keys without a shared sequence.

    High 32 bits are the execution-instance id, low 32 bits a counter that
    starts at 1 for every minter and is never reused.
    """

    def __init__(self, server_exec_id: int) -> None:
        if not isinstance(server_exec_id, int) or not 0 < server_exec_id <= MAX_EXEC_ID:
            raise BlobConfigurationError(
                f"server exec id must be a non-zero 32-bit value, got {server_exec_id!r}"
            )
        self.server_exec_id = server_exec_id
        self._lock = threading.Lock()
        self._last = 0

    def next_key(self) -> int:
        with self._lock:
            if self._last >= MAX_COUNTER:
                raise KeyspaceExhaustedError(
                    f"key counter exhausted for server exec id {self.server_exec_id}"
                )
            self._last += 1
            counter = self._last
        return (self.server_exec_id << 32) | counter

    def next_key_bytes(self) -> bytes:
        return encode_sql_key(self.next_key())


def encode_cid(cid: str) -> bytes:
    return cid.encode("utf-8")


def decode_cid(key: bytes) -> str:
    try:
        cid = bytes(key).decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidBlobKeyError(key, "content identifier is not valid UTF-8") from None
    cid = cid.strip()
    if not cid:
        raise InvalidBlobKeyError(key, "empty content identifier")
    return cid
