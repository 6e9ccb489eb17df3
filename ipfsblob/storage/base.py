from __future__ import annotations


class BlobStore:
    """Uniform put/get/delete contract shared by every backend.

    Keys are opaque bytes minted by ``put``; their encoding is backend
    specific and only meaningful to the store that produced them.
    """

    backend_name = "unknown"

    def put(self, data: bytes) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def get(self, key: bytes) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def delete(self, key: bytes) -> None:  # pragma: no cover
        raise NotImplementedError
