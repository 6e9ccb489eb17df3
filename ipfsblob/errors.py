from __future__ import annotations


class BlobStoreError(RuntimeError):
    pass


class BlobNotFoundError(BlobStoreError):
    """No record or object maps to the queried key.

    Match on the class, not on the key: two instances carrying different
    keys are the same kind of error.
    """

    def __init__(self, key: bytes) -> None:
        super().__init__(f"key '{bytes(key).hex()}' not found")
        self.key = bytes(key)


class BlobConfigurationError(BlobStoreError):
    pass


class BlobStoreAlreadySetupError(BlobStoreError):
    pass


class BlobBackendError(BlobStoreError):
    def __init__(self, message: str, *, op: str, key: bytes | None = None) -> None:
        super().__init__(f"{op}: {message}")
        self.op = op
        self.key = key


class BlobTimeoutError(BlobStoreError):
    def __init__(self, message: str, *, op: str, timeout_seconds: float) -> None:
        super().__init__(f"{op}: {message} (timeout={timeout_seconds}s)")
        self.op = op
        self.timeout_seconds = timeout_seconds


class BlobUnsupportedError(BlobStoreError):
    pass


class InvalidBlobKeyError(BlobStoreError):
    def __init__(self, key: bytes, reason: str) -> None:
        super().__init__(f"invalid key '{bytes(key).hex()}': {reason}")
        self.key = bytes(key)


class KeyspaceExhaustedError(BlobStoreError):
    pass
