from __future__ import annotations

from ipfsblob.errors import (  # noqa: F401
    BlobBackendError,
    BlobConfigurationError,
    BlobNotFoundError,
    BlobStoreAlreadySetupError,
    BlobStoreError,
    BlobTimeoutError,
    BlobUnsupportedError,
    InvalidBlobKeyError,
    KeyspaceExhaustedError,
)
from ipfsblob.storage.base import BlobStore  # noqa: F401
from ipfsblob.storage.cluster import ClusterBlobConfig, ClusterBlobStore  # noqa: F401
from ipfsblob.storage.sql import SqlBlobConfig, SqlBlobStore, setup_db  # noqa: F401

__version__ = "0.1.0"
