from __future__ import annotations

from ipfsblob.models.base import Base as Base  # noqa: F401
from ipfsblob.models.kv import KvRecord  # noqa: F401
