from __future__ import annotations

from sqlalchemy import BigInteger, LargeBinary
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column

from ipfsblob.models.base import Base

# Plain BLOB on MySQL/MariaDB caps at 64 KiB.
BlobPayload = LargeBinary().with_variant(mysql.LONGBLOB(), "mysql", "mariadb")


class KvRecord(Base):
    __tablename__ = "kv"

    # Keys are minted client-side, so the engine must not assign them.
    k: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    v: Mapped[bytes] = mapped_column(BlobPayload, nullable=False)
