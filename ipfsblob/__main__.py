from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ipfsblob.core.config import get_settings
from ipfsblob.core.observability import configure_logging
from ipfsblob.db.session import get_engine
from ipfsblob.errors import BlobStoreError
from ipfsblob.storage.factory import build_blob_store
from ipfsblob.storage.sql import setup_db


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ipfsblob", description="Blob store maintenance CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("setup-db", help="create the kv table (fails if it already exists)")

    put = sub.add_parser("put", help="store a file and print its key as hex")
    put.add_argument("path", type=Path)

    get = sub.add_parser("get", help="fetch a blob by hex key")
    get.add_argument("key")
    get.add_argument("-o", "--output", type=Path, default=None)

    delete = sub.add_parser("delete", help="delete a blob by hex key")
    delete.add_argument("key")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    try:
        if args.command == "setup-db":
            setup_db(get_engine(), timeout_seconds=settings.DEFAULT_TIMEOUT_SECONDS)
            return 0

        store = build_blob_store(settings)
        if args.command == "put":
            key = store.put(args.path.read_bytes())
            print(key.hex())
        elif args.command == "get":
            data = store.get(bytes.fromhex(args.key))
            if args.output is None:
                sys.stdout.buffer.write(data)
            else:
                args.output.write_bytes(data)
        elif args.command == "delete":
            store.delete(bytes.fromhex(args.key))
    except (BlobStoreError, OSError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
