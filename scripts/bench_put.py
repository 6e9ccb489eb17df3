from __future__ import annotations

import os
import random
import sys
import time
from dataclasses import dataclass, replace

from ipfsblob.core.config import get_settings
from ipfsblob.storage.base import BlobStore
from ipfsblob.storage.factory import build_blob_store


@dataclass(frozen=True)
class BenchCase:
    name: str
    size: int
    n: int
    repl_factor_min: int = 0
    repl_factor_max: int = 0
    local: bool = False


SQL_CASES = [
    BenchCase(name="small data", size=32, n=100),
    BenchCase(name="large data", size=1000 * 1000, n=50),
]

CLUSTER_CASES = [
    BenchCase("full replication small data", 32, 30, -1, -1),
    BenchCase("default replication small data", 32, 30, 0, 0),
    BenchCase("default replication small data local", 32, 30, 0, 0, True),
    BenchCase("single peer small data", 32, 30, 1, 1),
    BenchCase("single peer small data local", 32, 30, 1, 1, True),
    BenchCase("full replication large data", 1000 * 1000, 10, -1, -1),
    BenchCase("default replication large data", 1000 * 1000, 10, 0, 0),
    BenchCase("single peer large data", 1000 * 1000, 10, 1, 1),
]


def _build_store(case: BenchCase) -> BlobStore:
    settings = get_settings()
    if settings.BLOB_BACKEND == "cluster":
        settings = settings.model_copy(
            update={
                "REPL_FACTOR_MIN": case.repl_factor_min,
                "REPL_FACTOR_MAX": case.repl_factor_max,
                "CLUSTER_LOCAL": case.local,
            }
        )
    return build_blob_store(settings)


def _run_case(case: BenchCase, store: BlobStore, rnd: random.Random) -> None:
    timings: list[float] = []
    for i in range(case.n):
        data = rnd.randbytes(case.size)
        start = time.perf_counter()
        try:
            store.put(data)
        except Exception as e:
            raise RuntimeError(f"{case.name}: failed to put at {i}: {e}") from e
        timings.append(time.perf_counter() - start)

    timings.sort()
    avg_ms = 1000.0 * sum(timings) / len(timings)
    p50_ms = 1000.0 * timings[len(timings) // 2]
    p99_ms = 1000.0 * timings[min(len(timings) - 1, int(len(timings) * 0.99))]
    print(f"{case.name}: n={case.n} avg={avg_ms:.2f}ms p50={p50_ms:.2f}ms p99={p99_ms:.2f}ms")


def main() -> None:
    seed = int(os.environ.get("BENCH_SEED", random.SystemRandom().randrange(2**63)))
    print(f"seed: {seed}")
    rnd = random.Random(seed)

    only = os.environ.get("BENCH_CASES", "")
    cases = CLUSTER_CASES if get_settings().BLOB_BACKEND == "cluster" else SQL_CASES
    if only:
        wanted = {c.strip() for c in only.split(",") if c.strip()}
        cases = [c for c in cases if c.name in wanted]
    if not cases:
        return
    scale = float(os.environ.get("BENCH_SCALE", "1"))
    # One sql store per process: each store restarts its key counter.
    sql_store = None if get_settings().BLOB_BACKEND == "cluster" else _build_store(cases[0])
    for case in cases:
        store = sql_store or _build_store(case)
        _run_case(replace(case, n=max(1, int(case.n * scale))), store, rnd)


if __name__ == "__main__":
    try:
        main()
    except Exception as e:  # noqa: BLE001
        print(f"bench failed: {e}", file=sys.stderr)
        raise SystemExit(1) from e
