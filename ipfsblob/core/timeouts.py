from __future__ import annotations

import threading
import time
from collections.abc import Callable, Generator
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from typing import Any, TypeVar

from ipfsblob.errors import BlobConfigurationError, BlobTimeoutError

T = TypeVar("T")


class TimeoutScope:
    """Deadline shared by every downstream call of one store operation.

    A zero timeout never expires. ``cancelled`` is set when the scope is
    released so helper threads started inside it can stop.
    """

    def __init__(self, timeout_seconds: float) -> None:
        if timeout_seconds < 0:
            raise BlobConfigurationError(f"timeout must be >= 0, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self.deadline = time.monotonic() + timeout_seconds if timeout_seconds > 0 else None
        self.cancelled = threading.Event()

    @property
    def bounded(self) -> bool:
        return self.deadline is not None

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check(self, op: str) -> None:
        if self.expired:
            raise BlobTimeoutError(
                "deadline elapsed", op=op, timeout_seconds=self.timeout_seconds
            )

    def wait(self, future: Future[T], *, op: str, message: str = "deadline elapsed") -> T:
        try:
            return future.result(timeout=self.remaining())
        except FutureTimeoutError:
            raise BlobTimeoutError(
                message, op=op, timeout_seconds=self.timeout_seconds
            ) from None

    def call(self, op: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking call, giving up once the deadline passes.

        The abandoned call keeps running on its thread: stopping the wait
        does not abort or roll back the underlying operation.
        """
        if self.deadline is None:
            return fn(*args, **kwargs)
        self.check(op)
        future = spawn(fn, *args, name=f"ipfsblob-{op}", **kwargs)
        return self.wait(future, op=op)

    def close(self) -> None:
        self.cancelled.set()


def spawn(fn: Callable[..., T], *args: Any, name: str, **kwargs: Any) -> Future[T]:
    future: Future[T] = Future()

    def _run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = fn(*args, **kwargs)
        except BaseException as e:  # noqa: BLE001
            future.set_exception(e)
        else:
            future.set_result(result)

    threading.Thread(target=_run, name=name, daemon=True).start()
    return future


@contextmanager
def timeout_scope(timeout_seconds: float) -> Generator[TimeoutScope, None, None]:
    scope = TimeoutScope(timeout_seconds)
    try:
        yield scope
    finally:
        scope.close()
