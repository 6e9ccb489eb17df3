from __future__ import annotations

import threading
import time

import pytest

from ipfsblob.core.timeouts import TimeoutScope, timeout_scope
from ipfsblob.errors import BlobConfigurationError, BlobTimeoutError


def test_zero_timeout_never_expires_and_runs_inline() -> None:
    with timeout_scope(0) as scope:
        assert scope.deadline is None
        assert scope.remaining() is None
        assert scope.expired is False
        ran_on = scope.call("op", lambda: threading.current_thread())
    assert ran_on is threading.current_thread()


def test_bounded_scope_runs_call_and_returns_result() -> None:
    with timeout_scope(5) as scope:
        assert scope.call("op", lambda a, b=0: a + b, 2, b=3) == 5


def test_call_propagates_exceptions_from_downstream() -> None:
    def boom() -> None:
        raise ValueError("downstream failed")

    with timeout_scope(5) as scope, pytest.raises(ValueError, match="downstream failed"):
        scope.call("op", boom)


def test_elapsed_deadline_fails_without_starting_call() -> None:
    started = threading.Event()
    with timeout_scope(1e-9) as scope:
        time.sleep(0.001)
        with pytest.raises(BlobTimeoutError) as exc_info:
            scope.call("put", started.set)
    assert exc_info.value.op == "put"
    assert not started.is_set()


def test_slow_call_times_out_without_waiting_for_it() -> None:
    release = threading.Event()
    start = time.monotonic()
    with timeout_scope(0.1) as scope, pytest.raises(BlobTimeoutError):
        scope.call("get", release.wait, 5)
    assert time.monotonic() - start < 2
    release.set()


def test_scope_release_sets_cancelled_on_error_paths() -> None:
    scope_ref: list[TimeoutScope] = []
    with pytest.raises(RuntimeError), timeout_scope(1) as scope:
        scope_ref.append(scope)
        assert not scope.cancelled.is_set()
        raise RuntimeError("exit early")
    assert scope_ref[0].cancelled.is_set()


def test_negative_timeout_is_a_configuration_error() -> None:
    with pytest.raises(BlobConfigurationError):
        TimeoutScope(-1)
