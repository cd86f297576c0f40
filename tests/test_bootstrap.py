import threading
import time

import pytest

from cluster_runtime.bootstrap import BootstrapCoordinator, majority, wait_until
from cluster_runtime.errors import BootstrapCancelledError, BootstrapTimeoutError


class StubHandle:
    """Becomes ready after a number of probes; never when ready_after is None."""

    def __init__(self, node_id, ready_after=0):
        self.node_id = node_id
        self._ready_after = ready_after
        self.probes = 0

    def is_ready(self):
        self.probes += 1
        return self._ready_after is not None and self.probes > self._ready_after


def coordinator(**kwargs):
    kwargs.setdefault("timeout", 1.0)
    kwargs.setdefault("interval", 0.01)
    return BootstrapCoordinator(**kwargs)


@pytest.mark.parametrize("voters,expected", [(1, 1), (2, 2), (3, 2), (4, 3), (5, 3)])
def test_majority(voters, expected):
    assert majority(voters) == expected


def test_returns_when_all_targets_ready():
    handles = [StubHandle(0), StubHandle(1, ready_after=3), StubHandle(2, ready_after=1)]

    ready = coordinator().await_ready(handles)

    assert [handle.node_id for handle in ready] == [0, 1, 2]
    assert handles[1].probes == 4


def test_timeout_names_nodes_that_never_became_ready():
    handles = [StubHandle(0), StubHandle(1, ready_after=None), StubHandle(2, ready_after=None)]

    with pytest.raises(BootstrapTimeoutError) as info:
        coordinator(timeout=0.1).await_ready(handles)

    assert info.value.pending == [1, 2]
    assert "[1, 2]" in str(info.value)


def test_explicit_deadline_overrides_timeout():
    started = time.monotonic()

    with pytest.raises(BootstrapTimeoutError):
        coordinator(timeout=30.0).await_ready([StubHandle(0, ready_after=None)], deadline=time.monotonic() + 0.05)

    assert time.monotonic() - started < 5


def test_excluded_nodes_are_not_awaited():
    handles = [StubHandle(0), StubHandle(1, ready_after=None), StubHandle(2)]

    ready = coordinator().await_ready(handles, excluded=[1])

    assert [handle.node_id for handle in ready] == [0, 2]


def test_quorum_survives_one_excluded_voter_of_three():
    handles = [StubHandle(0, ready_after=None), StubHandle(1), StubHandle(2)]

    ready = coordinator().await_ready(handles, excluded=[0], quorum=True)

    assert [handle.node_id for handle in ready] == [1, 2]


def test_quorum_fails_fast_without_majority():
    handles = [StubHandle(0), StubHandle(1), StubHandle(2)]
    started = time.monotonic()

    with pytest.raises(BootstrapTimeoutError, match="Quorum unreachable") as info:
        coordinator(timeout=30.0).await_ready(handles, excluded=[0, 1], quorum=True)

    assert info.value.pending == [0, 1]
    assert time.monotonic() - started < 1
    assert handles[2].probes == 0


def test_cancel_event_aborts_wait():
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(BootstrapCancelledError):
        coordinator(cancel_event=cancel).await_ready([StubHandle(0, ready_after=None)])


def test_wait_until_returns_once_predicate_holds():
    calls = []

    def predicate():
        calls.append(1)
        return len(calls) >= 3

    wait_until(predicate, timeout=1.0, interval=0.01)

    assert len(calls) == 3


def test_wait_until_times_out_with_description():
    with pytest.raises(BootstrapTimeoutError, match="leader election"):
        wait_until(lambda: False, timeout=0.05, interval=0.01, description="leader election")


def test_wait_until_honors_cancellation():
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(BootstrapCancelledError):
        wait_until(lambda: False, timeout=5.0, interval=0.01, cancel_event=cancel)
