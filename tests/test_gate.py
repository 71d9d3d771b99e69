import threading

from rsync_watch.gate import ActivityState, SyncGate


def _blocking_gate():
    release = threading.Event()
    started = threading.Event()
    runs = []
    gate = SyncGate()

    def target():
        while True:
            runs.append(1)
            started.set()
            release.wait(5)
            if not gate.pass_finished():
                return

    gate.target = target
    return gate, release, started, runs


def test_starts_in_quiescent_state():
    assert SyncGate().state is ActivityState.QUIESCENT


def test_request_while_active_marks_pending_once():
    gate, release, started, runs = _blocking_gate()

    gate.request_sync()
    assert started.wait(5)
    assert gate.state is ActivityState.ACTIVE

    for _ in range(100):
        gate.request_sync()
    assert gate.state is ActivityState.ACTIVE_PENDING

    release.set()
    assert gate.wait_idle(5)
    gate.join(5)
    # one pass for the first request, exactly one more for the burst
    assert len(runs) == 2
    assert gate.state is ActivityState.QUIESCENT


def test_pass_finished_transitions():
    gate = SyncGate()
    gate._state = ActivityState.ACTIVE_PENDING
    assert gate.pass_finished() is True
    assert gate.state is ActivityState.ACTIVE
    assert gate.pass_finished() is False
    assert gate.state is ActivityState.QUIESCENT


def test_only_one_worker_thread_at_a_time():
    gate, release, started, runs = _blocking_gate()
    gate.request_sync()
    assert started.wait(5)
    first = gate._thread
    gate.request_sync()
    assert gate._thread is first
    release.set()
    assert gate.wait_idle(5)


def test_crashing_target_returns_gate_to_quiescent():
    def boom():
        raise RuntimeError("boom")

    gate = SyncGate(target=boom)
    gate.request_sync()
    assert gate.wait_idle(5)
    gate.join(5)
    assert gate.state is ActivityState.QUIESCENT
