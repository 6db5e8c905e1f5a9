"""
Unit tests for the admission controller.
"""

import socket
import threading

import pytest

from coolsocket.core import AdmissionController, ConnectionState


class RecordingExecutor:
    """Executor that records submissions instead of running them."""

    def __init__(self, result=True, error=None):
        self.submitted = []
        self.result = result
        self.error = error

    def submit(self, fn, *args):
        if self.error:
            raise self.error
        self.submitted.append((fn, args))
        return self.result


def noop(conn):
    pass


@pytest.fixture
def raw_sockets():
    """Factory for raw sockets (one end of a socketpair each)."""
    pairs = []

    def make():
        a, b = socket.socketpair()
        pairs.append((a, b))
        return a

    yield make

    for a, b in pairs:
        a.close()
        b.close()


class TestTryAdmit:
    """Tests for try_admit()."""

    def test_admits_and_submits(self, raw_sockets):
        """Test that an admitted socket is wrapped, registered and submitted."""
        executor = RecordingExecutor()
        admission = AdmissionController(executor, noop, max_connections=2, timeout=3.0)

        assert admission.try_admit(raw_sockets(), ("10.0.0.1", 5000)) is True

        assert admission.count() == 1
        fn, (conn,) = executor.submitted[0]
        assert fn is noop
        assert conn.state is ConnectionState.OPEN
        assert conn.address == ("10.0.0.1", 5000)
        assert conn.timeout == 3.0
        assert admission.is_active(conn)

    def test_rejects_at_capacity(self, raw_sockets):
        """Test that sockets beyond max_connections are rejected, not queued."""
        executor = RecordingExecutor()
        admission = AdmissionController(executor, noop, max_connections=2)

        assert admission.try_admit(raw_sockets(), ("a", 1))
        assert admission.try_admit(raw_sockets(), ("a", 2))
        assert admission.at_capacity
        assert admission.try_admit(raw_sockets(), ("a", 3)) is False

        assert admission.count() == 2
        assert len(executor.submitted) == 2
        assert admission.stats == {"active": 2, "max": 2, "admitted": 2, "rejected": 1}

    def test_release_frees_a_slot(self, raw_sockets):
        """Test that releasing a connection makes room for the next."""
        executor = RecordingExecutor()
        admission = AdmissionController(executor, noop, max_connections=1)

        admission.try_admit(raw_sockets(), ("a", 1))
        conn = executor.submitted[0][1][0]

        assert admission.try_admit(raw_sockets(), ("a", 2)) is False
        admission.release(conn)
        assert admission.try_admit(raw_sockets(), ("a", 3)) is True

    def test_release_is_idempotent(self, raw_sockets):
        """Test releasing an already released connection."""
        executor = RecordingExecutor()
        admission = AdmissionController(executor, noop)

        admission.try_admit(raw_sockets(), ("a", 1))
        conn = executor.submitted[0][1][0]

        admission.release(conn)
        admission.release(conn)
        assert admission.count() == 0

    def test_zero_means_unlimited(self, raw_sockets):
        """Test max_connections=0."""
        admission = AdmissionController(RecordingExecutor(), noop, max_connections=0)

        for port in range(25):
            assert admission.try_admit(raw_sockets(), ("a", port))

        assert admission.count() == 25
        assert not admission.at_capacity

    def test_executor_refusal_rolls_back(self, raw_sockets):
        """Test that a pool refusing the task leaves nothing registered."""
        executor = RecordingExecutor(error=RuntimeError("shutting down"))
        admission = AdmissionController(executor, noop)

        assert admission.try_admit(raw_sockets(), ("a", 1)) is False
        assert admission.count() == 0

    def test_executor_returning_false_rolls_back(self, raw_sockets):
        """Test an executor that reports refusal through its return value."""
        admission = AdmissionController(RecordingExecutor(result=False), noop)

        assert admission.try_admit(raw_sockets(), ("a", 1)) is False
        assert admission.count() == 0

    def test_future_returning_executor(self, raw_sockets):
        """Test that any non-False submit() result counts as accepted."""
        admission = AdmissionController(RecordingExecutor(result=object()), noop)

        assert admission.try_admit(raw_sockets(), ("a", 1)) is True

    def test_concurrent_admission_respects_limit(self, raw_sockets):
        """Test that racing admissions never exceed max_connections."""
        admission = AdmissionController(RecordingExecutor(), noop, max_connections=5)
        sockets = [raw_sockets() for _ in range(40)]
        results = []
        barrier = threading.Barrier(len(sockets))

        def admit(sock, port):
            barrier.wait()
            results.append(admission.try_admit(sock, ("a", port)))

        threads = [threading.Thread(target=admit, args=(s, i)) for i, s in enumerate(sockets)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 5
        assert admission.count() == 5
        assert admission.rejected_total == 35


class TestQueries:
    """Tests for the read-only operations."""

    def test_count_by_address(self, raw_sockets):
        """Test counting connections per remote host."""
        admission = AdmissionController(RecordingExecutor(), noop, max_connections=0)

        admission.try_admit(raw_sockets(), ("10.0.0.1", 1))
        admission.try_admit(raw_sockets(), ("10.0.0.1", 2))
        admission.try_admit(raw_sockets(), ("10.0.0.2", 1))

        assert admission.count_by_address("10.0.0.1") == 2
        assert admission.count_by_address("10.0.0.2") == 1
        assert admission.count_by_address("10.0.0.3") == 0

    def test_connections_snapshot(self, raw_sockets):
        """Test that connections() is a copy, oldest first."""
        admission = AdmissionController(RecordingExecutor(), noop, max_connections=0)
        for port in range(3):
            admission.try_admit(raw_sockets(), ("a", port))

        snapshot = admission.connections()
        snapshot.clear()

        assert admission.count() == 3
        ports = [c.remote_port for c in admission.connections()]
        assert sorted(ports) == [0, 1, 2]

    def test_for_each_may_release(self, raw_sockets):
        """Test that the callback can release connections without deadlock."""
        admission = AdmissionController(RecordingExecutor(), noop, max_connections=0)
        for port in range(3):
            admission.try_admit(raw_sockets(), ("a", port))

        def close_and_release(conn):
            conn.close()
            admission.release(conn)

        admission.for_each(close_and_release)

        assert admission.count() == 0
