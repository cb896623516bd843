from __future__ import annotations

import itertools
import socket
import sys

import pytest

from sportscache.common.settings import ProxySettings
from sportscache.supervisor.manager import WorkerSupervisor, bind_socket


def _exit_with_code(sock: socket.socket, settings: ProxySettings) -> None:
    sys.exit(3)


class FakeProcess:
    _sentinels = itertools.count(1000)

    def __init__(self, target, args, name) -> None:
        self.target = target
        self.args = args
        self.name = name
        self.sentinel = next(self._sentinels)
        self.pid = self.sentinel
        self.exitcode = None
        self.started = False
        self.terminated = False
        self.joined = False

    def start(self) -> None:
        self.started = True

    def join(self) -> None:
        self.joined = True
        if self.exitcode is None:
            self.exitcode = 0

    def is_alive(self) -> bool:
        return self.started and self.exitcode is None

    def terminate(self) -> None:
        self.terminated = True
        self.exitcode = -15


class FakeContext:
    def __init__(self) -> None:
        self.processes: list[FakeProcess] = []

    def Process(self, target, args, name) -> FakeProcess:  # noqa: N802 - mirrors multiprocessing
        process = FakeProcess(target, args, name)
        self.processes.append(process)
        return process


def _settings(**overrides) -> ProxySettings:
    values = {"listen_host": "127.0.0.1", "listen_port": 0, "workers": 2}
    values.update(overrides)
    return ProxySettings(**values)


@pytest.fixture
def supervisor_factory():
    created: list[WorkerSupervisor] = []

    def build(**overrides) -> tuple[WorkerSupervisor, FakeContext]:
        context = FakeContext()
        supervisor = WorkerSupervisor(_settings(**overrides), target=_exit_with_code, context=context)
        created.append(supervisor)
        return supervisor, context

    yield build
    for supervisor in created:
        if supervisor._socket is not None:
            supervisor._socket.close()


def test_bind_socket_is_inheritable() -> None:
    sock = bind_socket("127.0.0.1", 0)
    try:
        assert sock.get_inheritable() is True
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_start_spawns_one_worker_per_configured_slot(supervisor_factory) -> None:
    supervisor, context = supervisor_factory(workers=3)

    supervisor.start()

    assert len(context.processes) == 3
    assert all(process.started for process in context.processes)
    assert [process.name for process in context.processes] == [
        "sportscache-worker-1",
        "sportscache-worker-2",
        "sportscache-worker-3",
    ]
    assert all(process.args[0] is supervisor._socket for process in context.processes)
    assert supervisor.address[0] == "127.0.0.1"


def test_worker_count_defaults_to_cpu_count(monkeypatch) -> None:
    monkeypatch.setattr("sportscache.common.settings.os.cpu_count", lambda: 6)
    assert _settings(workers=None).worker_count == 6
    monkeypatch.setattr("sportscache.common.settings.os.cpu_count", lambda: None)
    assert _settings(workers=None).worker_count == 1


def test_dead_worker_is_not_replaced_by_default(supervisor_factory) -> None:
    supervisor, context = supervisor_factory()
    supervisor.start()
    first = context.processes[0]
    first.exitcode = 1

    supervisor.reap(first.sentinel)

    assert first.joined is True
    assert len(context.processes) == 2
    assert len(supervisor.workers) == 1


def test_dead_worker_is_replaced_when_restart_enabled(supervisor_factory) -> None:
    supervisor, context = supervisor_factory(restart_workers=True)
    supervisor.start()
    first = context.processes[0]
    first.exitcode = 1

    supervisor.reap(first.sentinel)

    assert len(context.processes) == 3
    assert context.processes[-1].name == "sportscache-worker-3"
    assert len(supervisor.workers) == 2


def test_stop_terminates_workers_and_suppresses_restart(supervisor_factory) -> None:
    supervisor, context = supervisor_factory(restart_workers=True)
    supervisor.start()

    supervisor.stop()
    for process in list(context.processes):
        supervisor.reap(process.sentinel)

    assert all(process.terminated for process in context.processes)
    assert len(context.processes) == 2
    assert supervisor.workers == []


@pytest.mark.skipif(not sys.platform.startswith("linux"), reason="requires fork")
def test_run_returns_once_every_forked_worker_has_exited(monkeypatch) -> None:
    exit_codes: list[int] = []
    original_reap = WorkerSupervisor.reap

    def recording_reap(self, sentinel):
        process = self._workers[sentinel]
        original_reap(self, sentinel)
        exit_codes.append(process.exitcode)

    monkeypatch.setattr(WorkerSupervisor, "reap", recording_reap)
    supervisor = WorkerSupervisor(_settings(workers=2), target=_exit_with_code)

    supervisor.run()

    assert exit_codes == [3, 3]
    assert supervisor.workers == []
    assert supervisor.address is None
