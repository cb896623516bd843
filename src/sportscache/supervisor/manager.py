"""Pre-fork supervisor running one proxy worker process per CPU core."""

from __future__ import annotations

import asyncio
import multiprocessing
import os
import signal
import socket
from multiprocessing.connection import wait
from typing import Callable, Optional

import structlog
import uvicorn

from ..common.observability import configure_logging
from ..common.settings import ProxySettings

LOGGER = structlog.get_logger("sportscache.supervisor")

WorkerTarget = Callable[[socket.socket, ProxySettings], None]


def bind_socket(host: str, port: int, backlog: int = 2048) -> socket.socket:
    """Bind the listening socket in the supervisor so every worker shares it."""

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind((host, port))
    sock.listen(backlog)
    sock.set_inheritable(True)
    return sock


def serve_worker(sock: socket.socket, settings: ProxySettings) -> None:
    # Imported here so the supervisor never builds an app or opens connections itself.
    from ..proxy.app import create_app

    configure_logging("sportscache.worker", settings.log_level, pid=os.getpid())
    config = uvicorn.Config(
        create_app(settings),
        log_config=None,
        log_level=settings.log_level.lower(),
        lifespan="on",
    )
    server = uvicorn.Server(config)
    asyncio.run(server.serve(sockets=[sock]))


class WorkerSupervisor:
    """Forks the worker pool and watches it.

    A worker that exits is logged; it is replaced only when
    ``restart_workers`` is enabled. ``run`` returns once no workers remain.
    """

    def __init__(
        self,
        settings: ProxySettings,
        target: WorkerTarget = serve_worker,
        context: Optional[multiprocessing.context.BaseContext] = None,
    ) -> None:
        self._settings = settings
        self._target = target
        self._context = context or multiprocessing.get_context("fork")
        self._workers: dict[int, multiprocessing.process.BaseProcess] = {}
        self._socket: Optional[socket.socket] = None
        self._stopping = False
        self._spawned = 0

    @property
    def workers(self) -> list[multiprocessing.process.BaseProcess]:
        return list(self._workers.values())

    @property
    def address(self) -> Optional[tuple]:
        return self._socket.getsockname() if self._socket else None

    def start(self) -> None:
        if self._socket is None:
            self._socket = bind_socket(self._settings.listen_host, self._settings.listen_port)
        count = self._settings.worker_count
        LOGGER.info(
            "supervisor_started",
            pid=os.getpid(),
            workers=count,
            host=self._settings.listen_host,
            port=self.address[1] if self.address else None,
        )
        for _ in range(count):
            self._spawn()

    def _spawn(self) -> None:
        self._spawned += 1
        process = self._context.Process(
            target=self._target,
            args=(self._socket, self._settings),
            name=f"sportscache-worker-{self._spawned}",
        )
        process.start()
        self._workers[process.sentinel] = process
        LOGGER.info("worker_started", pid=process.pid, name=process.name)

    def reap(self, sentinel: int) -> None:
        process = self._workers.pop(sentinel)
        process.join()
        LOGGER.warning("worker_exited", pid=process.pid, name=process.name, exit_code=process.exitcode)
        if self._settings.restart_workers and not self._stopping:
            self._spawn()

    def stop(self, signum: Optional[int] = None, _frame=None) -> None:
        if self._stopping:
            return
        self._stopping = True
        LOGGER.info("supervisor_stopping", signal=signum, workers=len(self._workers))
        for process in self._workers.values():
            if process.is_alive():
                process.terminate()

    def run(self) -> None:
        self.start()
        previous = {sig: signal.signal(sig, self.stop) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            while self._workers:
                for sentinel in wait(list(self._workers), timeout=1.0):
                    self.reap(sentinel)
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)
            if self._socket is not None:
                self._socket.close()
                self._socket = None
            LOGGER.info("supervisor_stopped")
