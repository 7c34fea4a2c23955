# tests/conftest.py
from __future__ import annotations

import json
import logging
import socket
import threading
from typing import Any, Dict, List, Optional

import pytest

from tunnelctl.bootstrap.decoder import encode_bootstrap_payload
from tunnelctl.logging import logger as logger_module
from tunnelctl.runtime.signals import TerminationSignalHub


# -------------------------
# Logging isolation
# -------------------------

@pytest.fixture(autouse=True)
def _reset_tunnelctl_logging():
    """setup_logging() disables propagation; undo it so caplog keeps working."""
    yield
    root = logging.getLogger(logger_module.ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True
    root.setLevel(logging.NOTSET)
    logger_module._loggers_initialized = False
    logger_module._claimed_sources.clear()
    logger_module.set_correlation_id(None)


# -------------------------
# Payload helpers
# -------------------------

def make_payload(address: str = "203.0.113.5", port: int = 7000, aux: int = 7001) -> str:
    return encode_bootstrap_payload(address, port, aux)


@pytest.fixture
def payload():
    return make_payload()


# -------------------------
# Fake services
# -------------------------

class FakeService:
    """
    Stands in for ControlSessionService.

    run() blocks until graceful_close() or stop() is called, unless
    `run_error` is set (raised immediately) or `block` is False.
    """

    def __init__(self, ctx, *, run_error: Optional[BaseException] = None, block: bool = True,
                 close_delay: float = 0.0):
        self.ctx = ctx
        self.run_error = run_error
        self.block = block
        self.close_delay = close_delay
        self.started = threading.Event()
        self._stop = threading.Event()
        self.close_calls: List[float] = []

    def run(self) -> None:
        self.started.set()
        if self.run_error is not None:
            raise self.run_error
        if self.block:
            self._stop.wait(timeout=10)

    def graceful_close(self, timeout: float) -> None:
        self.close_calls.append(timeout)
        if self.close_delay:
            self._stop.wait(self.close_delay)
        self._stop.set()

    def stop(self) -> None:
        self._stop.set()


class FakeServiceFactory:
    """Records every service it builds; can be told to fail or to error in run()."""

    def __init__(self, *, fail_with: Optional[BaseException] = None,
                 run_error: Optional[BaseException] = None, block: bool = False):
        self.fail_with = fail_with
        self.run_error = run_error
        self.block = block
        self.built: List[FakeService] = []
        self._lock = threading.Lock()

    def __call__(self, ctx):
        if self.fail_with is not None:
            raise self.fail_with
        svc = FakeService(ctx, run_error=self.run_error, block=self.block)
        with self._lock:
            self.built.append(svc)
        return svc


@pytest.fixture
def fake_factory():
    return FakeServiceFactory()


@pytest.fixture
def make_factory():
    """The FakeServiceFactory class, for tests that need custom behavior."""
    return FakeServiceFactory


@pytest.fixture
def signal_hub():
    """A hub that never touches process signal state."""
    return TerminationSignalHub()


# -------------------------
# Local tunnel-server stand-in
# -------------------------

class LocalControlServer:
    """
    One-shot TCP server speaking newline-delimited JSON.

    Accepts one connection, records the first message, optionally replies,
    then either closes or holds the connection open until shutdown().
    """

    def __init__(self, reply: Optional[Dict[str, Any]] = None, hold_open: bool = False):
        self.reply = reply
        self.hold_open = hold_open
        self.received: List[Dict[str, Any]] = []
        self.got_login = threading.Event()
        self._release = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(1)
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        try:
            conn, _ = self._sock.accept()
        except OSError:
            return
        with conn:
            reader = conn.makefile("rb")
            line = reader.readline()
            if line:
                self.received.append(json.loads(line))
            self.got_login.set()
            if self.reply is not None:
                conn.sendall(json.dumps(self.reply).encode() + b"\n")
            if self.hold_open:
                while not self._release.is_set():
                    line = reader.readline()
                    if not line:
                        break
                    self.received.append(json.loads(line))
            reader.close()

    def shutdown(self) -> None:
        self._release.set()
        self._sock.close()
        self._thread.join(timeout=2)


@pytest.fixture
def control_server():
    servers: List[LocalControlServer] = []

    def _make(**kwargs) -> LocalControlServer:
        srv = LocalControlServer(**kwargs)
        servers.append(srv)
        return srv

    yield _make
    for srv in servers:
        srv.shutdown()


@pytest.fixture
def unused_tcp_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port
