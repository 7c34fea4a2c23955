"""
Control Session Service - the shipped tunneling-client service.

Opens one control session to the tunnel server and keeps it until the server
closes it or the lifecycle controller asks for a graceful close:

- tcp:            plain TCP, wrapped in TLS when tls_enable
- websocket/wss:  ws(s)://addr:port/~!frp via the websockets sync client
- kcp/quic:       UDP datagram session

Wire format: one JSON object per message (newline-delimited on streams, one
per frame on websocket, one per datagram on UDP). The first message is the
login; the server may answer with login_resp and pings.

Usage:
    service = ControlSessionService(run_context)
    service.run()                 # blocks
    service.graceful_close(0.5)   # from another thread
"""

from __future__ import annotations

import contextlib
import json
import socket
import ssl
import threading
import uuid
from typing import Any, Dict, Optional

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException
from websockets.sync.client import connect as ws_connect

from tunnelctl import __version__
from tunnelctl.config.schema import Protocol
from tunnelctl.errors import StartupError
from tunnelctl.logging import LogStream, get_logger

logger = get_logger(LogStream.SERVICE)

WEBSOCKET_PATH = "/~!frp"
MAX_DATAGRAM = 65535
DATAGRAM_POLL_S = 0.1
RETRY_INITIAL_S = 1.0
RETRY_MAX_S = 20.0

# Returned by Transport.recv() when nothing arrived within a poll interval.
_IDLE = object()


def _host_for_uri(addr: str) -> str:
    return f"[{addr}]" if ":" in addr else addr


def _insecure_tls_context() -> ssl.SSLContext:
    # The server is authenticated by token, not by certificate.
    ctx = ssl.create_default_context()
    ctx.check_hostname = False
    ctx.verify_mode = ssl.CERT_NONE
    return ctx


# ============================================================================
# TRANSPORTS
# ============================================================================

class _StreamTransport:
    """TCP (optionally TLS) with newline-delimited JSON."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._reader = sock.makefile("rb")

    def send(self, message: Dict[str, Any]) -> None:
        self._sock.sendall(json.dumps(message).encode("utf-8") + b"\n")

    def recv(self):
        line = self._reader.readline()
        if not line:
            return None
        return json.loads(line)

    def close(self) -> None:
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self._reader.close()
        self._sock.close()


class _WebSocketTransport:
    """One JSON message per text frame; the connection is held open as a context."""

    def __init__(self, ws):
        self._stack = contextlib.ExitStack()
        self._ws = self._stack.enter_context(ws)

    def send(self, message: Dict[str, Any]) -> None:
        self._ws.send(json.dumps(message))

    def recv(self):
        try:
            data = self._ws.recv()
        except ConnectionClosedOK:
            return None
        return json.loads(data)

    def close(self) -> None:
        self._stack.close()


class _DatagramTransport:
    """Connected UDP socket; recv polls so a close is noticed promptly."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._sock.settimeout(DATAGRAM_POLL_S)
        self._closed = threading.Event()

    def send(self, message: Dict[str, Any]) -> None:
        self._sock.send(json.dumps(message).encode("utf-8"))

    def recv(self):
        if self._closed.is_set():
            return None
        try:
            data = self._sock.recv(MAX_DATAGRAM)
        except socket.timeout:
            return _IDLE
        if not data:
            return None
        return json.loads(data)

    def close(self) -> None:
        self._closed.set()
        self._sock.close()


# ============================================================================
# SERVICE
# ============================================================================

class ControlSessionService:
    """
    Control session to a tunnel server for one RunContext.

    Thread model: run() owns the session on the calling thread;
    graceful_close() may be called from any other thread.
    """

    def __init__(self, run_context, *, run_id: Optional[str] = None):
        self.ctx = run_context
        self.common = run_context.common
        self.run_id = run_id or uuid.uuid4().hex[:16]

        self._lock = threading.Lock()
        self._transport = None
        self._closing = threading.Event()
        self._done = threading.Event()

        # Statistics
        self.messages_received = 0
        self.connect_attempts = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self) -> None:
        """
        Connect, log in, then read server messages until the session ends.

        Raises:
            StartupError: connect or login failed (and login_fail_exit is set)
            OSError / ConnectionClosed: the established session broke
        """
        try:
            delay = RETRY_INITIAL_S
            while True:
                transport, delay = self._connect_with_retry(delay)
                if transport is None:
                    return
                try:
                    self._login(transport)
                    self._read_loop(transport)
                    return
                except ConnectionRefusedError as e:
                    # A datagram session only learns the server is down when a reply fails.
                    if self.messages_received:
                        raise
                    delay = self._backoff("connect to server failed", e, delay)
                    if delay is None:
                        return
                finally:
                    self._release(transport)
        finally:
            self._done.set()

    def graceful_close(self, timeout: float) -> None:
        """Stop the session, waiting up to `timeout` seconds before force-closing."""
        self._closing.set()
        with self._lock:
            transport = self._transport

        if transport is not None:
            try:
                transport.send({"type": "close", "run_id": self.run_id})
            except (OSError, WebSocketException) as e:
                logger.debug("close notice not sent: %s", e)

        if self._done.wait(timeout):
            logger.info("graceful close finished")
            return

        logger.warning("graceful close timed out after %.3fs, forcing close", timeout)
        if transport is not None:
            self._release(transport)

    @property
    def closing(self) -> bool:
        return self._closing.is_set()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def _backoff(self, what: str, error: Exception, delay: float) -> Optional[float]:
        """
        Raise StartupError when login_fail_exit is set; otherwise wait `delay`
        and return the next delay, or None if a close was requested meanwhile.
        """
        if self.common.login_fail_exit:
            raise StartupError(f"{what}: {error}", source=self.ctx.source) from error
        logger.warning("%s: %s, retry in %.1fs", what, error, delay)
        if self._closing.wait(delay):
            return None
        return min(delay * 2, RETRY_MAX_S)

    def _connect_with_retry(self, delay: float):
        while True:
            self.connect_attempts += 1
            try:
                transport = self._open_transport()
            except (OSError, WebSocketException) as e:
                delay = self._backoff("connect to server failed", e, delay)
                if delay is None:
                    return None, RETRY_INITIAL_S
                continue

            with self._lock:
                if self._closing.is_set():
                    transport.close()
                    return None, delay
                self._transport = transport
            return transport, delay

    def _open_transport(self):
        c = self.common
        proto = c.protocol

        if proto in (Protocol.WEBSOCKET, Protocol.WSS):
            scheme = "wss" if proto == Protocol.WSS else "ws"
            uri = f"{scheme}://{_host_for_uri(c.server_addr)}:{c.server_port}{WEBSOCKET_PATH}"
            kwargs: Dict[str, Any] = {"open_timeout": None}
            if proto == Protocol.WSS:
                kwargs["ssl"] = _insecure_tls_context()
                kwargs["server_hostname"] = c.tls_server_name or c.server_addr
            logger.debug("opening websocket session", extra={"uri": uri})
            return _WebSocketTransport(ws_connect(uri, **kwargs))

        if proto in (Protocol.KCP, Protocol.QUIC):
            info = socket.getaddrinfo(c.server_addr, c.server_port, type=socket.SOCK_DGRAM)[0]
            sock = socket.socket(info[0], socket.SOCK_DGRAM)
            sock.connect(info[4])
            logger.debug("opened datagram session", extra={"protocol": proto.value})
            return _DatagramTransport(sock)

        sock = socket.create_connection((c.server_addr, c.server_port))
        if c.tls_enable:
            try:
                sock = _insecure_tls_context().wrap_socket(
                    sock, server_hostname=c.tls_server_name or c.server_addr
                )
            except (OSError, ssl.SSLError):
                sock.close()
                raise
        return _StreamTransport(sock)

    def login_message(self) -> Dict[str, Any]:
        c = self.common
        return {
            "type": "login",
            "version": __version__,
            "user": c.user,
            "token": c.token,
            "run_id": self.run_id,
            "proxies": {n: p.model_dump(mode="json") for n, p in self.ctx.proxies.items()},
            "visitors": {n: v.model_dump(mode="json") for n, v in self.ctx.visitors.items()},
        }

    def _login(self, transport) -> None:
        try:
            transport.send(self.login_message())
        except ConnectionRefusedError:
            raise
        except (OSError, WebSocketException) as e:
            raise StartupError(f"login to server failed: {e}", source=self.ctx.source) from e
        logger.info(
            "login sent to server %s:%s",
            self.common.server_addr,
            self.common.server_port,
            extra={"run_id": self.run_id, "protocol": self.common.protocol.value},
        )

    def _read_loop(self, transport) -> None:
        while not self._closing.is_set():
            try:
                msg = transport.recv()
            except (OSError, ConnectionClosed, ValueError):
                if self._closing.is_set():
                    return
                raise
            if msg is _IDLE:
                continue
            if msg is None:
                logger.info("server closed the session")
                return
            self.messages_received += 1
            self._handle(transport, msg)

    def _handle(self, transport, msg: Dict[str, Any]) -> None:
        kind = msg.get("type") if isinstance(msg, dict) else None

        if kind == "login_resp":
            error = msg.get("error") or ""
            if error:
                raise StartupError(f"login to server failed: {error}", source=self.ctx.source)
            logger.info("login to server success", extra={"run_id": msg.get("run_id", self.run_id)})
        elif kind == "ping":
            transport.send({"type": "pong"})
        else:
            logger.debug("server message", extra={"msg_type": kind})

    def _release(self, transport) -> None:
        with self._lock:
            if self._transport is transport:
                self._transport = None
        try:
            transport.close()
        except OSError as e:
            logger.debug("transport close failed: %s", e)
