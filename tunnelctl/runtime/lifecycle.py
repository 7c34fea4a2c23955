"""
Lifecycle Controller - start, run and stop one tunnel client instance.

STATE MACHINE:
    CREATED -> STARTING -> RUNNING -> GRACEFUL_CLOSING -> STOPPED
                   |           |
                   +-> STOPPED +-> STOPPED

CRITICAL RULES:
1. All transitions are pre-defined; anything else raises LifecycleError
2. Service construction failure -> STOPPED + StartupError (no retry)
3. Only kcp/quic instances get a signal watcher; a signal triggers
   graceful_close(timeout) on the service
4. run() blocks until the service's run loop returns, whatever the reason;
   the service's terminal error is re-raised unchanged
5. A controller is bound to exactly one RunContext and shares nothing
   with other controllers
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from tunnelctl.bootstrap.options import DEFAULT_GRACEFUL_CLOSE_MS
from tunnelctl.config.resolver import RunContext
from tunnelctl.errors import LifecycleError, StartupError
from tunnelctl.logging import (
    LogContext,
    LogStream,
    attach_instance_log,
    detach_instance_log,
    get_logger,
)
from tunnelctl.runtime.signals import TerminationSignalHub
from tunnelctl.service.base import ServiceFactory, TunnelService

logger = get_logger(LogStream.LIFECYCLE)


# ============================================================================
# STATES
# ============================================================================

class InstanceState(Enum):
    CREATED = "CREATED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    GRACEFUL_CLOSING = "GRACEFUL_CLOSING"
    STOPPED = "STOPPED"


VALID_TRANSITIONS: FrozenSet[Tuple[InstanceState, InstanceState]] = frozenset({
    (InstanceState.CREATED, InstanceState.STARTING),
    (InstanceState.STARTING, InstanceState.RUNNING),
    (InstanceState.STARTING, InstanceState.STOPPED),
    (InstanceState.RUNNING, InstanceState.GRACEFUL_CLOSING),
    (InstanceState.RUNNING, InstanceState.STOPPED),
    (InstanceState.GRACEFUL_CLOSING, InstanceState.STOPPED),
})


def is_valid_transition(from_state: InstanceState, to_state: InstanceState) -> bool:
    return (from_state, to_state) in VALID_TRANSITIONS


# ============================================================================
# SIGNAL WATCHER
# ============================================================================

class SignalWatcher:
    """
    Background thread that waits for a termination signal or for the
    instance to end, whichever comes first.
    """

    def __init__(self, hub: TerminationSignalHub, on_signal, name: str = "signal-watcher"):
        self._hub = hub
        self._on_signal = on_signal
        self._wake = threading.Event()
        self._signalled = threading.Event()
        self._token: Optional[int] = None
        self._thread = threading.Thread(target=self._watch, name=name, daemon=True)

    def start(self) -> None:
        self._token = self._hub.subscribe(self._notify)
        self._thread.start()

    def release(self) -> None:
        """Instance ended: wake the watcher without triggering a close."""
        self._wake.set()

    def join(self, timeout: Optional[float] = None) -> None:
        self._thread.join(timeout)
        if self._token is not None:
            self._hub.unsubscribe(self._token)
            self._token = None

    @property
    def signalled(self) -> bool:
        return self._signalled.is_set()

    @property
    def alive(self) -> bool:
        return self._thread.is_alive()

    def _notify(self, signum: int) -> None:
        self._signalled.set()
        self._wake.set()

    def _watch(self) -> None:
        self._wake.wait()
        if self._signalled.is_set():
            self._on_signal()


# ============================================================================
# CONTROLLER
# ============================================================================

class LifecycleController:
    """
    Owns one instance from construction to stop.

    Usage:
        controller = LifecycleController(ctx, service_factory=ControlSessionService,
                                         signal_hub=hub)
        controller.run()   # blocks; raises StartupError or the service's error
    """

    def __init__(
        self,
        run_context: RunContext,
        *,
        service_factory: ServiceFactory,
        signal_hub: TerminationSignalHub,
        graceful_close_timeout: float = DEFAULT_GRACEFUL_CLOSE_MS / 1000.0,
    ):
        self.ctx = run_context
        self._factory = service_factory
        self._hub = signal_hub
        self.graceful_close_timeout = graceful_close_timeout

        self._state = InstanceState.CREATED
        self._state_lock = threading.Lock()
        self.service: Optional[TunnelService] = None
        self.watcher: Optional[SignalWatcher] = None

    @property
    def state(self) -> InstanceState:
        with self._state_lock:
            return self._state

    def _transition(self, to_state: InstanceState) -> None:
        with self._state_lock:
            from_state = self._state
            if not is_valid_transition(from_state, to_state):
                raise LifecycleError(
                    f"invalid transition {from_state.value} -> {to_state.value}",
                    source=self.ctx.source,
                )
            self._state = to_state
        logger.debug("state %s -> %s", from_state.value, to_state.value)

    def _try_transition(self, to_state: InstanceState) -> bool:
        with self._state_lock:
            from_state = self._state
            if not is_valid_transition(from_state, to_state):
                return False
            self._state = to_state
        logger.debug("state %s -> %s", from_state.value, to_state.value)
        return True

    # ------------------------------------------------------------------

    def run(self) -> None:
        """
        Start the instance and block until it stops.

        Raises:
            StartupError: the service could not be constructed
            LifecycleError: run() called on a controller that is not CREATED
            Exception: whatever the service's run loop raised
        """
        with LogContext(self.ctx.source):
            log_handler = attach_instance_log(self.ctx.common, self.ctx.source)
            try:
                self._run()
            finally:
                detach_instance_log(log_handler)

    def _run(self) -> None:
        self._transition(InstanceState.STARTING)
        logger.info("start tunnel client for %s", self.ctx.label)

        try:
            self.service = self._factory(self.ctx)
        except Exception as e:
            self._transition(InstanceState.STOPPED)
            logger.error("create tunnel client service failed: %s", e)
            raise StartupError(f"create service failed: {e}", source=self.ctx.source) from e

        self._transition(InstanceState.RUNNING)

        if self.ctx.common.requires_graceful_close:
            self.watcher = SignalWatcher(
                self._hub,
                self._on_termination_signal,
                name=f"signal-watcher[{self.ctx.source or 'default'}]",
            )
            self.watcher.start()
            logger.debug("signal watcher started", extra={"protocol": self.ctx.common.protocol.value})

        try:
            self.service.run()
        except Exception as e:
            logger.error("tunnel client for %s stopped with error: %s", self.ctx.label, e)
            raise
        finally:
            if self.watcher is not None:
                self.watcher.release()
                self.watcher.join()
            self._try_transition(InstanceState.STOPPED)

        logger.info("tunnel client for %s stopped", self.ctx.label)

    def _on_termination_signal(self) -> None:
        # Runs on the watcher thread; the correlation context is per-thread.
        with LogContext(self.ctx.source):
            if not self._try_transition(InstanceState.GRACEFUL_CLOSING):
                return
            logger.info(
                "termination signal: graceful close (timeout %.3fs)",
                self.graceful_close_timeout,
            )
            self.service.graceful_close(self.graceful_close_timeout)
