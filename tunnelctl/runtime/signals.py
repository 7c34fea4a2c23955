"""
Termination signal hub.

Python only lets the main thread install signal handlers, while instances
run on worker threads. The hub installs SIGINT/SIGTERM once and fans each
signal out to every subscribed watcher.

With no subscribers the previously installed handler runs, so a process
with only tcp instances keeps default Ctrl-C behavior.
"""

from __future__ import annotations

import signal
import threading
from typing import Callable, Dict, Iterable, Optional, Tuple

from tunnelctl.logging import LogStream, get_logger

logger = get_logger(LogStream.LIFECYCLE)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)

Subscriber = Callable[[int], None]


class TerminationSignalHub:
    """Fan-out of process termination signals to per-instance watchers."""

    def __init__(self, signals: Iterable[int] = TERMINATION_SIGNALS):
        self.signals = tuple(signals)
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Subscriber] = {}
        # Swapped under the lock; dispatch() reads it without the lock.
        self._snapshot: Tuple[Subscriber, ...] = ()
        self._next_id = 0
        self._previous: Dict[int, object] = {}
        self._installed = False

    # ------------------------------------------------------------------

    def install(self) -> bool:
        """
        Install handlers. Returns False (and does nothing) off the main thread.
        """
        if self._installed:
            return True
        if threading.current_thread() is not threading.main_thread():
            logger.debug("signal hub not installed: not on main thread")
            return False
        for signum in self.signals:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle)
        self._installed = True
        return True

    def uninstall(self) -> None:
        if not self._installed:
            return
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> int:
        with self._lock:
            token = self._next_id
            self._next_id += 1
            self._subscribers[token] = callback
            self._snapshot = tuple(self._subscribers.values())
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)
            self._snapshot = tuple(self._subscribers.values())

    @property
    def subscriber_count(self) -> int:
        return len(self._snapshot)

    def dispatch(self, signum: int, frame=None) -> int:
        """
        Deliver a signal to every subscriber. Returns how many were notified.

        Falls through to the previous handler when nobody is subscribed.
        Never takes the hub lock: it runs inside the signal handler on the
        main thread, which may already hold it.
        """
        targets = self._snapshot

        if not targets:
            self._call_previous(signum, frame)
            return 0

        logger.info("received signal %s", signal.Signals(signum).name, extra={"subscribers": len(targets)})
        for callback in targets:
            callback(signum)
        return len(targets)

    def _handle(self, signum, frame):
        self.dispatch(signum, frame)

    def _call_previous(self, signum: int, frame) -> None:
        previous = self._previous.get(signum)
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL or (previous is None and signum == signal.SIGINT):
            if signum == signal.SIGINT:
                raise KeyboardInterrupt
            raise SystemExit(128 + signum)


_default_hub: Optional[TerminationSignalHub] = None
_default_lock = threading.Lock()


def default_signal_hub() -> TerminationSignalHub:
    """Process-wide hub, installed on first use from the main thread."""
    global _default_hub
    with _default_lock:
        if _default_hub is None:
            _default_hub = TerminationSignalHub()
        hub = _default_hub
    hub.install()
    return hub
