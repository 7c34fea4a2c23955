"""
Tunnel service contract.

A service is built from one RunContext by a ServiceFactory. The lifecycle
controller only ever calls run() once and graceful_close() at most once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tunnelctl.config.resolver import RunContext


@runtime_checkable
class TunnelService(Protocol):
    """Blocking tunneling-client service bound to one RunContext."""

    def run(self) -> None:
        """Block until the session ends. Raises on failure."""
        ...

    def graceful_close(self, timeout: float) -> None:
        """Stop taking new work, drain up to `timeout` seconds, then force-close."""
        ...


ServiceFactory = Callable[["RunContext"], TunnelService]
