"""
Instance Supervisor - single-source and directory orchestration.

MODES:
- run_single(source): resolve one RunContext and run it synchronously;
  any failure propagates (process exits 1).
- run_directory(path): one worker thread per regular file (recursive,
  sorted), spawned with a small stagger. Worker failures are caught at the
  worker boundary, logged with the file path and never touch siblings.

Remove-after-use: a successfully resolved *local* source is deleted right
after resolution when BootstrapOptions.remove_after_use is set.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from tunnelctl.bootstrap.options import BootstrapOptions
from tunnelctl.config.loader import DEFAULT_SOURCE, ConfigLoader, is_remote_source
from tunnelctl.config.resolver import ConfigResolver, RunContext
from tunnelctl.errors import ConfigSourceError, WorkerError
from tunnelctl.logging import LogContext, LogStream, get_logger
from tunnelctl.runtime.lifecycle import LifecycleController
from tunnelctl.runtime.signals import TerminationSignalHub
from tunnelctl.service.base import ServiceFactory

logger = get_logger(LogStream.SUPERVISOR)


# ============================================================================
# TASK GROUP
# ============================================================================

@dataclass(frozen=True)
class WorkerResult:
    """Outcome of one directory-mode worker."""
    source: str
    error: Optional[WorkerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TaskGroup:
    """
    Spawn-and-join barrier for worker threads.

    Each task's exception is captured into its WorkerResult; join() returns
    results in spawn order once every worker has finished.
    """

    def __init__(self, name: str = "worker"):
        self.name = name
        self._threads: List[threading.Thread] = []
        self._results: List[Optional[WorkerResult]] = []
        self._lock = threading.Lock()

    def spawn(self, source: str, fn: Callable[[], None]) -> None:
        with self._lock:
            index = len(self._results)
            self._results.append(None)

        def _target():
            result = WorkerResult(source=source)
            try:
                fn()
            except Exception as e:
                err = e if isinstance(e, WorkerError) else WorkerError(str(e), source=source, cause=e)
                result = WorkerResult(source=source, error=err)
            with self._lock:
                self._results[index] = result

        t = threading.Thread(target=_target, name=f"{self.name}[{source}]", daemon=True)
        self._threads.append(t)
        t.start()

    def join(self) -> List[WorkerResult]:
        for t in self._threads:
            t.join()
        with self._lock:
            return [r for r in self._results if r is not None]

    def __len__(self) -> int:
        return len(self._threads)


# ============================================================================
# HELPERS
# ============================================================================

def list_config_files(directory: str) -> List[str]:
    """Regular files under `directory`, recursively, in sorted order."""
    root = Path(directory)
    if not root.is_dir():
        raise ConfigSourceError(f"config directory not found: {directory}", source=directory)

    files: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames.sort()
        for name in filenames:
            path = Path(dirpath) / name
            if path.is_file():
                files.append(str(path))
    return sorted(files)


def remove_source_after_use(source: str, options: BootstrapOptions) -> bool:
    """Delete a local config file if asked to. Returns True when removed."""
    if not options.remove_after_use or source == DEFAULT_SOURCE or is_remote_source(source):
        return False
    try:
        os.remove(source)
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning("remove config file %s failed: %s", source, e)
        return False
    logger.warning("config file %s has been removed", source)
    return True


# ============================================================================
# SUPERVISOR
# ============================================================================

class InstanceSupervisor:
    """
    Runs one instance per config source.

    Collaborators are injected so tests can use fake services, an
    uninstalled signal hub and a zero-delay sleep.
    """

    def __init__(
        self,
        options: BootstrapOptions,
        *,
        service_factory: ServiceFactory,
        signal_hub: TerminationSignalHub,
        loader: Optional[ConfigLoader] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.options = options
        self.service_factory = service_factory
        self.signal_hub = signal_hub
        self.resolver = ConfigResolver(options, loader=loader)
        self._sleep = sleep

    # ------------------------------------------------------------------

    def resolve(self, source: str) -> RunContext:
        ctx = self.resolver.resolve(source)
        remove_source_after_use(source, self.options)
        return ctx

    def run_context(self, ctx: RunContext) -> None:
        controller = LifecycleController(
            ctx,
            service_factory=self.service_factory,
            signal_hub=self.signal_hub,
            graceful_close_timeout=self.options.graceful_close_timeout,
        )
        controller.run()

    def run_single(self, source: str) -> None:
        """Resolve and run one source on the calling thread. Errors propagate."""
        with LogContext(source):
            ctx = self.resolve(source)
        self.run_context(ctx)

    # ------------------------------------------------------------------

    def run_directory(self, directory: str) -> List[WorkerResult]:
        """
        Run every config file under `directory` concurrently and wait for all.

        Returns the WorkerResults in spawn order.
        """
        files = list_config_files(directory)
        logger.info("starting %d instance(s) from %s", len(files), directory)

        group = TaskGroup(name="instance")
        for i, path in enumerate(files):
            if i > 0:
                self._sleep(self.options.spawn_stagger)
            group.spawn(path, self._worker(path))

        results = group.join()
        failed = [r for r in results if not r.ok]
        logger.info(
            "all instances finished: %d ok, %d failed",
            len(results) - len(failed),
            len(failed),
        )
        return results

    def _worker(self, path: str) -> Callable[[], None]:
        def _run():
            with LogContext(path):
                try:
                    self.run_single(path)
                except Exception as e:
                    logger.error("instance for %s failed: %s", path, e)
                    raise WorkerError(getattr(e, "message", str(e)), source=path, cause=e) from e
        return _run

    @staticmethod
    def first_error(results: List[WorkerResult]) -> Optional[WorkerError]:
        for r in results:
            if r.error is not None:
                return r.error
        return None
