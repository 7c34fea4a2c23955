"""
Runtime package - instance orchestration.

- signals:    process-wide termination signal hub
- lifecycle:  per-instance state machine and signal watcher
- supervisor: single-source and directory modes
- app:        run_app() entrypoint returning an exit code
"""

from .app import run_app
from .lifecycle import InstanceState, LifecycleController
from .signals import TerminationSignalHub, default_signal_hub
from .supervisor import InstanceSupervisor, TaskGroup, WorkerResult

__all__ = [
    "run_app",
    "InstanceState",
    "LifecycleController",
    "TerminationSignalHub",
    "default_signal_hub",
    "InstanceSupervisor",
    "TaskGroup",
    "WorkerResult",
]
