"""
Runtime application - wires options, supervisor and service together.

EXIT CODES:
    0 = instance(s) ran and stopped, or directory mode finished
    1 = any startup failure in single-source mode (bad payload, unreadable
        or invalid config, service construction or login failure)

Directory mode always returns 0 once every worker is done; failures are
reported in the log per file.
"""

from __future__ import annotations

from typing import Optional

from tunnelctl.bootstrap.options import BootstrapOptions
from tunnelctl.config.loader import DEFAULT_SOURCE, ConfigLoader
from tunnelctl.errors import TunnelctlError
from tunnelctl.logging import LogStream, get_logger
from tunnelctl.runtime.signals import TerminationSignalHub, default_signal_hub
from tunnelctl.runtime.supervisor import InstanceSupervisor
from tunnelctl.service.base import ServiceFactory
from tunnelctl.service.control import ControlSessionService

logger = get_logger(LogStream.SYSTEM)


def run(
    options: BootstrapOptions,
    *,
    service_factory: Optional[ServiceFactory] = None,
    signal_hub: Optional[TerminationSignalHub] = None,
    loader: Optional[ConfigLoader] = None,
) -> int:
    supervisor = InstanceSupervisor(
        options,
        service_factory=service_factory or ControlSessionService,
        signal_hub=signal_hub or default_signal_hub(),
        loader=loader,
    )

    if options.config_dir:
        results = supervisor.run_directory(options.config_dir)
        err = supervisor.first_error(results)
        if err is not None:
            logger.warning("first failure in directory mode: %s", err)
        return 0

    source = DEFAULT_SOURCE if options.command is not None else options.config_file
    supervisor.run_single(source)
    return 0


def run_app(
    options: BootstrapOptions,
    *,
    service_factory: Optional[ServiceFactory] = None,
    signal_hub: Optional[TerminationSignalHub] = None,
    loader: Optional[ConfigLoader] = None,
) -> int:
    """
    Public entrypoint used by the CLI and tests. MUST return an int exit code.
    """
    try:
        return run(options, service_factory=service_factory, signal_hub=signal_hub, loader=loader)
    except TunnelctlError as e:
        logger.error("%s", e)
        return 1
    except Exception as e:
        logger.exception("Fatal error in run_app: %s", e)
        return 1
