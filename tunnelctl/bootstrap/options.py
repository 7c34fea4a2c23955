"""
Immutable bootstrap options.

Built exactly once at process start (from CLI flags + environment) and
passed by value into the resolver and supervisor. Nothing downstream reads
flags or environment variables directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from tunnelctl.config.env import env_int

DEFAULT_SPAWN_STAGGER_MS = 1
DEFAULT_GRACEFUL_CLOSE_MS = 500


@dataclass(frozen=True)
class CommandOverrides:
    """
    Configuration given entirely on the command line (tcp/udp/http/stcp
    sub-commands). Common settings plus one proxy or visitor.
    """
    server_addr: str = "127.0.0.1:7000"
    user: str = ""
    protocol: str = "tcp"
    token: str = ""
    log_level: str = "info"
    log_file: str = "console"
    log_max_days: int = 3
    disable_log_color: bool = False
    tls_enable: bool = True
    tls_server_name: str = ""
    dns_server: str = ""

    proxy_type: str = "tcp"
    proxy_name: str = ""
    local_ip: str = "127.0.0.1"
    local_port: int = 0
    remote_port: int = 0
    use_encryption: bool = False
    use_compression: bool = False
    bandwidth_limit: str = ""
    custom_domains: Tuple[str, ...] = ()
    subdomain: str = ""
    locations: Tuple[str, ...] = ()
    http_user: str = ""
    http_pwd: str = ""
    host_header_rewrite: str = ""
    role: str = "server"
    sk: str = ""
    server_name: str = ""
    bind_addr: str = "127.0.0.1"
    bind_port: int = 0


@dataclass(frozen=True)
class BootstrapOptions:
    """
    Everything the root command was asked to do.

    Attributes:
        config_file: single config source (path or http/https URL); "" = default
        config_dir: directory of config files (directory mode when set)
        server_addr_payload: encrypted address override ("" = none)
        token: auth token override
        remove_after_use: delete a local config file once it has been read
        enable_auth: inject anonymous socks credentials for the default source
        spawn_stagger_ms: delay between directory-mode worker spawns
        graceful_close_ms: time allowed for graceful close on termination signal
        command: flag-only configuration (sub-commands), if any
    """
    config_file: str = ""
    config_dir: str = ""
    server_addr_payload: str = ""
    token: str = ""
    remove_after_use: bool = False
    enable_auth: bool = True
    spawn_stagger_ms: int = DEFAULT_SPAWN_STAGGER_MS
    graceful_close_ms: int = DEFAULT_GRACEFUL_CLOSE_MS
    command: Optional[CommandOverrides] = field(default=None)

    @property
    def graceful_close_timeout(self) -> float:
        return self.graceful_close_ms / 1000.0

    @property
    def spawn_stagger(self) -> float:
        return self.spawn_stagger_ms / 1000.0

    @classmethod
    def from_env(cls, **values) -> "BootstrapOptions":
        """Build options, taking tunables from TUNNELCTL_* env vars unless given."""
        values.setdefault("spawn_stagger_ms", max(0, env_int("SPAWN_STAGGER_MS", DEFAULT_SPAWN_STAGGER_MS)))
        values.setdefault("graceful_close_ms", max(0, env_int("GRACEFUL_CLOSE_MS", DEFAULT_GRACEFUL_CLOSE_MS)))
        return cls(**values)
