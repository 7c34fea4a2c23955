"""
Configuration resolver: one immutable RunContext per config source.

LAYERING (lowest to highest priority):
    1. built-in defaults (schema defaults / default source)
    2. file settings (local or remote source)
    3. explicit command-level overrides (token, flag-only configuration)
    4. decoded bootstrap payload: server address/port, applied only when no
       address was resolved from a file source

INVARIANTS:
    - The default source requires a bootstrap override; without one the
      resolver fails before anything is started.
    - The semantic validation pass must succeed, else ValidationError.
    - Every RunContext owns deep copies of its proxy/visitor configs behind
      read-only mappings; nothing is shared between instances.
    - The auxiliary port only reaches the config parser.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from tunnelctl.bootstrap.decoder import DEFAULT_BOOTSTRAP_KEY, BootstrapKey, decode_bootstrap_payload
from tunnelctl.bootstrap.options import BootstrapOptions, CommandOverrides
from tunnelctl.config.credentials import inject_anonymous_credentials
from tunnelctl.config.loader import (
    ANONYMOUS_PROXY_NAME,
    DEFAULT_SOURCE,
    ConfigLoader,
    ParsedConfig,
    build_parsed_config,
    describe_source,
    is_remote_source,
)
from tunnelctl.config.schema import BaseProxyConfig, BaseVisitorConfig, ClientCommonConfig
from tunnelctl.config.validator import pydantic_errors_to_issues, validate_client_config
from tunnelctl.errors import BootstrapError, ValidationError
from tunnelctl.logging import LogStream, get_logger

logger = get_logger(LogStream.CONFIG)
bootstrap_logger = get_logger(LogStream.BOOTSTRAP)


# ---------------------------------------------------------------------------
# RunContext
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunContext:
    """
    Resolved configuration bundle for exactly one client instance.

    source: config path, URL, or "" for the default source.
    """
    common: ClientCommonConfig
    proxies: Mapping[str, BaseProxyConfig]
    visitors: Mapping[str, BaseVisitorConfig]
    source: str = DEFAULT_SOURCE

    def __post_init__(self) -> None:
        object.__setattr__(self, "proxies", MappingProxyType(
            {name: p.model_copy(deep=True) for name, p in self.proxies.items()}
        ))
        object.__setattr__(self, "visitors", MappingProxyType(
            {name: v.model_copy(deep=True) for name, v in self.visitors.items()}
        ))

    @property
    def is_default_source(self) -> bool:
        return self.source == DEFAULT_SOURCE

    @property
    def is_remote_source(self) -> bool:
        return is_remote_source(self.source)

    @property
    def label(self) -> str:
        return describe_source(self.source)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def split_host_port(addr: str) -> Tuple[str, int]:
    """Split 'host:port' / '[v6]:port'. Raises ValueError."""
    host, sep, port = addr.strip().rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"too many colons in address {addr!r}")
    if not port.isdigit():
        raise ValueError(f"invalid port {port!r}")
    return host, int(port)


def apply_start_filter(
    start: Tuple[str, ...],
    proxies: Mapping[str, BaseProxyConfig],
    visitors: Mapping[str, BaseVisitorConfig],
):
    """Keep only the proxies/visitors named in [common] start (empty = all)."""
    if not start:
        return dict(proxies), dict(visitors)
    wanted = set(start)
    return (
        {k: v for k, v in proxies.items() if k in wanted},
        {k: v for k, v in visitors.items() if k in wanted},
    )


def _command_proxy_section(cmd: CommandOverrides) -> Dict[str, Any]:
    name = cmd.proxy_name or f"{cmd.proxy_type}_{cmd.local_port}"
    if cmd.role == "visitor":
        return {
            "name": name,
            "type": cmd.proxy_type,
            "server_name": cmd.server_name,
            "sk": cmd.sk,
            "bind_addr": cmd.bind_addr,
            "bind_port": cmd.bind_port,
            "use_encryption": cmd.use_encryption,
            "use_compression": cmd.use_compression,
        }

    section: Dict[str, Any] = {
        "name": name,
        "type": cmd.proxy_type,
        "local_ip": cmd.local_ip,
        "local_port": cmd.local_port,
        "use_encryption": cmd.use_encryption,
        "use_compression": cmd.use_compression,
        "bandwidth_limit": cmd.bandwidth_limit,
    }
    if cmd.proxy_type in ("tcp", "udp"):
        section["remote_port"] = cmd.remote_port
    elif cmd.proxy_type in ("http", "https"):
        section["custom_domains"] = cmd.custom_domains
        section["subdomain"] = cmd.subdomain
        if cmd.proxy_type == "http":
            section["locations"] = cmd.locations
            section["http_user"] = cmd.http_user
            section["http_pwd"] = cmd.http_pwd
            section["host_header_rewrite"] = cmd.host_header_rewrite
    elif cmd.proxy_type in ("stcp", "xtcp"):
        section["sk"] = cmd.sk
    return section


def parse_command_config(cmd: CommandOverrides) -> ParsedConfig:
    """Build a configuration from command-line flags only (no file)."""
    try:
        host, port = split_host_port(cmd.server_addr)
    except ValueError as e:
        raise ValidationError(f"invalid server_addr: {e}", source=DEFAULT_SOURCE) from e

    raw_common = {
        "server_addr": host,
        "server_port": port,
        "user": cmd.user,
        "protocol": cmd.protocol,
        "token": cmd.token,
        "log_level": cmd.log_level,
        "log_file": cmd.log_file,
        "log_max_days": cmd.log_max_days,
        "disable_log_color": cmd.disable_log_color,
        "tls_enable": cmd.tls_enable,
        "tls_server_name": cmd.tls_server_name,
        "dns_server": cmd.dns_server,
    }
    section = _command_proxy_section(cmd)
    if cmd.role == "visitor":
        return build_parsed_config(raw_common, {}, {section["name"]: section}, source=DEFAULT_SOURCE)
    return build_parsed_config(raw_common, {section["name"]: section}, {}, source=DEFAULT_SOURCE)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class ConfigResolver:
    """
    Resolves config sources into RunContexts.

    Stateless apart from its injected collaborators, so one resolver may
    serve concurrent directory-mode workers.
    """

    def __init__(
        self,
        options: BootstrapOptions,
        *,
        loader: Optional[ConfigLoader] = None,
        key: BootstrapKey = DEFAULT_BOOTSTRAP_KEY,
    ) -> None:
        self.options = options
        self.loader = loader or ConfigLoader()
        self.key = key

    def resolve(self, source: str) -> RunContext:
        """
        Resolve one source into a RunContext.

        Raises:
            BootstrapError: the address-override payload is invalid
            ConfigSourceError: the source cannot be read or parsed
            ValidationError: the resolved configuration is invalid
        """
        opts = self.options

        try:
            override = decode_bootstrap_payload(opts.server_addr_payload, self.key)
        except BootstrapError as e:
            if e.source is None:
                e.source = source
            bootstrap_logger.error("decode server address payload failed: %s", e)
            raise
        if override is not None:
            bootstrap_logger.debug("server address override %s:%d", override.address, override.port)
        auxiliary_port = override.auxiliary_port if override else 0

        command_mode = opts.command is not None and source == DEFAULT_SOURCE
        if command_mode:
            parsed = parse_command_config(opts.command)
        else:
            parsed = self.loader.load(source, auxiliary_port)

        updates: Dict[str, Any] = {}
        if command_mode:
            pass
        elif source == DEFAULT_SOURCE:
            if override is None:
                err = ValidationError(
                    "server_addr must be specified when use default config file",
                    source=source,
                )
                logger.error(str(err))
                raise err
            updates["server_addr"] = override.address
            updates["server_port"] = override.port
            if opts.token:
                updates["token"] = opts.token
        else:
            if override is not None and "server_addr" not in parsed.explicit_common_keys:
                updates["server_addr"] = override.address
                updates["server_port"] = override.port
            if opts.token and "token" not in parsed.explicit_common_keys:
                updates["token"] = opts.token

        common = parsed.common
        if updates:
            try:
                common = ClientCommonConfig.model_validate({**common.model_dump(), **updates})
            except PydanticValidationError as e:
                issues = tuple(pydantic_errors_to_issues(e, prefix="common"))
                raise ValidationError(
                    f"parse config error: {'; '.join(str(i) for i in issues)}",
                    source=source,
                    issues=issues,
                ) from e

        # Names in start that match nothing stay unmatched and are reported below.
        proxies, visitors = apply_start_filter(common.start, parsed.proxies, parsed.visitors)

        result = validate_client_config(common, proxies, visitors)
        for warning in result.warnings:
            logger.warning(warning, extra={"source": source})
        if not result.ok:
            raise result.to_error(source)

        if source == DEFAULT_SOURCE and not command_mode and opts.enable_auth:
            proxies = inject_anonymous_credentials(proxies, ANONYMOUS_PROXY_NAME)
            if ANONYMOUS_PROXY_NAME in proxies:
                logger.info("Generated anonymous credentials for proxy [%s]", ANONYMOUS_PROXY_NAME)

        ctx = RunContext(common=common, proxies=proxies, visitors=visitors, source=source)
        logger.debug(
            "Resolved %s",
            ctx.label,
            extra={
                "server": f"{common.server_addr}:{common.server_port}",
                "protocol": common.protocol.value,
                "proxies": sorted(proxies),
                "visitors": sorted(visitors),
            },
        )
        return ctx


def resolve_run_context(
    source: str,
    options: BootstrapOptions,
    *,
    loader: Optional[ConfigLoader] = None,
    key: BootstrapKey = DEFAULT_BOOTSTRAP_KEY,
) -> RunContext:
    """Convenience wrapper around ConfigResolver(...).resolve(source)."""
    return ConfigResolver(options, loader=loader, key=key).resolve(source)
