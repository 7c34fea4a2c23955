"""
Configuration schema using Pydantic for validation.

Single source of truth for every client setting, whether it comes from an
INI/YAML file, a remote URL, the built-in default source or the command
line. All models are frozen: a resolved configuration is never mutated, a
changed copy is made with model_copy(update=...).
"""

from __future__ import annotations

import ipaddress
import re
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


# ============================================================================
# ENUMS
# ============================================================================

class Protocol(str, Enum):
    """Transport between client and server."""
    TCP = "tcp"
    KCP = "kcp"
    QUIC = "quic"
    WEBSOCKET = "websocket"
    WSS = "wss"


# Session-oriented transports that need an explicit teardown on exit.
GRACEFUL_CLOSE_PROTOCOLS = frozenset({Protocol.KCP, Protocol.QUIC})


class LogLevel(str, Enum):
    """Client log levels."""
    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_BANDWIDTH_RE = re.compile(r"^[0-9]+(KB|MB)$")


def _split_list(value: Any) -> Any:
    """Accept 'a, b' strings (INI / flags) as well as real sequences."""
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(p.strip() for p in value.split(",") if p.strip())
    return value


def _lower(value: Any) -> Any:
    return value.strip().lower() if isinstance(value, str) else value


# ============================================================================
# COMMON CONFIGURATION
# ============================================================================

class ClientCommonConfig(BaseModel):
    """
    Settings shared by every proxy of one client instance ([common]).

    RULES:
    - Ports in 0..65535 (a usable server_port is enforced by the validator)
    - dns_server, when set, must be an IP address
    - log_file is "console" or a file path
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    server_addr: str = Field(default="0.0.0.0", min_length=1)
    server_port: int = Field(default=7000, ge=0, le=65535)
    user: str = ""
    protocol: Protocol = Protocol.TCP
    token: str = ""

    tls_enable: bool = True
    tls_server_name: str = ""

    log_file: str = "console"
    log_level: LogLevel = LogLevel.INFO
    log_max_days: int = Field(default=3, ge=0)
    disable_log_color: bool = False

    dns_server: str = ""
    start: Tuple[str, ...] = ()
    login_fail_exit: bool = True

    @field_validator("protocol", "log_level", mode="before")
    @classmethod
    def _normalize_enum(cls, v):
        return _lower(v)

    @field_validator("start", mode="before")
    @classmethod
    def _parse_start(cls, v):
        return _split_list(v)

    @field_validator("dns_server")
    @classmethod
    def _validate_dns_server(cls, v: str) -> str:
        v = v.strip()
        if v:
            try:
                ipaddress.ip_address(v)
            except ValueError:
                raise ValueError(f"dns_server must be an IP address, got {v!r}")
        return v

    @property
    def log_way(self) -> str:
        return "console" if self.log_file == "console" else "file"

    @property
    def requires_graceful_close(self) -> bool:
        return self.protocol in GRACEFUL_CLOSE_PROTOCOLS


# ============================================================================
# PROXIES
# ============================================================================

class BaseProxyConfig(BaseModel):
    """Fields every proxy type carries."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    local_ip: str = "127.0.0.1"
    local_port: int = Field(default=0, ge=0, le=65535)
    use_encryption: bool = False
    use_compression: bool = False
    bandwidth_limit: str = ""

    # Plugins replace the local service (socks5, http_proxy, ...).
    # plugin_params holds their auxiliary parameters, e.g. plugin_user.
    plugin: str = ""
    plugin_params: Dict[str, str] = Field(default_factory=dict)

    @field_validator("bandwidth_limit")
    @classmethod
    def _validate_bandwidth(cls, v: str) -> str:
        v = v.strip().upper()
        if v and not _BANDWIDTH_RE.match(v):
            raise ValueError(f"bandwidth_limit must look like '100KB' or '1MB', got {v!r}")
        return v

    @model_validator(mode="after")
    def _local_service_or_plugin(self):
        if not self.plugin and self.local_port == 0:
            raise ValueError("local_port is required when no plugin is set")
        return self


class TCPProxyConfig(BaseProxyConfig):
    type: Literal["tcp"] = "tcp"
    remote_port: int = Field(default=0, ge=0, le=65535)


class UDPProxyConfig(BaseProxyConfig):
    type: Literal["udp"] = "udp"
    remote_port: int = Field(default=0, ge=0, le=65535)


class _DomainProxyConfig(BaseProxyConfig):
    custom_domains: Tuple[str, ...] = ()
    subdomain: str = ""

    @field_validator("custom_domains", mode="before")
    @classmethod
    def _parse_domains(cls, v):
        return _split_list(v)

    @model_validator(mode="after")
    def _require_domain(self):
        if not self.custom_domains and not self.subdomain:
            raise ValueError("custom_domains or subdomain must be set")
        return self


class HTTPProxyConfig(_DomainProxyConfig):
    type: Literal["http"] = "http"
    locations: Tuple[str, ...] = ()
    http_user: str = ""
    http_pwd: str = ""
    host_header_rewrite: str = ""

    @field_validator("locations", mode="before")
    @classmethod
    def _parse_locations(cls, v):
        return _split_list(v)


class HTTPSProxyConfig(_DomainProxyConfig):
    type: Literal["https"] = "https"


class STCPProxyConfig(BaseProxyConfig):
    type: Literal["stcp"] = "stcp"
    sk: str = ""


class XTCPProxyConfig(BaseProxyConfig):
    type: Literal["xtcp"] = "xtcp"
    sk: str = ""


ProxyConfig = Annotated[
    Union[
        TCPProxyConfig,
        UDPProxyConfig,
        HTTPProxyConfig,
        HTTPSProxyConfig,
        STCPProxyConfig,
        XTCPProxyConfig,
    ],
    Field(discriminator="type"),
]

PROXY_ADAPTER: TypeAdapter = TypeAdapter(ProxyConfig)


# ============================================================================
# VISITORS
# ============================================================================

class BaseVisitorConfig(BaseModel):
    """Local side of a secret (stcp/xtcp) proxy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    server_name: str = Field(min_length=1)
    sk: str = ""
    bind_addr: str = "127.0.0.1"
    bind_port: int = Field(ge=1, le=65535)
    use_encryption: bool = False
    use_compression: bool = False


class STCPVisitorConfig(BaseVisitorConfig):
    type: Literal["stcp"] = "stcp"


class XTCPVisitorConfig(BaseVisitorConfig):
    type: Literal["xtcp"] = "xtcp"


VisitorConfig = Annotated[
    Union[STCPVisitorConfig, XTCPVisitorConfig],
    Field(discriminator="type"),
]

VISITOR_ADAPTER: TypeAdapter = TypeAdapter(VisitorConfig)

# Section keys that never become model fields.
ROLE_KEY = "role"
PLUGIN_PARAM_PREFIX = "plugin_"
