"""
Configuration system with Pydantic validation.

- schema:      client settings, proxy and visitor models
- loader:      config parser for INI/YAML, local/remote/default sources
- validator:   whole-config semantic checks
- resolver:    layering into one immutable RunContext per source
- credentials: ephemeral anonymous socks credentials
"""

from .schema import (
    ClientCommonConfig,
    BaseProxyConfig,
    BaseVisitorConfig,
    TCPProxyConfig,
    UDPProxyConfig,
    HTTPProxyConfig,
    HTTPSProxyConfig,
    STCPProxyConfig,
    XTCPProxyConfig,
    STCPVisitorConfig,
    XTCPVisitorConfig,
    Protocol,
    LogLevel,
)

from .loader import (
    ConfigLoader,
    ParsedConfig,
    is_remote_source,
)

__all__ = [
    "ClientCommonConfig",
    "BaseProxyConfig",
    "BaseVisitorConfig",
    "TCPProxyConfig",
    "UDPProxyConfig",
    "HTTPProxyConfig",
    "HTTPSProxyConfig",
    "STCPProxyConfig",
    "XTCPProxyConfig",
    "STCPVisitorConfig",
    "XTCPVisitorConfig",
    "Protocol",
    "LogLevel",
    "ConfigLoader",
    "ParsedConfig",
    "is_remote_source",
]
