"""
tunnelctl command line.

USAGE:
    tunnelctl -c ./client.ini
    tunnelctl --config_dir ./conf.d
    tunnelctl -s <payload> -t <token>              # built-in default config
    tunnelctl tcp -s 203.0.113.5:7000 -l 22 -r 6000 -n ssh
    tunnelctl stcp --role visitor --server_name ssh --sk secret --bind_port 9000
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from tunnelctl import __version__
from tunnelctl.bootstrap.options import BootstrapOptions, CommandOverrides
from tunnelctl.config.env import env_flag, env_str, load_env
from tunnelctl.logging import setup_logging
from tunnelctl.runtime.app import run_app

SUB_COMMANDS = ("tcp", "udp", "http", "stcp")


def _csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _add_common_flags(p: argparse.ArgumentParser) -> None:
    p.add_argument("-s", "--server_addr", default="127.0.0.1:7000", help="tunnel server's address (host:port)")
    p.add_argument("-u", "--user", default="", help="user")
    p.add_argument("-p", "--protocol", default="tcp", help="tcp, kcp, quic, websocket, wss")
    p.add_argument("-t", "--token", default="", help="auth token")
    p.add_argument("--log_level", default="info", help="log level")
    p.add_argument("--log_file", default="console", help="console or file path")
    p.add_argument("--log_max_days", type=int, default=3, help="log file reserved days")
    p.add_argument("--disable_log_color", action="store_true", help="disable log color in console")
    p.add_argument("--tls_enable", action=argparse.BooleanOptionalAction, default=True, help="enable client tls")
    p.add_argument("--tls_server_name", default="", help="custom server name of the tls certificate")
    p.add_argument("--dns_server", default="", help="dns server instead of the system default one")


def _add_proxy_flags(p: argparse.ArgumentParser, proxy_type: str) -> None:
    p.add_argument("-n", "--proxy_name", default="", help="proxy name")
    p.add_argument("--ue", "--use_encryption", dest="use_encryption", action="store_true", help="use encryption")
    p.add_argument("--uc", "--use_compression", dest="use_compression", action="store_true", help="use compression")
    p.add_argument("--bandwidth_limit", default="", help="bandwidth limit, e.g. 1MB")

    p.add_argument("-i", "--local_ip", default="127.0.0.1", help="local ip")
    p.add_argument("-l", "--local_port", type=int, default=0, help="local port")

    if proxy_type in ("tcp", "udp"):
        p.add_argument("-r", "--remote_port", type=int, default=0, help="remote port")
    elif proxy_type == "http":
        p.add_argument("-d", "--custom_domain", dest="custom_domains", type=_csv, default=[], help="custom domains")
        p.add_argument("--sd", "--subdomain", dest="subdomain", default="", help="sub domain")
        p.add_argument("--locations", type=_csv, default=[], help="locations")
        p.add_argument("--http_user", default="", help="http auth user")
        p.add_argument("--http_pwd", default="", help="http auth password")
        p.add_argument("--host_header_rewrite", default="", help="host header rewrite")
    elif proxy_type == "stcp":
        p.add_argument("--role", default="server", choices=("server", "visitor"), help="server or visitor")
        p.add_argument("--sk", default="", help="secret key")
        p.add_argument("--server_name", default="", help="server name (visitor)")
        p.add_argument("--bind_addr", default="127.0.0.1", help="bind addr (visitor)")
        p.add_argument("--bind_port", type=int, default=0, help="bind port (visitor)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tunnelctl",
        description="tunnelctl - reverse-tunnel client bootstrap and supervisor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-c", "--config", default="", help="config file (path or http/https URL)")
    parser.add_argument("--config_dir", default="", help="run one client instance for each file in this directory")
    parser.add_argument("-v", "--version", action="store_true", help="print version and exit")
    parser.add_argument("-s", "--server_addr", dest="server_addr_payload", default="", help="encrypted server address")
    parser.add_argument("-t", "--token", default="", help="auth token")
    parser.add_argument("--remove", action="store_true", help="remove the config file after it has been read")
    parser.add_argument("--auth", action=argparse.BooleanOptionalAction, default=True, help="enable socks auth")

    sub = parser.add_subparsers(dest="command")
    for name in SUB_COMMANDS:
        sp = sub.add_parser(name, help=f"run a single {name} proxy from flags")
        _add_common_flags(sp)
        _add_proxy_flags(sp, name)
    return parser


def command_overrides_from_args(args: argparse.Namespace) -> CommandOverrides:
    """Flag-only configuration for the tcp/udp/http/stcp sub-commands."""
    values = dict(
        server_addr=args.server_addr,
        user=args.user,
        protocol=args.protocol,
        token=args.token,
        log_level=args.log_level,
        log_file=args.log_file,
        log_max_days=args.log_max_days,
        disable_log_color=args.disable_log_color,
        tls_enable=args.tls_enable,
        tls_server_name=args.tls_server_name,
        dns_server=args.dns_server,
        proxy_type=args.command,
        proxy_name=args.proxy_name,
        local_ip=args.local_ip,
        local_port=args.local_port,
        use_encryption=args.use_encryption,
        use_compression=args.use_compression,
        bandwidth_limit=args.bandwidth_limit,
    )
    for key in ("remote_port", "subdomain", "http_user", "http_pwd", "host_header_rewrite",
                "role", "sk", "server_name", "bind_addr", "bind_port"):
        if hasattr(args, key):
            values[key] = getattr(args, key)
    if hasattr(args, "custom_domains"):
        values["custom_domains"] = tuple(args.custom_domains)
    if hasattr(args, "locations"):
        values["locations"] = tuple(args.locations)
    return CommandOverrides(**values)


def options_from_args(args: argparse.Namespace) -> BootstrapOptions:
    """
    Root flags -> BootstrapOptions. Sub-command flags shadow the root -s/-t,
    so the root values are read from the dedicated dest names.
    """
    command = command_overrides_from_args(args) if args.command else None
    return BootstrapOptions.from_env(
        config_file=args.config,
        config_dir=args.config_dir,
        server_addr_payload=getattr(args, "server_addr_payload", ""),
        token="" if command is not None else args.token,
        remove_after_use=args.remove,
        enable_auth=args.auth,
        command=command,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return 0

    load_env()
    json_logs = env_str("JSON_LOGS")
    # Process-wide output; each instance applies its own log_level and
    # disable_log_color once it starts.
    setup_logging(
        console_level=env_str("CONSOLE_LOG_LEVEL", "info") or "info",
        use_colors=sys.stderr.isatty() and not env_flag("NO_COLOR"),
        json_log_file=json_logs or None,
        force=True,
    )

    return run_app(options_from_args(args))


if __name__ == "__main__":
    sys.exit(main())
