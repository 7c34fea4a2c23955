"""
Semantic validation of a parsed client configuration.

Schema checks (types, ranges) live in schema.py. This layer checks the
configuration as a whole and:
  1. Returns all issues at once (not just the first).
  2. Converts pydantic errors into the same ConfigIssue records.
  3. Separates blocking errors from warnings.

USAGE:
    result = validate_client_config(common, proxies, visitors)
    if not result.ok:
        raise result.to_error(source)
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from tunnelctl.config.schema import BaseProxyConfig, BaseVisitorConfig, ClientCommonConfig
from tunnelctl.errors import ConfigIssue, ValidationError

KNOWN_PLUGINS = frozenset({
    "",
    "socks5",
    "http_proxy",
    "static_file",
    "unix_domain_socket",
    "http2https",
    "https2http",
})


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    """
    Complete result of config validation.

    ok=True means zero errors. Always inspect .errors for details.
    """
    ok: bool
    errors: Tuple[ConfigIssue, ...]
    warnings: Tuple[str, ...] = ()

    def to_error(self, source: Optional[str] = None) -> ValidationError:
        return ValidationError(
            f"parse config error: {'; '.join(str(e) for e in self.errors)}",
            source=source,
            issues=self.errors,
        )


# ---------------------------------------------------------------------------
# Pydantic conversion
# ---------------------------------------------------------------------------

def pydantic_errors_to_issues(exc: PydanticValidationError, prefix: str = "") -> List[ConfigIssue]:
    """Convert a pydantic ValidationError into ConfigIssue records."""
    issues: List[ConfigIssue] = []
    for e in exc.errors():
        loc_parts = [str(p) for p in e.get("loc", [])]
        if prefix:
            loc_parts.insert(0, prefix)
        path = ".".join(loc_parts) if loc_parts else "<root>"

        err_type = e.get("type", "unknown")
        if "missing" in err_type:
            error_type = "missing"
        elif "type" in err_type or "parsing" in err_type:
            error_type = "type_error"
        else:
            error_type = "value_error"

        issues.append(ConfigIssue(path=path, message=e.get("msg", str(e)), error_type=error_type))
    return issues


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _duplicates(values: Iterable) -> List:
    return [v for v, n in Counter(values).items() if n > 1]


def _check_common(common: ClientCommonConfig) -> Tuple[List[ConfigIssue], List[str]]:
    errors: List[ConfigIssue] = []
    warnings: List[str] = []

    if common.server_port == 0:
        errors.append(ConfigIssue("common.server_port", "server_port must be in 1..65535", "value_error"))
    if not common.server_addr.strip():
        errors.append(ConfigIssue("common.server_addr", "server_addr is empty", "missing"))
    if common.tls_server_name and not common.tls_enable:
        warnings.append("tls_server_name is ignored because tls_enable is false")
    if common.log_way == "file" and not common.log_file.strip():
        errors.append(ConfigIssue("common.log_file", "log_file path is empty", "value_error"))
    return errors, warnings


def _check_proxies(proxies: Mapping[str, BaseProxyConfig]) -> List[ConfigIssue]:
    errors: List[ConfigIssue] = []

    for key, pxy in proxies.items():
        if pxy.name != key:
            errors.append(ConfigIssue(f"proxies.{key}.name", f"name {pxy.name!r} does not match key", "conflict"))
        if pxy.plugin not in KNOWN_PLUGINS:
            errors.append(ConfigIssue(f"proxies.{key}.plugin", f"unknown plugin {pxy.plugin!r}", "value_error"))

    for kind in ("tcp", "udp"):
        ports = [
            p.remote_port for p in proxies.values()
            if getattr(p, "type", None) == kind and getattr(p, "remote_port", 0)
        ]
        for port in _duplicates(ports):
            errors.append(ConfigIssue(
                f"proxies.{kind}.remote_port",
                f"remote_port {port} is used by more than one {kind} proxy",
                "conflict",
            ))
    return errors


def _check_visitors(visitors: Mapping[str, BaseVisitorConfig]) -> List[ConfigIssue]:
    errors: List[ConfigIssue] = []
    for key, vis in visitors.items():
        if vis.name != key:
            errors.append(ConfigIssue(f"visitors.{key}.name", f"name {vis.name!r} does not match key", "conflict"))

    binds = [(v.bind_addr, v.bind_port) for v in visitors.values()]
    for addr, port in _duplicates(binds):
        errors.append(ConfigIssue(
            "visitors.bind_port",
            f"{addr}:{port} is bound by more than one visitor",
            "conflict",
        ))
    return errors


def validate_client_config(
    common: ClientCommonConfig,
    proxies: Mapping[str, BaseProxyConfig],
    visitors: Mapping[str, BaseVisitorConfig],
) -> ValidationResult:
    """
    Validate one client configuration as a whole.

    Returns:
        ValidationResult with ok=True on success, or all issues.
    """
    all_errors: List[ConfigIssue] = []

    common_errors, warnings = _check_common(common)
    all_errors.extend(common_errors)
    all_errors.extend(_check_proxies(proxies))
    all_errors.extend(_check_visitors(visitors))

    for name in sorted(set(proxies) & set(visitors)):
        all_errors.append(ConfigIssue(name, "name is used by both a proxy and a visitor", "conflict"))

    known = set(proxies) | set(visitors)
    for name in common.start:
        if name not in known:
            all_errors.append(ConfigIssue("common.start", f"start references unknown proxy {name!r}", "value_error"))

    return ValidationResult(
        ok=len(all_errors) == 0,
        errors=tuple(all_errors),
        warnings=tuple(warnings),
    )
