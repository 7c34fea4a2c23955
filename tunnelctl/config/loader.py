"""
Configuration loader: turns a config source into structured settings.

Sources:
1. "" (empty)        -> built-in default configuration
2. http:// https://  -> fetched with requests
3. anything else     -> local file

Formats:
- INI (frpc style): [common] plus one section per proxy; sections with
  `role = visitor` are visitors; `plugin_*` keys become plugin_params.
- YAML: top-level `common`, `proxies`, `visitors` mappings.

The loader only checks the schema. Whole-config checks are done by
validator.validate_client_config, called by the resolver.
"""

from __future__ import annotations

import configparser
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional
from urllib.parse import urlparse

import requests
import yaml
from pydantic import ValidationError as PydanticValidationError

from tunnelctl.config.schema import (
    PLUGIN_PARAM_PREFIX,
    PROXY_ADAPTER,
    ROLE_KEY,
    VISITOR_ADAPTER,
    BaseProxyConfig,
    BaseVisitorConfig,
    ClientCommonConfig,
)
from tunnelctl.config.validator import pydantic_errors_to_issues
from tunnelctl.errors import ConfigIssue, ConfigSourceError, ValidationError
from tunnelctl.logging import LogStream, get_logger

logger = get_logger(LogStream.CONFIG)

COMMON_SECTION = "common"
DEFAULT_SOURCE = ""
ANONYMOUS_PROXY_NAME = "socks5"

# Used when no config source is given. The server address always comes from
# the bootstrap payload; remote_port is the payload's auxiliary port.
DEFAULT_CONFIG_TEMPLATE = """\
[common]
protocol = tcp
tls_enable = true
log_file = console
log_level = info
log_max_days = 3

[{anonymous_proxy}]
type = tcp
plugin = socks5
use_encryption = true
use_compression = true
remote_port = {remote_port}
"""

_YAML_SUFFIXES = (".yaml", ".yml")
_INI_SUFFIXES = (".ini", ".conf", ".cfg")


def is_remote_source(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


def describe_source(source: str) -> str:
    """Human label used in log lines."""
    if source == DEFAULT_SOURCE:
        return "default config file"
    if is_remote_source(source):
        return f"remote config file [{source}]"
    return f"local config file [{source}]"


@dataclass(frozen=True)
class ParsedConfig:
    """
    Output of the config parser.

    explicit_common_keys lists the [common] keys the source actually set, so
    the resolver can tell "file chose 0.0.0.0" from "file said nothing".
    """
    common: ClientCommonConfig
    proxies: Dict[str, BaseProxyConfig]
    visitors: Dict[str, BaseVisitorConfig]
    source: str = DEFAULT_SOURCE
    explicit_common_keys: FrozenSet[str] = field(default_factory=frozenset)


class ConfigLoader:
    """
    Reads and parses config sources.

    One loader can be shared by concurrent workers: it holds no per-source
    state, and remote fetches use a fresh request each time.
    """

    def __init__(self, http_timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.http_timeout = http_timeout
        self._session = session

    # -- reading -------------------------------------------------------------

    def read_source(self, source: str, auxiliary_port: int = 0) -> str:
        """Return the raw text of a config source."""
        if source == DEFAULT_SOURCE:
            return DEFAULT_CONFIG_TEMPLATE.format(
                anonymous_proxy=ANONYMOUS_PROXY_NAME,
                remote_port=auxiliary_port,
            )

        if is_remote_source(source):
            getter = self._session.get if self._session is not None else requests.get
            try:
                resp = getter(source, timeout=self.http_timeout)
                resp.raise_for_status()
            except requests.RequestException as e:
                raise ConfigSourceError(f"fetch remote config failed: {e}", source=source) from e
            return resp.text

        path = Path(source)
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigSourceError(f"read config file failed: {e}", source=source) from e

    # -- parsing -------------------------------------------------------------

    def load(self, source: str, auxiliary_port: int = 0) -> ParsedConfig:
        """
        Load and parse one config source.

        Args:
            source: path, http(s) URL, or "" for the default configuration
            auxiliary_port: auxiliary port decoded from the bootstrap payload

        Raises:
            ConfigSourceError: unreadable, unfetchable or unparsable source
            ValidationError: settings violate the schema
        """
        text = self.read_source(source, auxiliary_port)
        fmt = detect_format(source, text)
        logger.debug("Parsing config source", extra={"source": source, "format": fmt})

        if fmt == "yaml":
            raw_common, raw_proxies, raw_visitors = _split_yaml(text, source)
        else:
            raw_common, raw_proxies, raw_visitors = _split_ini(text, source)

        return build_parsed_config(raw_common, raw_proxies, raw_visitors, source=source)


def detect_format(source: str, text: str) -> str:
    """'yaml' or 'ini', by file suffix first, then by content."""
    path = urlparse(source).path if is_remote_source(source) else source
    lowered = path.lower()
    if lowered.endswith(_YAML_SUFFIXES):
        return "yaml"
    if lowered.endswith(_INI_SUFFIXES):
        return "ini"

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", ";")):
            continue
        return "ini" if stripped.startswith("[") else "yaml"
    return "ini"


# ---------------------------------------------------------------------------
# Format-specific splitting into raw dicts
# ---------------------------------------------------------------------------

def _split_section(name: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Move plugin_* keys into plugin_params and stamp the name."""
    out: Dict[str, Any] = {"name": name}
    params: Dict[str, str] = dict(raw.get("plugin_params") or {})
    for key, value in raw.items():
        if key == "plugin_params":
            continue
        if key.startswith(PLUGIN_PARAM_PREFIX):
            params[key] = "" if value is None else str(value)
        else:
            out[key] = value
    if params:
        out["plugin_params"] = params
    return out


def _route_sections(sections: Dict[str, Dict[str, Any]]):
    proxies: Dict[str, Dict[str, Any]] = {}
    visitors: Dict[str, Dict[str, Any]] = {}
    for name, raw in sections.items():
        raw = dict(raw or {})
        role = str(raw.pop(ROLE_KEY, "server") or "server").strip().lower()
        raw.setdefault("type", "tcp")
        if role == "visitor":
            visitors[name] = _split_section(name, raw)
        else:
            proxies[name] = _split_section(name, raw)
    return proxies, visitors


def _split_ini(text: str, source: str):
    parser = configparser.ConfigParser(interpolation=None, strict=True)
    try:
        parser.read_string(text, source=source or "<default>")
    except configparser.Error as e:
        raise ConfigSourceError(f"invalid INI config: {e}", source=source) from e

    if not parser.has_section(COMMON_SECTION):
        raise ConfigSourceError(
            f"invalid configuration file, not found [{COMMON_SECTION}] section",
            source=source,
        )

    common = dict(parser.items(COMMON_SECTION))
    sections = {
        name: dict(parser.items(name))
        for name in parser.sections()
        if name != COMMON_SECTION
    }
    proxies, visitors = _route_sections(sections)
    return common, proxies, visitors


def _split_yaml(text: str, source: str):
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigSourceError(f"invalid YAML config: {e}", source=source) from e

    if not isinstance(doc, dict) or not isinstance(doc.get(COMMON_SECTION), dict):
        raise ConfigSourceError(
            f"invalid configuration file, not found '{COMMON_SECTION}' mapping",
            source=source,
        )

    sections: Dict[str, Dict[str, Any]] = {}
    for key in ("proxies", "visitors"):
        group = doc.get(key) or {}
        if not isinstance(group, dict):
            raise ConfigSourceError(f"'{key}' must be a mapping of name -> settings", source=source)
        for name, raw in group.items():
            raw = dict(raw or {})
            if key == "visitors":
                raw.setdefault(ROLE_KEY, "visitor")
            sections[str(name)] = raw

    proxies, visitors = _route_sections(sections)
    return dict(doc[COMMON_SECTION]), proxies, visitors


# ---------------------------------------------------------------------------
# Model construction
# ---------------------------------------------------------------------------

def build_parsed_config(
    raw_common: Dict[str, Any],
    raw_proxies: Dict[str, Dict[str, Any]],
    raw_visitors: Dict[str, Dict[str, Any]],
    *,
    source: str = DEFAULT_SOURCE,
) -> ParsedConfig:
    """Validate raw dicts against the schema, collecting every error."""
    issues: List[ConfigIssue] = []

    # Empty INI values mean "unset". Unknown [common] keys are tolerated so
    # files written for newer clients still load.
    explicit: Dict[str, Any] = {}
    for key, value in raw_common.items():
        if value in (None, ""):
            continue
        if key not in ClientCommonConfig.model_fields:
            logger.warning("Ignoring unknown [common] key %r", key, extra={"source": source})
            continue
        explicit[key] = value

    common: Optional[ClientCommonConfig] = None
    try:
        common = ClientCommonConfig(**explicit)
    except PydanticValidationError as e:
        issues.extend(pydantic_errors_to_issues(e, prefix=COMMON_SECTION))
    except TypeError as e:
        issues.append(ConfigIssue(COMMON_SECTION, str(e), "type_error"))

    proxies: Dict[str, BaseProxyConfig] = {}
    for name, raw in raw_proxies.items():
        try:
            proxies[name] = PROXY_ADAPTER.validate_python(raw)
        except PydanticValidationError as e:
            issues.extend(pydantic_errors_to_issues(e, prefix=f"proxies.{name}"))

    visitors: Dict[str, BaseVisitorConfig] = {}
    for name, raw in raw_visitors.items():
        try:
            visitors[name] = VISITOR_ADAPTER.validate_python(raw)
        except PydanticValidationError as e:
            issues.extend(pydantic_errors_to_issues(e, prefix=f"visitors.{name}"))

    if issues:
        raise ValidationError(
            f"parse config error: {'; '.join(str(i) for i in issues)}",
            source=source,
            issues=tuple(issues),
        )

    return ParsedConfig(
        common=common,
        proxies=proxies,
        visitors=visitors,
        source=source,
        explicit_common_keys=frozenset(explicit),
    )
