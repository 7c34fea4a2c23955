"""
Config parser: sources and formats.

INVARIANT:
    Every source (default, local file, http/https URL) in either format
    (INI, YAML) yields the same ParsedConfig shape, or a ConfigSourceError /
    ValidationError naming the source. The parser never mutates anything
    outside the value it returns.

TESTS:
    1.  Default source renders the built-in config with the auxiliary port.
    2.  INI: [common], proxies, role=visitor routing, plugin_* params.
    3.  YAML: common / proxies / visitors mappings.
    4.  Remote source fetched through requests; HTTP errors -> ConfigSourceError.
    5.  Missing file, missing [common], broken syntax -> ConfigSourceError.
    6.  Schema violations collected into one ValidationError.
    7.  explicit_common_keys lists only keys the source actually set.
"""

from unittest import mock

import pytest
import requests

from tunnelctl.config.loader import (
    ANONYMOUS_PROXY_NAME,
    ConfigLoader,
    describe_source,
    detect_format,
    is_remote_source,
)
from tunnelctl.config.schema import (
    HTTPProxyConfig,
    Protocol,
    STCPVisitorConfig,
    TCPProxyConfig,
)
from tunnelctl.errors import ConfigSourceError, ValidationError

INI_CONFIG = """\
[common]
server_addr = 198.51.100.7
server_port = 7100
token = s3cret
protocol = KCP
start = ssh, web

[ssh]
type = tcp
local_port = 22
remote_port = 6000
use_encryption = true

[web]
type = http
local_port = 8080
custom_domains = a.example.com, b.example.com

[socks]
plugin = socks5
plugin_user = alice
plugin_passwd = pw
remote_port = 6001

[ssh_visitor]
role = visitor
type = stcp
server_name = ssh
sk = abc
bind_port = 9000
"""

YAML_CONFIG = """\
common:
  server_addr: 198.51.100.8
  server_port: 7200
  tls_enable: false
proxies:
  ssh:
    type: tcp
    local_port: 22
    remote_port: 6000
visitors:
  secret:
    type: stcp
    server_name: ssh
    bind_port: 9001
"""


@pytest.fixture
def loader():
    return ConfigLoader()


class TestDefaultSource:

    def test_renders_anonymous_proxy_with_auxiliary_port(self, loader):
        parsed = loader.load("", auxiliary_port=1080)
        pxy = parsed.proxies[ANONYMOUS_PROXY_NAME]
        assert isinstance(pxy, TCPProxyConfig)
        assert pxy.remote_port == 1080
        assert pxy.plugin == "socks5"
        assert parsed.visitors == {}

    def test_default_source_sets_no_server_addr(self, loader):
        parsed = loader.load("", auxiliary_port=0)
        assert "server_addr" not in parsed.explicit_common_keys
        assert parsed.common.protocol == Protocol.TCP


class TestIniSource:

    def test_full_ini(self, loader, tmp_path):
        path = tmp_path / "client.ini"
        path.write_text(INI_CONFIG)
        parsed = loader.load(str(path))

        assert parsed.source == str(path)
        assert parsed.common.server_addr == "198.51.100.7"
        assert parsed.common.server_port == 7100
        assert parsed.common.protocol == Protocol.KCP
        assert parsed.common.start == ("ssh", "web")

        assert set(parsed.proxies) == {"ssh", "web", "socks"}
        assert parsed.proxies["ssh"].remote_port == 6000
        assert parsed.proxies["ssh"].use_encryption is True
        assert isinstance(parsed.proxies["web"], HTTPProxyConfig)
        assert parsed.proxies["web"].custom_domains == ("a.example.com", "b.example.com")

        socks = parsed.proxies["socks"]
        assert socks.type == "tcp"
        assert socks.plugin_params == {"plugin_user": "alice", "plugin_passwd": "pw"}

        vis = parsed.visitors["ssh_visitor"]
        assert isinstance(vis, STCPVisitorConfig)
        assert vis.bind_port == 9000

    def test_explicit_keys(self, loader, tmp_path):
        path = tmp_path / "client.ini"
        path.write_text("[common]\nserver_port = 7000\ntoken =\n")
        parsed = loader.load(str(path))
        assert parsed.explicit_common_keys == frozenset({"server_port"})

    def test_unknown_common_key_is_ignored(self, loader, tmp_path, caplog):
        path = tmp_path / "client.ini"
        path.write_text("[common]\nserver_addr = 10.0.0.1\nadmin_port = 7400\n")
        parsed = loader.load(str(path))
        assert parsed.common.server_addr == "10.0.0.1"
        assert "admin_port" in caplog.text

    def test_missing_common_section(self, loader, tmp_path):
        path = tmp_path / "client.ini"
        path.write_text("[ssh]\nlocal_port = 22\n")
        with pytest.raises(ConfigSourceError) as exc:
            loader.load(str(path))
        assert exc.value.source == str(path)

    def test_duplicate_section_is_source_error(self, loader, tmp_path):
        path = tmp_path / "client.ini"
        path.write_text("[common]\n[ssh]\nlocal_port = 22\n[ssh]\nlocal_port = 23\n")
        with pytest.raises(ConfigSourceError):
            loader.load(str(path))

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(ConfigSourceError):
            loader.load(str(tmp_path / "nope.ini"))

    def test_schema_errors_are_collected(self, loader, tmp_path):
        path = tmp_path / "client.ini"
        path.write_text(
            "[common]\nserver_port = notaport\n"
            "[a]\ntype = tcp\n"
            "[b]\ntype = http\nlocal_port = 80\n"
        )
        with pytest.raises(ValidationError) as exc:
            loader.load(str(path))
        paths = [issue.path for issue in exc.value.issues]
        assert any(p.startswith("common.server_port") for p in paths)
        assert any(p.startswith("proxies.a") for p in paths)
        assert any(p.startswith("proxies.b") for p in paths)


class TestYamlSource:

    def test_yaml_by_suffix(self, loader, tmp_path):
        path = tmp_path / "client.yaml"
        path.write_text(YAML_CONFIG)
        parsed = loader.load(str(path))
        assert parsed.common.server_addr == "198.51.100.8"
        assert parsed.common.tls_enable is False
        assert parsed.proxies["ssh"].local_port == 22
        assert parsed.visitors["secret"].server_name == "ssh"

    def test_yaml_by_content(self, loader, tmp_path):
        path = tmp_path / "client.conf.d"
        path.write_text(YAML_CONFIG)
        assert detect_format(str(path), YAML_CONFIG) == "yaml"
        assert loader.load(str(path)).common.server_port == 7200

    def test_yaml_without_common(self, loader, tmp_path):
        path = tmp_path / "client.yml"
        path.write_text("proxies: {}\n")
        with pytest.raises(ConfigSourceError):
            loader.load(str(path))

    def test_invalid_yaml(self, loader, tmp_path):
        path = tmp_path / "client.yml"
        path.write_text("common: [unclosed\n")
        with pytest.raises(ConfigSourceError):
            loader.load(str(path))


class TestRemoteSource:

    def _response(self, text, status=200):
        resp = mock.Mock()
        resp.text = text
        resp.status_code = status
        if status >= 400:
            resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
        else:
            resp.raise_for_status.return_value = None
        return resp

    def test_fetch_with_session(self):
        session = mock.Mock()
        session.get.return_value = self._response(INI_CONFIG)
        loader = ConfigLoader(http_timeout=3.0, session=session)

        parsed = loader.load("https://cfg.example.com/client.ini")

        session.get.assert_called_once_with("https://cfg.example.com/client.ini", timeout=3.0)
        assert parsed.common.server_addr == "198.51.100.7"

    def test_fetch_uses_requests_get_by_default(self):
        with mock.patch("tunnelctl.config.loader.requests.get") as get:
            get.return_value = self._response(YAML_CONFIG)
            parsed = ConfigLoader().load("http://cfg.example.com/client.yaml")
        assert parsed.common.server_port == 7200
        assert get.call_args.kwargs["timeout"] == 10.0

    def test_http_error(self):
        session = mock.Mock()
        session.get.return_value = self._response("", status=404)
        with pytest.raises(ConfigSourceError) as exc:
            ConfigLoader(session=session).load("http://cfg.example.com/missing.ini")
        assert exc.value.source == "http://cfg.example.com/missing.ini"

    def test_connection_error(self):
        session = mock.Mock()
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ConfigSourceError):
            ConfigLoader(session=session).load("http://cfg.example.com/client.ini")


class TestSourceHelpers:

    @pytest.mark.parametrize("source,remote", [
        ("http://x/y.ini", True),
        ("https://x/y.ini", True),
        ("./http.ini", False),
        ("", False),
    ])
    def test_is_remote(self, source, remote):
        assert is_remote_source(source) is remote

    def test_describe(self):
        assert describe_source("") == "default config file"
        assert describe_source("https://x/c.ini") == "remote config file [https://x/c.ini]"
        assert describe_source("conf.d/a.ini") == "local config file [conf.d/a.ini]"
