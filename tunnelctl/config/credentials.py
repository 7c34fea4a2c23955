"""
Ephemeral credentials for the anonymous socks5 proxy.

When the client runs from the built-in default source, the socks5 plugin is
exposed on the server side; a fresh user/password pair is generated for
every invocation so the endpoint is never open without auth.
"""

from __future__ import annotations

import secrets
import string
from typing import Dict, Mapping

from tunnelctl.config.schema import BaseProxyConfig

USERNAME_LENGTH = 6
PASSWORD_LENGTH = 12

PLUGIN_USER_KEY = "plugin_user"
PLUGIN_PASSWD_KEY = "plugin_passwd"

_ALPHABET = string.ascii_letters + string.digits


def random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def inject_anonymous_credentials(
    proxies: Mapping[str, BaseProxyConfig],
    proxy_name: str,
) -> Dict[str, BaseProxyConfig]:
    """
    Return a copy of `proxies` where `proxy_name` (if present) carries a new
    random plugin_user / plugin_passwd pair. Other plugin params are kept.
    """
    out = dict(proxies)
    pxy = out.get(proxy_name)
    if pxy is None:
        return out

    params = dict(pxy.plugin_params)
    params[PLUGIN_USER_KEY] = random_string(USERNAME_LENGTH)
    params[PLUGIN_PASSWD_KEY] = random_string(PASSWORD_LENGTH)
    out[proxy_name] = pxy.model_copy(update={"plugin_params": params})
    return out
