"""
Bootstrap inputs: the encrypted address override and the immutable options
value built once from the command line.
"""

from .decoder import (
    DEFAULT_BOOTSTRAP_KEY,
    BootstrapKey,
    BootstrapOverride,
    decode_bootstrap_payload,
    encode_bootstrap_payload,
)
from .options import BootstrapOptions, CommandOverrides

__all__ = [
    "DEFAULT_BOOTSTRAP_KEY",
    "BootstrapKey",
    "BootstrapOverride",
    "decode_bootstrap_payload",
    "encode_bootstrap_payload",
    "BootstrapOptions",
    "CommandOverrides",
]
