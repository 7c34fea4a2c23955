"""
Bootstrap payload decoder.

The payload is an address override handed to the client on the command line:

    base64( AES-128-CBC( pkcs7( "<address>:<port>:<auxiliaryPort>" ) ) )

INVARIANTS:
    - Exactly 3 colon-separated fields, or FormatError.
    - Port fields are non-negative base-10 integers (ASCII digits only).
    - The final padding byte lies in [1, len(plaintext)], or PaddingError.
    - Empty payload means "no override": decode is skipped, result is None.

The key only obfuscates the payload. It is injected as an immutable
BootstrapKey so tests can substitute their own key/IV.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tunnelctl.errors import CipherError, DecodeError, FormatError, PaddingError

BLOCK_SIZE = 16

_PORT_RE = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class BootstrapKey:
    """AES-128 key and CBC initialization vector (16 bytes each)."""
    key: bytes
    iv: bytes

    def __post_init__(self) -> None:
        if len(self.key) != BLOCK_SIZE:
            raise ValueError(f"bootstrap key must be {BLOCK_SIZE} bytes, got {len(self.key)}")
        if len(self.iv) != BLOCK_SIZE:
            raise ValueError(f"bootstrap iv must be {BLOCK_SIZE} bytes, got {len(self.iv)}")

    def _cipher(self) -> Cipher:
        return Cipher(algorithms.AES(self.key), modes.CBC(self.iv))


DEFAULT_BOOTSTRAP_KEY = BootstrapKey(key=b"1234561234561234", iv=b"1234561234561234")


@dataclass(frozen=True)
class BootstrapOverride:
    """Decoded server address override."""
    address: str
    port: int
    auxiliary_port: int


# ---------------------------------------------------------------------------
# PKCS#7
# ---------------------------------------------------------------------------

def pkcs7_pad(data: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    n = block_size - (len(data) % block_size)
    return data + bytes([n]) * n


def pkcs7_unpad(data: bytes) -> bytes:
    """Strip PKCS#7 padding. Only the trailing count byte is checked."""
    length = len(data)
    if length == 0:
        raise PaddingError("data is empty")
    unpadding = data[-1]
    if unpadding <= 0 or unpadding > length:
        raise PaddingError(f"invalid padding byte {unpadding} for {length} bytes")
    return data[: length - unpadding]


# ---------------------------------------------------------------------------
# Decode / encode
# ---------------------------------------------------------------------------

def _parse_port(raw: str, field_name: str) -> int:
    if not _PORT_RE.fullmatch(raw):
        raise FormatError(f"{field_name} is not a non-negative integer: {raw!r}")
    return int(raw, 10)


def parse_plaintext(plaintext: str) -> BootstrapOverride:
    parts = plaintext.split(":")
    if len(parts) != 3:
        raise FormatError(f"invalid plaintext format: expected 3 fields, got {len(parts)}")
    address, port, aux = parts
    return BootstrapOverride(
        address=address,
        port=_parse_port(port, "port"),
        auxiliary_port=_parse_port(aux, "auxiliary port"),
    )


def decrypt_payload(payload: str, key: BootstrapKey = DEFAULT_BOOTSTRAP_KEY) -> bytes:
    """base64 -> AES-CBC decrypt -> unpad. Returns raw plaintext bytes."""
    try:
        ciphertext = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"malformed base64 payload: {e}") from e

    if len(ciphertext) % BLOCK_SIZE != 0:
        raise CipherError(
            f"ciphertext length {len(ciphertext)} is not a multiple of the block size {BLOCK_SIZE}"
        )

    decryptor = key._cipher().decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    return pkcs7_unpad(padded)


def decode_bootstrap_payload(
    payload: Optional[str],
    key: BootstrapKey = DEFAULT_BOOTSTRAP_KEY,
) -> Optional[BootstrapOverride]:
    """
    Decode an encrypted address override.

    Returns None when the payload is empty (no override requested).

    Raises:
        DecodeError: malformed base64
        CipherError: ciphertext not a multiple of the block size
        PaddingError: corrupt PKCS#7 trailer or empty ciphertext
        FormatError: wrong field count or non-numeric port
    """
    if payload is None or not payload.strip():
        return None

    plaintext = decrypt_payload(payload, key)
    try:
        text = plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise FormatError(f"plaintext is not valid UTF-8: {e}") from e
    return parse_plaintext(text)


def encode_bootstrap_payload(
    address: str,
    port: int,
    auxiliary_port: int,
    key: BootstrapKey = DEFAULT_BOOTSTRAP_KEY,
) -> str:
    """Inverse of decode_bootstrap_payload, for operators and tests."""
    if port < 0 or auxiliary_port < 0:
        raise ValueError("ports must be non-negative")
    plaintext = f"{address}:{port}:{auxiliary_port}".encode("utf-8")
    encryptor = key._cipher().encryptor()
    ciphertext = encryptor.update(pkcs7_pad(plaintext)) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode("ascii")
