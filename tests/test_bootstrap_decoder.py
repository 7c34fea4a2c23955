"""
Bootstrap payload decoding.

INVARIANT:
    An encrypted address override is base64(AES-128-CBC(PKCS#7(
    "<address>:<port>:<auxiliaryPort>"))) under a fixed key/IV. Decoding is
    exactly one of: None (no payload), a BootstrapOverride, or a
    BootstrapError subclass naming what was wrong.

TESTS:
    1.  Concrete round trip for "203.0.113.5:7000:7001"; round trips at the
        port bounds 0 and 65535 for several addresses.
    2.  Empty / whitespace payload -> None.
    3.  Malformed base64 -> DecodeError.
    4.  Ciphertext not a multiple of 16 -> CipherError (a DecodeError).
    5.  Corrupt padding -> PaddingError.
    6.  Two or four fields / non-numeric port -> FormatError.
    7.  A different key cannot decode the payload as an override.
    8.  PKCS#7 helpers reject empty data and a zero count byte.
"""

import base64

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from tunnelctl.bootstrap.decoder import (
    BLOCK_SIZE,
    DEFAULT_BOOTSTRAP_KEY,
    BootstrapKey,
    BootstrapOverride,
    decode_bootstrap_payload,
    encode_bootstrap_payload,
    parse_plaintext,
    pkcs7_pad,
    pkcs7_unpad,
)
from tunnelctl.errors import (
    BootstrapError,
    CipherError,
    DecodeError,
    FormatError,
    PaddingError,
)

KEY = b"1234561234561234"


def _encrypt_raw(plaintext: bytes) -> str:
    """Encrypt already-padded bytes with the well-known key (no padding added)."""
    enc = Cipher(algorithms.AES(KEY), modes.CBC(KEY)).encryptor()
    return base64.b64encode(enc.update(plaintext) + enc.finalize()).decode()


class TestDecodeSuccess:

    def test_concrete_override(self):
        payload = encode_bootstrap_payload("203.0.113.5", 7000, 7001)
        override = decode_bootstrap_payload(payload)
        assert override == BootstrapOverride(address="203.0.113.5", port=7000, auxiliary_port=7001)

    def test_matches_independent_encryption(self):
        payload = _encrypt_raw(pkcs7_pad(b"203.0.113.5:7000:7001"))
        assert payload == encode_bootstrap_payload("203.0.113.5", 7000, 7001)

    def test_hostname_address(self):
        payload = encode_bootstrap_payload("tunnel.example.com", 443, 0)
        override = decode_bootstrap_payload(payload)
        assert override.address == "tunnel.example.com"
        assert override.port == 443
        assert override.auxiliary_port == 0

    def test_surrounding_whitespace_ignored(self):
        payload = encode_bootstrap_payload("10.0.0.1", 7000, 1080)
        assert decode_bootstrap_payload(f"  {payload}\n").port == 7000

    @pytest.mark.parametrize("address", ["203.0.113.5", "tunnel.example.com", "localhost", "a" * 40, ""])
    @pytest.mark.parametrize("port, aux", [(0, 0), (65535, 65535), (0, 65535), (65535, 0), (7000, 7001)])
    def test_round_trip(self, address, port, aux):
        override = decode_bootstrap_payload(encode_bootstrap_payload(address, port, aux))
        assert override == BootstrapOverride(address=address, port=port, auxiliary_port=aux)

    @pytest.mark.parametrize("payload", ["", "   ", None])
    def test_empty_payload_is_no_override(self, payload):
        assert decode_bootstrap_payload(payload) is None


class TestDecodeFailures:

    def test_malformed_base64(self):
        with pytest.raises(DecodeError):
            decode_bootstrap_payload("not base64 !!")

    def test_block_size_mismatch(self):
        payload = base64.b64encode(b"x" * 15).decode()
        with pytest.raises(CipherError) as exc:
            decode_bootstrap_payload(payload)
        assert isinstance(exc.value, DecodeError)

    def test_zero_padding_byte_rejected(self):
        payload = _encrypt_raw(b"1.2.3.4:1:2" + b"\x00" * 5)
        with pytest.raises(PaddingError):
            decode_bootstrap_payload(payload)

    def test_padding_byte_larger_than_data(self):
        payload = _encrypt_raw(b"A" * 15 + bytes([0x20]))
        with pytest.raises(PaddingError):
            decode_bootstrap_payload(payload)

    def test_two_fields_is_format_error(self):
        payload = _encrypt_raw(pkcs7_pad(b"203.0.113.5:7000"))
        with pytest.raises(FormatError):
            decode_bootstrap_payload(payload)

    def test_four_fields_is_format_error(self):
        payload = _encrypt_raw(pkcs7_pad(b"203.0.113.5:7000:7001:9"))
        with pytest.raises(FormatError) as exc:
            decode_bootstrap_payload(payload)
        assert "got 4" in str(exc.value)

    def test_non_numeric_port(self):
        payload = _encrypt_raw(pkcs7_pad(b"203.0.113.5:http:7001"))
        with pytest.raises(FormatError):
            decode_bootstrap_payload(payload)

    def test_signed_port_rejected(self):
        payload = _encrypt_raw(pkcs7_pad(b"203.0.113.5:+7000:7001"))
        with pytest.raises(FormatError):
            decode_bootstrap_payload(payload)

    def test_empty_plaintext_is_format_error(self):
        payload = _encrypt_raw(pkcs7_pad(b""))
        with pytest.raises(FormatError):
            decode_bootstrap_payload(payload)

    def test_wrong_key_never_yields_override(self):
        payload = encode_bootstrap_payload("203.0.113.5", 7000, 7001)
        other = BootstrapKey(key=b"abcdefabcdefabcd", iv=b"abcdefabcdefabcd")
        try:
            result = decode_bootstrap_payload(payload, other)
        except BootstrapError:
            return
        assert result != BootstrapOverride("203.0.113.5", 7000, 7001)

    def test_errors_share_base_class(self):
        for cls in (DecodeError, CipherError, PaddingError, FormatError):
            assert issubclass(cls, BootstrapError)


class TestHelpers:

    def test_pad_always_adds_a_block_when_aligned(self):
        padded = pkcs7_pad(b"x" * BLOCK_SIZE)
        assert len(padded) == 2 * BLOCK_SIZE
        assert padded[-1] == BLOCK_SIZE

    def test_unpad_empty(self):
        with pytest.raises(PaddingError):
            pkcs7_unpad(b"")

    def test_unpad_zero(self):
        with pytest.raises(PaddingError):
            pkcs7_unpad(b"abc\x00")

    def test_unpad_only_checks_last_byte(self):
        assert pkcs7_unpad(b"abc\x07\x02") == b"abc"

    def test_parse_plaintext_colon_in_address_is_format_error(self):
        with pytest.raises(FormatError):
            parse_plaintext("::1:7000:7001")

    def test_key_length_enforced(self):
        with pytest.raises(ValueError):
            BootstrapKey(key=b"short", iv=b"1234561234561234")

    def test_default_key_is_well_known(self):
        assert DEFAULT_BOOTSTRAP_KEY.key == KEY
        assert DEFAULT_BOOTSTRAP_KEY.iv == KEY
