"""
Error taxonomy for tunnelctl.

Every error can carry the offending source identifier (config path, URL, or
"" for the default source) so the user-visible message names it.

    TunnelctlError
    ├── BootstrapError
    │   ├── DecodeError
    │   │   └── CipherError
    │   ├── PaddingError
    │   └── FormatError
    ├── ConfigSourceError
    ├── ValidationError
    ├── StartupError
    ├── LifecycleError
    └── WorkerError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


class TunnelctlError(Exception):
    """Base class for all tunnelctl failures."""

    def __init__(self, message: str, *, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source is None:
            return self.message
        label = self.source or "<default>"
        return f"[{label}] {self.message}"


# ---------------------------------------------------------------------------
# Bootstrap payload
# ---------------------------------------------------------------------------

class BootstrapError(TunnelctlError):
    """The encrypted address-override payload could not be decoded."""


class DecodeError(BootstrapError):
    """Payload is not valid standard base64."""


class CipherError(DecodeError):
    """Ciphertext length is not a multiple of the AES block size."""


class PaddingError(BootstrapError):
    """PKCS#7 trailer is corrupt or the plaintext is empty."""


class FormatError(BootstrapError):
    """Plaintext is not '<address>:<port>:<auxiliaryPort>'."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigSourceError(TunnelctlError):
    """A configuration source could not be read, fetched or parsed."""


@dataclass(frozen=True)
class ConfigIssue:
    """One semantic problem with a resolved configuration."""
    path: str           # dotted path, e.g. "proxies.ssh.local_port"
    message: str
    error_type: str     # "missing", "type_error", "value_error", "conflict"

    def __str__(self) -> str:
        return f"[{self.error_type}] {self.path}: {self.message}"


class ValidationError(TunnelctlError):
    """Resolved configuration failed semantic checks."""

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        issues: Tuple[ConfigIssue, ...] = (),
    ) -> None:
        super().__init__(message, source=source)
        self.issues = tuple(issues)


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------

class StartupError(TunnelctlError):
    """Service construction or initial registration failed."""


class LifecycleError(TunnelctlError):
    """Illegal lifecycle state transition."""


class WorkerError(TunnelctlError):
    """A directory-mode worker failed; never fatal to its siblings."""

    def __init__(self, message: str, *, source: Optional[str] = None, cause: Optional[BaseException] = None) -> None:
        super().__init__(message, source=source)
        self.cause = cause
