"""
Vault Exceptions — Error taxonomy shared by crypto, session and transport.

Security Note:
    Messages must never carry key material, plaintext, or a hint about why
    a decryption failed. Wrong password, corrupted data and tampering all
    surface as the same ``CryptoError`` text.
"""
from typing import Optional


class VaultError(Exception):
    """Base class for every error raised by password_vault."""


class ValidationError(VaultError, ValueError):
    """Malformed caller input (password, key, salt or payload)."""


class FormatError(VaultError, ValueError):
    """Encrypted blob is too short or carries an unsupported version."""


class CryptoError(VaultError):
    """Key derivation or authenticated decryption failed."""


class VaultLockedError(VaultError, RuntimeError):
    """Operation requires an unlocked vault session."""


class ConfigError(VaultError, RuntimeError):
    """Required configuration is missing or invalid."""


class ObjectStoreError(VaultError):
    """Remote object store request failed.

    Args:
        message: Human readable description (never includes the URL query).
        status_code: HTTP status returned by the store, if any.
        code: Stable machine readable error code (e.g. ``NOT_FOUND``).
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({str(self)!r}, "
            f"status_code={self.status_code!r}, code={self.code!r})"
        )


class NetworkError(ObjectStoreError):
    """Timeout, abort or connectivity failure."""


class OperationCancelledError(NetworkError):
    """Transfer aborted by the caller's cancellation signal."""


class ConflictError(ObjectStoreError):
    """Remote object changed since its entity tag was observed."""


class AccessDeniedError(ObjectStoreError):
    """Store refused access (expired or out-of-scope pre-signed URL)."""


class NotFoundError(ObjectStoreError):
    """Remote object does not exist."""


class SizeMismatchError(ObjectStoreError):
    """Received byte count differs from the declared Content-Length."""
