"""Password Vault — Encryption and synchronization core of a client-side vault.

Security Note (Threat Model):
    The master password and derived key never leave the client; the object
    store only ever sees sealed blobs. Decrypted vault contents and the
    derived key live in process memory while a session is unlocked.
    A memory dump taken during that window can expose them. This is an
    accepted limitation; mitigation requires OS-level secure memory which
    is out of scope.
"""

from .version import __version__
from .manager import VaultManager
from .storage import DownloadResult, ObjectStoreClient, RemoteObjectMetadata
from .config import StoreConfig
from .exceptions import (
    AccessDeniedError,
    ConfigError,
    ConflictError,
    CryptoError,
    FormatError,
    NetworkError,
    NotFoundError,
    ObjectStoreError,
    OperationCancelledError,
    SizeMismatchError,
    ValidationError,
    VaultError,
    VaultLockedError,
)

__all__ = [
    "__version__",
    "VaultManager",
    "ObjectStoreClient",
    "DownloadResult",
    "RemoteObjectMetadata",
    "StoreConfig",
    "VaultError",
    "ValidationError",
    "FormatError",
    "CryptoError",
    "VaultLockedError",
    "ConfigError",
    "ObjectStoreError",
    "NetworkError",
    "OperationCancelledError",
    "ConflictError",
    "AccessDeniedError",
    "NotFoundError",
    "SizeMismatchError",
]
