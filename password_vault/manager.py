"""
VaultManager — Session state machine owning the derived vault key.

Provides the public API for working with a sealed vault:
- ``create(password, data)`` — start a new vault under a fresh salt
- ``unlock(blob, password)`` — open an existing vault
- ``save(data, password)`` — re-derive and re-seal
- ``update(data)`` — re-seal with the key already held (no derivation)
- ``change_password(blob, old, new)`` — re-seal under a new password/salt
- ``lock()`` — wipe key material

Security Note:
    The derived key and salt live in ``bytearray`` buffers owned by the
    ``Unlocked`` state and are zero-filled on lock, on every failure path,
    and when an unlocked manager is garbage collected or the interpreter
    exits (``weakref.finalize``).
    Copies made by the crypto libraries cannot be wiped from Python; this is
    an accepted limitation.
"""
import time
import asyncio
import logging
import weakref
from dataclasses import dataclass
from typing import Optional, Union

from .crypto import (
    HEADER_SIZE,
    decrypt,
    derive_key,
    encrypt,
    extract_salt,
    generate_salt,
)
from .exceptions import CryptoError, FormatError, ValidationError, VaultLockedError

logger = logging.getLogger("password_vault")

MIN_PASSWORD_LENGTH = 8
UNLOCK_FAILED = "failed to unlock vault: incorrect password or corrupted data"


def _wipe(buffer: bytearray) -> None:
    """Overwrite a buffer with zeros in place."""
    buffer[:] = bytes(len(buffer))


# ---------------------------------------------------------------------------
# Session states
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Locked:
    """No key material held."""


@dataclass(frozen=True, eq=False, repr=False)
class Unlocked:
    """Key material for an open vault; salt and key always travel together."""

    salt: bytearray
    key: bytearray

    def wipe(self) -> None:
        _wipe(self.key)
        _wipe(self.salt)

    def __repr__(self) -> str:
        return "Unlocked(salt=<redacted>, key=<redacted>)"


VaultState = Union[Locked, Unlocked]

LOCKED = Locked()


class VaultManager:
    """Owns the key material of one vault session.

    All cryptography is delegated to ``password_vault.crypto``. Operations
    that run the (slow) Argon2id derivation are coroutines and dispatch it
    to a worker thread so the event loop keeps serving other tasks.

    An instance belongs to a single flow of control; do not drive the same
    manager from several tasks concurrently.

    Usable as a context manager; the session is locked on exit::

        async with VaultManager() as vault:
            data = await vault.unlock(blob, password)
    """

    def __init__(self):
        self._state: VaultState = LOCKED
        self._finalizer: Optional[weakref.finalize] = None

    def __repr__(self) -> str:
        status = "unlocked" if self.is_unlocked() else "locked"
        return f"<VaultManager [{status}]>"

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_password(password: str) -> None:
        """Validate a master password.

        Raises:
            ValidationError: If password is empty or shorter than 8 chars.
        """
        if not password:
            raise ValidationError("Password cannot be empty")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )

    @staticmethod
    def _validate_data(data: bytes) -> None:
        if not data:
            raise ValidationError("Cannot save empty data")

    @staticmethod
    def _validate_blob(blob: bytes) -> None:
        if not blob:
            raise ValidationError("Vault data cannot be empty")
        if len(blob) < HEADER_SIZE:
            raise FormatError("Invalid vault format: data too short")

    # ------------------------------------------------------------------
    # Key handling
    # ------------------------------------------------------------------

    async def _derive(self, password: str, salt: bytearray) -> bytearray:
        """Run Argon2id in a worker thread and return the key in a wipeable buffer."""
        started = time.perf_counter()
        key = await asyncio.to_thread(derive_key, password, bytes(salt))
        logger.debug(
            "Derived vault key in %.0fms", (time.perf_counter() - started) * 1000,
        )
        return bytearray(key)

    def _transition(self, state: VaultState) -> None:
        previous = self._state
        self._state = state
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        if isinstance(state, Unlocked):
            # runs on collection of the manager or at interpreter exit
            self._finalizer = weakref.finalize(self, state.wipe)
        if isinstance(previous, Unlocked) and previous is not state:
            previous.wipe()

    async def _seal_with_new_key(
        self,
        password: str,
        salt: bytearray,
        data: bytes,
        allow_empty: bool = False,
    ) -> bytes:
        """Derive a key for ``salt``, seal ``data`` and become Unlocked.

        On any failure the new salt and key buffers are wiped and the session
        is locked, so a key held from before is wiped as well.
        """
        key = bytearray()
        try:
            key = await self._derive(password, salt)
            blob = encrypt(data, key, salt, allow_empty=allow_empty)
        except BaseException:
            _wipe(key)
            _wipe(salt)
            self.lock()
            raise
        self._transition(Unlocked(salt=salt, key=key))
        return blob

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(self, password: str, data: bytes = b"") -> bytes:
        """Create a new sealed vault under a fresh salt.

        Args:
            password: Master password (at least 8 characters).
            data: Initial plaintext; may be empty.

        Returns:
            Envelope bytes (57 bytes for an empty vault).

        Raises:
            ValidationError: If the password is invalid.
        """
        self._validate_password(password)
        blob = await self._seal_with_new_key(
            password, bytearray(generate_salt()), data or b"", allow_empty=True,
        )
        logger.debug("Vault created (%d bytes)", len(blob))
        return blob

    async def unlock(self, blob: bytes, password: str) -> bytes:
        """Open a sealed vault.

        Args:
            blob: Envelope bytes as produced by ``create``/``save``/``update``.
            password: Master password.

        Returns:
            Decrypted plaintext.

        Raises:
            ValidationError: If the password or blob is empty/too weak.
            FormatError: If the blob is shorter than the envelope header.
            CryptoError: On any failure after validation; the session is
                locked first and the message never says which step failed.
        """
        self._validate_password(password)
        self._validate_blob(blob)

        salt = bytearray()
        key = bytearray()
        try:
            salt = bytearray(extract_salt(blob))
            key = await self._derive(password, salt)
            plaintext = decrypt(blob, key)
        except BaseException as err:
            _wipe(key)
            _wipe(salt)
            self.lock()
            if not isinstance(err, Exception):
                # cancellation, KeyboardInterrupt and the like
                raise
            logger.debug("Vault unlock failed; session locked")
            raise CryptoError(UNLOCK_FAILED) from None
        self._transition(Unlocked(salt=salt, key=key))
        logger.debug("Vault unlocked")
        return plaintext

    async def save(self, data: bytes, password: str) -> bytes:
        """Re-derive the key and seal ``data``.

        Reuses the current salt when the session is unlocked, otherwise
        draws a new one.

        Raises:
            ValidationError: If the password is invalid or data is empty.
        """
        self._validate_password(password)
        self._validate_data(data)
        state = self._state
        if isinstance(state, Unlocked):
            salt = bytearray(state.salt)
        else:
            salt = bytearray(generate_salt())
        return await self._seal_with_new_key(password, salt, data)

    def update(self, data: bytes) -> bytes:
        """Seal ``data`` with the key already held by the session.

        No password and no key derivation are needed, so this is cheap.

        Raises:
            VaultLockedError: If the session is locked.
            ValidationError: If data is empty.
        """
        state = self._state
        if not isinstance(state, Unlocked):
            raise VaultLockedError("Vault must be unlocked before updating")
        self._validate_data(data)
        return encrypt(data, state.key, state.salt)

    async def change_password(
        self,
        blob: bytes,
        current_password: str,
        new_password: str,
    ) -> bytes:
        """Re-seal a vault under a new password and a new salt.

        Args:
            blob: Current envelope bytes.
            current_password: Password the blob was sealed with.
            new_password: Replacement password.

        Returns:
            Envelope bytes sealed under ``new_password``.

        Raises:
            ValidationError: If either password is invalid or both are equal;
                checked before any cryptographic work.
            CryptoError: If ``current_password`` does not open the blob.
        """
        self._validate_password(current_password)
        self._validate_password(new_password)
        if current_password == new_password:
            raise ValidationError(
                "New password must be different from current password"
            )
        plaintext = await self.unlock(blob, current_password)
        blob = await self._seal_with_new_key(
            new_password, bytearray(generate_salt()), plaintext, allow_empty=True,
        )
        logger.debug("Vault password changed")
        return blob

    def lock(self) -> None:
        """Wipe key material and return to the Locked state. Idempotent."""
        was_unlocked = self.is_unlocked()
        self._transition(LOCKED)
        if was_unlocked:
            logger.debug("Vault locked")

    def is_unlocked(self) -> bool:
        return isinstance(self._state, Unlocked)

    def get_salt(self) -> Optional[bytes]:
        """Return a copy of the current salt, or None while locked."""
        state = self._state
        if isinstance(state, Unlocked):
            return bytes(state.salt)
        return None

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def __enter__(self) -> "VaultManager":
        return self

    def __exit__(self, *exc_info) -> None:
        self.lock()

    async def __aenter__(self) -> "VaultManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.lock()
