"""
Vault Crypto Core — Password key derivation and the sealed vault envelope.

Key derivation:  Argon2id(password, salt) → 32-byte key
Encryption:      XChaCha20-Poly1305(key, random 24B nonce) over the plaintext

Envelope layout (all offsets in bytes):
    [version 1B][salt 16B][nonce 24B][tag 16B][ciphertext N]

Security Note:
    Never log plaintext, ciphertext or key values.
    Nonces are random 192-bit; collisions are negligible even for
    a very large number of encryptions under one key.
    Argon2id is intentionally slow (~100-300ms); do not tune it down.
"""
import os
import logging

from nacl import exceptions as nacl_exceptions
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_encrypt,
)
from nacl.pwhash import argon2id

from .exceptions import CryptoError, FormatError, ValidationError

logger = logging.getLogger("password_vault")

CURRENT_VERSION = 0x01
VERSION_SIZE = 1
SALT_SIZE = 16
NONCE_SIZE = 24  # 192-bit XChaCha20 nonce
TAG_SIZE = 16  # Poly1305 tag
KEY_LENGTH = 32  # 256-bit key
HEADER_SIZE = VERSION_SIZE + SALT_SIZE + NONCE_SIZE + TAG_SIZE  # 57

ARGON2_MEMORY_COST = 64 * 1024  # KiB
ARGON2_ITERATIONS = 3
ARGON2_PARALLELISM = 1

DECRYPTION_FAILED = "decryption failed: invalid key or corrupted data"

_SALT_OFFSET = VERSION_SIZE
_NONCE_OFFSET = _SALT_OFFSET + SALT_SIZE
_TAG_OFFSET = _NONCE_OFFSET + NONCE_SIZE


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def generate_salt() -> bytes:
    """Generate a random 16-byte salt for key derivation."""
    return os.urandom(SALT_SIZE)


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 32-byte encryption key from a password using Argon2id.

    Blocks for roughly 100-300ms; async callers should run it in a
    worker thread.

    Args:
        password: Master password (UTF-8 encoded before hashing).
        salt: 16-byte random salt stored alongside the ciphertext.

    Returns:
        32-byte derived key.

    Raises:
        ValidationError: If salt is not 16 bytes or password is empty.
        CryptoError: If libsodium cannot run the derivation (e.g. out of memory).
    """
    if len(salt) != SALT_SIZE:
        raise ValidationError(f"Salt must be exactly {SALT_SIZE} bytes")
    if not password:
        raise ValidationError("Password cannot be empty")
    try:
        # libsodium's Argon2id always runs a single lane (ARGON2_PARALLELISM)
        return argon2id.kdf(
            KEY_LENGTH,
            password.encode("utf-8"),
            bytes(salt),
            opslimit=ARGON2_ITERATIONS,
            memlimit=ARGON2_MEMORY_COST * 1024,
        )
    except nacl_exceptions.RuntimeError as err:
        raise CryptoError("key derivation failed") from err


def argon2_config() -> dict:
    """Return the fixed Argon2id parameters, for diagnostics."""
    return {
        "algorithm": "Argon2id",
        "memory_cost_kib": ARGON2_MEMORY_COST,
        "memory_cost_mib": ARGON2_MEMORY_COST // 1024,
        "iterations": ARGON2_ITERATIONS,
        "parallelism": ARGON2_PARALLELISM,
        "key_length": KEY_LENGTH,
    }


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise ValidationError(f"Key must be exactly {KEY_LENGTH} bytes")


def _check_envelope(blob: bytes) -> None:
    """Validate envelope length and version byte.

    Raises:
        FormatError: If the blob is shorter than the header or the
            version byte is not the supported one.
    """
    if len(blob) < HEADER_SIZE:
        raise FormatError(
            f"Invalid vault blob: too short. Minimum length: {HEADER_SIZE} "
            f"bytes, got: {len(blob)} bytes"
        )
    version = blob[0]
    if version != CURRENT_VERSION:
        raise FormatError(
            f"Unsupported version: 0x{version:02x}. "
            f"Expected: 0x{CURRENT_VERSION:02x}"
        )


def encrypt(
    plaintext: bytes,
    key: bytes,
    salt: bytes | None = None,
    *,
    allow_empty: bool = False,
) -> bytes:
    """Seal plaintext into a versioned XChaCha20-Poly1305 envelope.

    A fresh random nonce is drawn on every call, so encrypting the same
    input twice never yields the same output.

    Args:
        plaintext: Data to encrypt.
        key: 32-byte key from ``derive_key``.
        salt: Salt the key was derived with; random if omitted.
        allow_empty: Accept a zero-length plaintext (empty vaults).

    Returns:
        Envelope bytes, exactly ``HEADER_SIZE + len(plaintext)`` long.

    Raises:
        ValidationError: On a wrong-length key or salt, or empty plaintext.
    """
    _check_key(key)
    if not plaintext and not allow_empty:
        raise ValidationError("Plaintext cannot be empty")
    if salt is None:
        salt = generate_salt()
    elif len(salt) != SALT_SIZE:
        raise ValidationError(f"Salt must be exactly {SALT_SIZE} bytes")

    nonce = os.urandom(NONCE_SIZE)
    sealed = crypto_aead_xchacha20poly1305_ietf_encrypt(
        bytes(plaintext), None, nonce, bytes(key),
    )
    # libsodium appends the tag; the envelope stores it before the ciphertext
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return bytes([CURRENT_VERSION]) + bytes(salt) + nonce + tag + ciphertext


def decrypt(blob: bytes, key: bytes) -> bytes:
    """Open an envelope produced by ``encrypt``.

    Args:
        blob: Envelope bytes.
        key: 32-byte key derived from the password and the envelope salt.

    Returns:
        Decrypted plaintext bytes (possibly empty).

    Raises:
        ValidationError: If key is not 32 bytes.
        FormatError: If the envelope is too short or has an unknown version.
        CryptoError: On any authentication failure; the message is the same
            for a wrong key, a tampered tag and tampered ciphertext.
    """
    _check_key(key)
    _check_envelope(blob)
    nonce = bytes(blob[_NONCE_OFFSET:_TAG_OFFSET])
    tag = bytes(blob[_TAG_OFFSET:HEADER_SIZE])
    ciphertext = bytes(blob[HEADER_SIZE:])
    try:
        return crypto_aead_xchacha20poly1305_ietf_decrypt(
            ciphertext + tag, None, nonce, bytes(key),
        )
    except nacl_exceptions.CryptoError:
        raise CryptoError(DECRYPTION_FAILED) from None


def extract_salt(blob: bytes) -> bytes:
    """Read the salt from an envelope without decrypting it.

    Raises:
        FormatError: Under the same length/version conditions as ``decrypt``.
    """
    _check_envelope(blob)
    return bytes(blob[_SALT_OFFSET:_NONCE_OFFSET])
