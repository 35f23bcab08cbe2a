"""Tests for password_vault.crypto — key derivation and the sealed envelope."""
import os

import pytest

from password_vault.crypto import (
    CURRENT_VERSION,
    DECRYPTION_FAILED,
    HEADER_SIZE,
    NONCE_SIZE,
    SALT_SIZE,
    TAG_SIZE,
    argon2_config,
    decrypt,
    derive_key,
    encrypt,
    extract_salt,
    generate_salt,
)
from password_vault.exceptions import CryptoError, FormatError, ValidationError

PASSWORD = "correct-password-1"
SALT = bytes(range(16))


@pytest.fixture(scope="module")
def derived_key():
    """Argon2id is slow; derive once per module."""
    return derive_key(PASSWORD, SALT)


@pytest.fixture
def key():
    return os.urandom(32)


class TestDeriveKey:
    """Test Argon2id key derivation."""

    def test_key_length(self, derived_key):
        assert len(derived_key) == 32

    def test_deterministic(self, derived_key):
        """Same password and salt always give the same key."""
        assert derive_key(PASSWORD, SALT) == derived_key

    def test_different_password(self, derived_key):
        assert derive_key("correct-password-2", SALT) != derived_key

    def test_different_salt(self, derived_key):
        assert derive_key(PASSWORD, bytes(reversed(SALT))) != derived_key

    def test_empty_password_rejected(self):
        with pytest.raises(ValidationError, match="Password cannot be empty"):
            derive_key("", SALT)

    @pytest.mark.parametrize("size", [0, 15, 17, 32])
    def test_wrong_salt_length_rejected(self, size):
        with pytest.raises(ValidationError, match="Salt must be exactly 16 bytes"):
            derive_key(PASSWORD, b"\x00" * size)

    def test_argon2_parameters(self):
        config = argon2_config()
        assert config["algorithm"] == "Argon2id"
        assert config["memory_cost_kib"] == 65536
        assert config["memory_cost_mib"] == 64
        assert config["iterations"] == 3
        assert config["parallelism"] == 1
        assert config["key_length"] == 32


class TestEncrypt:
    """Test sealing plaintext into the envelope."""

    @pytest.mark.parametrize("size", [1, 15, 1024, 100_000])
    def test_output_length(self, key, size):
        """Envelope is always the 57-byte header plus the plaintext length."""
        blob = encrypt(os.urandom(size), key, SALT)
        assert len(blob) == HEADER_SIZE + size == 57 + size

    def test_layout(self, key):
        blob = encrypt(b"payload", key, SALT)
        assert blob[0] == CURRENT_VERSION
        assert blob[1:17] == SALT

    def test_nonce_freshness(self, key):
        """Identical inputs never produce identical envelopes."""
        first = encrypt(b"same input", key, SALT)
        second = encrypt(b"same input", key, SALT)
        assert first != second
        assert first[17:17 + NONCE_SIZE] != second[17:17 + NONCE_SIZE]

    def test_random_salt_when_omitted(self, key):
        first = extract_salt(encrypt(b"data", key))
        second = extract_salt(encrypt(b"data", key))
        assert len(first) == SALT_SIZE
        assert first != second

    def test_ciphertext_hides_plaintext(self, key):
        plaintext = b"super secret vault entry"
        assert plaintext not in encrypt(plaintext, key, SALT)

    @pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
    def test_wrong_key_length_rejected(self, size):
        with pytest.raises(ValidationError, match="Key must be exactly 32 bytes"):
            encrypt(b"data", b"\x01" * size, SALT)

    def test_empty_plaintext_rejected(self, key):
        with pytest.raises(ValidationError, match="Plaintext cannot be empty"):
            encrypt(b"", key, SALT)

    def test_empty_plaintext_allowed_explicitly(self, key):
        blob = encrypt(b"", key, SALT, allow_empty=True)
        assert len(blob) == HEADER_SIZE
        assert decrypt(blob, key) == b""

    def test_wrong_salt_length_rejected(self, key):
        with pytest.raises(ValidationError):
            encrypt(b"data", key, b"short")


class TestDecrypt:
    """Test opening and authenticating envelopes."""

    def test_roundtrip(self, key):
        plaintext = b'{"entries":[{"id":"1","title":"Test"}]}'
        assert decrypt(encrypt(plaintext, key, SALT), key) == plaintext

    def test_roundtrip_with_derived_key(self, derived_key):
        blob = encrypt(b"entries", derived_key, SALT)
        assert decrypt(blob, derive_key(PASSWORD, extract_salt(blob))) == b"entries"

    def test_key_from_other_password_fails(self, derived_key):
        blob = encrypt(b"entries", derived_key, SALT)
        other = derive_key("wrong-password-1", SALT)
        with pytest.raises(CryptoError, match=DECRYPTION_FAILED):
            decrypt(blob, other)

    def test_every_tag_and_ciphertext_bit_is_authenticated(self, key):
        """Flipping any single bit after the nonce makes decryption fail."""
        blob = encrypt(b"abcd", key, SALT)
        start = HEADER_SIZE - TAG_SIZE
        for index in range(start, len(blob)):
            for bit in range(8):
                tampered = bytearray(blob)
                tampered[index] ^= 1 << bit
                with pytest.raises(CryptoError):
                    decrypt(bytes(tampered), key)

    def test_tampered_nonce_fails(self, key):
        blob = bytearray(encrypt(b"abcd", key, SALT))
        blob[20] ^= 0x01
        with pytest.raises(CryptoError):
            decrypt(bytes(blob), key)

    def test_failure_message_is_generic(self, key):
        """Wrong key, tampered tag and tampered body are indistinguishable."""
        blob = encrypt(b"vault contents", key, SALT)
        bad_tag = bytearray(blob)
        bad_tag[HEADER_SIZE - 1] ^= 0xFF
        bad_body = bytearray(blob)
        bad_body[-1] ^= 0xFF

        messages = set()
        for candidate, candidate_key in (
            (blob, os.urandom(32)),
            (bytes(bad_tag), key),
            (bytes(bad_body), key),
        ):
            with pytest.raises(CryptoError) as exc_info:
                decrypt(candidate, candidate_key)
            messages.add(str(exc_info.value))
        assert messages == {DECRYPTION_FAILED}

    def test_too_short_blob(self, key):
        with pytest.raises(FormatError, match="too short"):
            decrypt(b"\x01" * 56, key)

    def test_unsupported_version(self, key):
        blob = bytearray(encrypt(b"data", key, SALT))
        blob[0] = 0x02
        with pytest.raises(FormatError, match="Unsupported version: 0x02"):
            decrypt(bytes(blob), key)

    def test_wrong_key_length(self, key):
        blob = encrypt(b"data", key, SALT)
        with pytest.raises(ValidationError):
            decrypt(blob, key[:16])


class TestExtractSalt:
    """Test reading the salt without decrypting."""

    def test_returns_salt(self, key):
        assert extract_salt(encrypt(b"data", key, SALT)) == SALT

    def test_generated_salt(self, key):
        salt = generate_salt()
        assert len(salt) == SALT_SIZE
        assert extract_salt(encrypt(b"data", key, salt)) == salt

    def test_too_short(self):
        with pytest.raises(FormatError):
            extract_salt(b"\x01" * 20)

    def test_unsupported_version(self):
        with pytest.raises(FormatError, match="Unsupported version: 0x00"):
            extract_salt(b"\x00" * HEADER_SIZE)
