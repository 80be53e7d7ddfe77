"""
Cryptographic primitives for field-level encryption.

This module provides:
- SecureKey: Secure key wrapper with automatic zeroization
- EncryptedValue: Versioned ciphertext blob for a single field value
- AeadAes256CbcHmacSha256: AES-256-CBC + HMAC-SHA256 authenticated encryption
  with deterministic and randomized IV modes
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CryptoError, DecryptionError

# Cryptographic constants
AES_256_KEY_SIZE: int = 32  # 256 bits
IV_SIZE: int = 16  # AES block size
MAC_SIZE: int = 32  # HMAC-SHA256 output
BLOCK_SIZE_BITS: int = 128

AEAD_AES_256_CBC_HMAC_SHA256: str = "AEAD_AES_256_CBC_HMAC_SHA256"
ALGORITHM_VERSION: bytes = b"\x01"
_ALGORITHM_VERSION_SIZE: bytes = bytes([len(ALGORITHM_VERSION)])

# version || mac || iv || at least one cipher block
MIN_CIPHERTEXT_SIZE: int = len(ALGORITHM_VERSION) + MAC_SIZE + IV_SIZE + IV_SIZE

_ENCRYPTION_KEY_LABEL = b"document_encryption/" + AEAD_AES_256_CBC_HMAC_SHA256.encode() + b"/encryption"
_MAC_KEY_LABEL = b"document_encryption/" + AEAD_AES_256_CBC_HMAC_SHA256.encode() + b"/mac"
_IV_KEY_LABEL = b"document_encryption/" + AEAD_AES_256_CBC_HMAC_SHA256.encode() + b"/iv"

SUPPORTED_ALGORITHMS = frozenset({AEAD_AES_256_CBC_HMAC_SHA256})


class SecureKey:
    """
    Secure key wrapper with automatic memory cleanup on deletion.

    Uses bytearray internally for mutable zeroing in __del__.
    Note: Python's garbage collector doesn't guarantee immediate cleanup,
    so this is best-effort zeroization.
    """

    __slots__ = ("_bytes",)

    def __init__(self, key_bytes: bytes | bytearray) -> None:
        """
        Create a SecureKey from raw bytes.

        Args:
            key_bytes: Raw key material (32 bytes for data encryption keys)
        """
        if not isinstance(key_bytes, (bytes, bytearray)):
            raise CryptoError("Key must be bytes or bytearray")
        self._bytes = bytearray(key_bytes)

    @classmethod
    def generate(cls) -> SecureKey:
        """Generate a cryptographically secure random 32-byte key."""
        return cls(secrets.token_bytes(AES_256_KEY_SIZE))

    def as_bytes(self) -> bytes:
        """Return key as immutable bytes."""
        return bytes(self._bytes)

    def __len__(self) -> int:
        return len(self._bytes)

    def __repr__(self) -> str:
        """Redacted representation to prevent accidental key disclosure."""
        return "SecureKey([REDACTED])"

    def __del__(self) -> None:
        """Zero memory on deletion (best-effort)."""
        if hasattr(self, "_bytes"):
            for i in range(len(self._bytes)):
                self._bytes[i] = 0


@dataclass(frozen=True)
class EncryptedValue:
    """
    Encrypted field value.

    Layout: version(1) || mac(32) || iv(16) || aes_cbc(plaintext)
    The version byte is the algorithm tag; the MAC covers everything else.
    """

    ciphertext: bytes

    @property
    def version(self) -> bytes:
        return self.ciphertext[:1]

    @property
    def algorithm(self) -> str:
        """Algorithm name for the version byte, or "unknown"."""
        if self.version == ALGORITHM_VERSION:
            return AEAD_AES_256_CBC_HMAC_SHA256
        return "unknown"

    def to_base64(self) -> str:
        """Encode as base64 string (the at-rest form of an encrypted field)."""
        return base64.standard_b64encode(self.ciphertext).decode("ascii")

    @classmethod
    def from_base64(cls, encoded: str) -> EncryptedValue:
        """
        Decode from base64 string.

        Args:
            encoded: Base64-encoded ciphertext blob

        Returns:
            EncryptedValue instance

        Raises:
            DecryptionError: If decoding fails or the blob is too small
        """
        if not isinstance(encoded, str):
            raise DecryptionError(
                f"Encrypted value must be a base64 string, got {type(encoded).__name__}"
            )
        try:
            decoded = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Base64 decode error: {e}")

        if len(decoded) < MIN_CIPHERTEXT_SIZE:
            raise DecryptionError("Invalid encrypted value length")

        return cls(ciphertext=decoded)


def _hmac_sha256(key: bytes, *parts: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    for part in parts:
        h.update(part)
    return h.finalize()


class AeadAes256CbcHmacSha256:
    """
    AES-256-CBC with HMAC-SHA256 (encrypt-then-MAC).

    Three sub-keys are derived from the 32-byte root key: an encryption key,
    a MAC key and an IV key. In deterministic mode the IV is
    HMAC(iv_key, plaintext) truncated to 16 bytes, so the ciphertext is a pure
    function of (root key, plaintext). In randomized mode the IV is random.
    """

    name = AEAD_AES_256_CBC_HMAC_SHA256

    __slots__ = ("_encryption_key", "_mac_key", "_iv_key")

    def __init__(self, root_key: SecureKey) -> None:
        """
        Derive sub-keys from a data encryption key.

        Args:
            root_key: 32-byte data encryption key

        Raises:
            CryptoError: If key size is invalid
        """
        if len(root_key) != AES_256_KEY_SIZE:
            raise CryptoError(
                f"Invalid key size: expected {AES_256_KEY_SIZE}, got {len(root_key)}"
            )
        raw = root_key.as_bytes()
        self._encryption_key = _hmac_sha256(raw, _ENCRYPTION_KEY_LABEL)
        self._mac_key = _hmac_sha256(raw, _MAC_KEY_LABEL)
        self._iv_key = _hmac_sha256(raw, _IV_KEY_LABEL)

    def encrypt(self, plaintext: bytes, deterministic: bool) -> EncryptedValue:
        """
        Encrypt plaintext.

        Args:
            plaintext: Data to encrypt
            deterministic: Derive the IV from the plaintext instead of at random

        Returns:
            EncryptedValue carrying version, MAC, IV and ciphertext
        """
        if deterministic:
            iv = _hmac_sha256(self._iv_key, plaintext)[:IV_SIZE]
        else:
            iv = secrets.token_bytes(IV_SIZE)

        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).encryptor()
        body = encryptor.update(padded) + encryptor.finalize()

        mac = _hmac_sha256(
            self._mac_key, ALGORITHM_VERSION, iv, body, _ALGORITHM_VERSION_SIZE
        )
        return EncryptedValue(ciphertext=ALGORITHM_VERSION + mac + iv + body)

    def decrypt(self, value: EncryptedValue) -> bytes:
        """
        Verify and decrypt an EncryptedValue.

        Args:
            value: Ciphertext produced by encrypt()

        Returns:
            Decrypted plaintext bytes

        Raises:
            DecryptionError: On unknown version, MAC mismatch or bad padding
        """
        blob = value.ciphertext
        if len(blob) < MIN_CIPHERTEXT_SIZE:
            raise DecryptionError("Invalid encrypted value length")
        if value.version != ALGORITHM_VERSION:
            raise DecryptionError(
                f"Algorithm mismatch: unsupported version byte {value.version.hex()}"
            )

        offset = len(ALGORITHM_VERSION)
        mac = blob[offset:offset + MAC_SIZE]
        iv = blob[offset + MAC_SIZE:offset + MAC_SIZE + IV_SIZE]
        body = blob[offset + MAC_SIZE + IV_SIZE:]
        if len(body) % IV_SIZE != 0:
            raise DecryptionError("Invalid encrypted value length")

        h = hmac.HMAC(self._mac_key, hashes.SHA256())
        for part in (ALGORITHM_VERSION, iv, body, _ALGORITHM_VERSION_SIZE):
            h.update(part)
        try:
            h.verify(mac)
        except InvalidSignature:
            # Generic error to prevent oracle attacks
            raise DecryptionError("Decryption failed")

        decryptor = Cipher(algorithms.AES(self._encryption_key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionError("Decryption failed")


def generate_random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Args:
        length: Number of bytes to generate

    Returns:
        Random bytes of specified length
    """
    return secrets.token_bytes(length)
