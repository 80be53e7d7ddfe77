"""Tests for AEAD_AES_256_CBC_HMAC_SHA256 primitives."""

from __future__ import annotations

import pytest

from document_encryption import (
    AEAD_AES_256_CBC_HMAC_SHA256,
    AeadAes256CbcHmacSha256,
    CryptoError,
    DecryptionError,
    EncryptedValue,
    SecureKey,
)


@pytest.fixture
def algorithm() -> AeadAes256CbcHmacSha256:
    return AeadAes256CbcHmacSha256(SecureKey(b"\x11" * 32))


def test_deterministic_encryption_is_repeatable(algorithm):
    first = algorithm.encrypt(b"552.4589", deterministic=True)
    second = algorithm.encrypt(b"552.4589", deterministic=True)
    assert first == second
    assert algorithm.decrypt(first) == b"552.4589"


def test_deterministic_ciphertext_differs_per_plaintext(algorithm):
    assert algorithm.encrypt(b"a", deterministic=True) != algorithm.encrypt(
        b"b", deterministic=True
    )


def test_deterministic_ciphertext_differs_per_key(algorithm):
    other = AeadAes256CbcHmacSha256(SecureKey(b"\x22" * 32))
    assert algorithm.encrypt(b"a", deterministic=True) != other.encrypt(
        b"a", deterministic=True
    )


def test_randomized_encryption_differs(algorithm):
    first = algorithm.encrypt(b"552.4589", deterministic=False)
    second = algorithm.encrypt(b"552.4589", deterministic=False)
    assert first != second
    assert algorithm.decrypt(first) == algorithm.decrypt(second) == b"552.4589"


def test_empty_plaintext_round_trips(algorithm):
    assert algorithm.decrypt(algorithm.encrypt(b"", deterministic=True)) == b""


def test_every_bit_flip_is_detected(algorithm):
    value = algorithm.encrypt(b"sensitive", deterministic=True)
    for index in range(len(value.ciphertext)):
        for bit in (0x01, 0x80):
            tampered = bytearray(value.ciphertext)
            tampered[index] ^= bit
            with pytest.raises(DecryptionError):
                algorithm.decrypt(EncryptedValue(bytes(tampered)))


def test_wrong_key_is_detected(algorithm):
    value = algorithm.encrypt(b"sensitive", deterministic=False)
    other = AeadAes256CbcHmacSha256(SecureKey(b"\x33" * 32))
    with pytest.raises(DecryptionError):
        other.decrypt(value)


def test_truncated_value_is_rejected(algorithm):
    value = algorithm.encrypt(b"sensitive", deterministic=True)
    with pytest.raises(DecryptionError):
        algorithm.decrypt(EncryptedValue(value.ciphertext[:40]))


def test_algorithm_tag(algorithm):
    value = algorithm.encrypt(b"x", deterministic=True)
    assert value.algorithm == AEAD_AES_256_CBC_HMAC_SHA256
    assert EncryptedValue(b"\x02" + value.ciphertext[1:]).algorithm == "unknown"


def test_base64_round_trip(algorithm):
    value = algorithm.encrypt(b"x", deterministic=True)
    assert EncryptedValue.from_base64(value.to_base64()) == value


@pytest.mark.parametrize("encoded", ["not base64!", "AAAA", 42])
def test_from_base64_rejects_garbage(encoded):
    with pytest.raises(DecryptionError):
        EncryptedValue.from_base64(encoded)


def test_invalid_key_size():
    with pytest.raises(CryptoError):
        AeadAes256CbcHmacSha256(SecureKey(b"short"))


def test_secure_key_repr_is_redacted():
    assert "REDACTED" in repr(SecureKey.generate())
    assert len(SecureKey.generate()) == 32
