"""
Exception classes for field-level envelope encryption.

This module defines the exception hierarchy shared by the key wrap providers,
the data encryption key store, the document cipher and the store facade.
"""

from __future__ import annotations


class EncryptionError(Exception):
    """Base exception for all document encryption operations."""

    pass


class CryptoError(EncryptionError):
    """Cryptographic primitive misuse (bad key size, bad parameters)."""

    pass


class KeyAccessError(EncryptionError):
    """Key-management service unreachable, unauthorized, or KEK not found."""

    pass


class DuplicateKeyError(EncryptionError):
    """A data encryption key with this id already exists."""

    pass


class KeyNotFoundError(EncryptionError):
    """Data encryption key not found in storage."""

    pass


class StoreAccessError(EncryptionError):
    """Storage backend error (document transport or key storage)."""

    pass


class ItemNotFoundError(StoreAccessError):
    """No item with the given id and partition key."""

    pass


class ItemConflictError(StoreAccessError):
    """An item with the given id already exists in the partition."""

    pass


class DecryptionError(EncryptionError):
    """Ciphertext failed integrity or algorithm checks."""

    pass


class UnsupportedQueryError(EncryptionError):
    """Equality predicate on a randomized or undesignated field."""

    pass


class PolicyConflictError(EncryptionError):
    """Existing container disagrees with the requested encryption policy."""

    pass


class SerializationError(EncryptionError):
    """Serialization or deserialization error."""

    pass


class ConfigError(EncryptionError):
    """Configuration error."""

    pass
