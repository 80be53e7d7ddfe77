"""
Document cipher.

Encrypts and decrypts the policy-designated fields of a document. Each
designated value is serialized (type marker + canonical payload), encrypted
with the data encryption key named by its policy entry, and stored as a
base64 string. Lists and nested objects are encrypted whole.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from .crypto import AeadAes256CbcHmacSha256, EncryptedValue, SecureKey
from .errors import DecryptionError
from .policy import FieldEncryptionPolicy, PolicyEntry
from .serialization import decode_value, encode_value

KeyResolver = Callable[[str], Awaitable[SecureKey]]


class DocumentCipher:
    """Field-level encrypt/decrypt of documents (stateless)."""

    @staticmethod
    async def _algorithm(entry: PolicyEntry, key_resolver: KeyResolver) -> AeadAes256CbcHmacSha256:
        key = await key_resolver(entry.client_encryption_key_id)
        return AeadAes256CbcHmacSha256(key)

    @classmethod
    async def encrypt_entry_value(
        cls, entry: PolicyEntry, value: Any, key_resolver: KeyResolver
    ) -> EncryptedValue:
        """Encrypt one plaintext value under a policy entry."""
        algorithm = await cls._algorithm(entry, key_resolver)
        return algorithm.encrypt(encode_value(value), deterministic=entry.deterministic)

    @classmethod
    async def encrypt(
        cls,
        document: Dict[str, Any],
        policy: FieldEncryptionPolicy,
        key_resolver: KeyResolver,
    ) -> Dict[str, Any]:
        """
        Encrypt the designated fields of a document.

        Args:
            document: Plaintext document
            policy: Field encryption policy of the target container
            key_resolver: async key_id -> SecureKey

        Returns:
            New document with designated, non-null fields replaced by
            base64 ciphertext; other fields are copied unchanged
        """
        encrypted = dict(document)
        for entry in policy:
            value = document.get(entry.field)
            if value is None:
                continue
            ciphertext = await cls.encrypt_entry_value(entry, value, key_resolver)
            encrypted[entry.field] = ciphertext.to_base64()
        return encrypted

    @classmethod
    async def decrypt(
        cls,
        document: Dict[str, Any],
        policy: FieldEncryptionPolicy,
        key_resolver: KeyResolver,
    ) -> Dict[str, Any]:
        """
        Decrypt the designated fields of a document.

        All designated fields are decrypted or the call fails; the input is
        never modified.

        Raises:
            DecryptionError: If any designated field fails to decrypt
        """
        decrypted = dict(document)
        for entry in policy:
            stored = document.get(entry.field)
            if stored is None:
                continue
            value = EncryptedValue.from_base64(stored)
            if value.algorithm != entry.encryption_algorithm:
                raise DecryptionError(
                    f"Algorithm mismatch on {entry.path}: expected "
                    f"{entry.encryption_algorithm}, got {value.algorithm}"
                )
            algorithm = await cls._algorithm(entry, key_resolver)
            try:
                plaintext = algorithm.decrypt(value)
            except DecryptionError as e:
                raise DecryptionError(f"Failed to decrypt {entry.path}: {e}") from e
            decrypted[entry.field] = decode_value(plaintext)
        return decrypted
