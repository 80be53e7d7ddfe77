"""
Encrypted query parameters.

Equality predicates on deterministically encrypted fields are evaluated by
the store against ciphertext: the parameter is encrypted exactly the way the
document cipher encrypted the field, so the stored and bound values are
byte-identical.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .cipher import DocumentCipher, KeyResolver
from .crypto import EncryptedValue
from .errors import UnsupportedQueryError
from .policy import FieldEncryptionPolicy, field_name, validate_path
from .serialization import to_json_compatible


@dataclass(frozen=True)
class EqualityPredicate:
    """
    `document[field] == value` in at-rest form.

    value is a JSON-compatible value: the base64 ciphertext string for
    encrypted fields, or the tagged JSON form of a plaintext value.
    """

    path: str
    value: Any

    @property
    def field(self) -> str:
        return field_name(self.path)

    @classmethod
    def plaintext(cls, path: str, value: Any) -> EqualityPredicate:
        validate_path(path)
        return cls(path=path, value=to_json_compatible(value))

    @classmethod
    def encrypted(cls, path: str, value: EncryptedValue) -> EqualityPredicate:
        return cls(path=path, value=value.to_base64())


async def bind_equality_parameter(
    path: str,
    value: Any,
    policy: FieldEncryptionPolicy,
    key_resolver: KeyResolver,
) -> EncryptedValue:
    """
    Encrypt a query parameter for an equality predicate on path.

    Args:
        path: Encrypted field path, e.g. "/subTotal"
        value: Plaintext parameter value
        policy: Policy of the queried container
        key_resolver: async key_id -> SecureKey

    Returns:
        The ciphertext the document cipher produces for value at path

    Raises:
        UnsupportedQueryError: If path is randomized or not encrypted
    """
    entry = policy.for_path(path)
    if entry is None:
        raise UnsupportedQueryError(
            f"Path {path} is not encrypted; bind the plaintext value instead"
        )
    if not entry.deterministic:
        raise UnsupportedQueryError(
            f"Path {path} uses {entry.encryption_type} encryption; "
            "equality queries require deterministic encryption"
        )
    if value is None:
        raise UnsupportedQueryError(
            f"Null values are stored unencrypted; cannot bind null for {path}"
        )
    return await DocumentCipher.encrypt_entry_value(entry, value, key_resolver)
