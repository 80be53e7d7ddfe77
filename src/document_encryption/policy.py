"""
Field encryption policy.

A policy maps top-level document paths ("/subTotal") to the data encryption
key, encryption type and algorithm used for that field. It is attached to a
container when the container is provisioned and never changes afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .crypto import AEAD_AES_256_CBC_HMAC_SHA256, SUPPORTED_ALGORITHMS

POLICY_FORMAT_VERSION: int = 1


class EncryptionType(Enum):
    """Field encryption mode."""

    DETERMINISTIC = "Deterministic"  # equal plaintexts -> equal ciphertexts
    RANDOMIZED = "Randomized"  # fresh IV per encryption

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_str(cls, s: str) -> EncryptionType:
        """Parse from string (case-insensitive)."""
        for member in cls:
            if member.value.lower() == s.lower():
                return member
        raise ValueError(f"Invalid encryption type: {s}")


def field_name(path: str) -> str:
    """Return the document key addressed by a top-level path."""
    return path[1:]


def validate_path(path: str) -> None:
    """
    Check that path addresses a single top-level field.

    Raises:
        ValueError: For empty, nested or wildcard paths
    """
    if not isinstance(path, str) or not path.startswith("/") or len(path) < 2:
        raise ValueError(f"Invalid path {path!r}: expected '/fieldName'")
    name = field_name(path)
    if "/" in name:
        raise ValueError(f"Invalid path {path!r}: only top-level paths are supported")
    if "*" in name or "?" in name:
        raise ValueError(f"Invalid path {path!r}: wildcards are not supported")


@dataclass(frozen=True)
class PolicyEntry:
    """One encrypted path."""

    path: str
    client_encryption_key_id: str
    encryption_type: EncryptionType = EncryptionType.DETERMINISTIC
    encryption_algorithm: str = AEAD_AES_256_CBC_HMAC_SHA256

    def __post_init__(self) -> None:
        validate_path(self.path)
        if self.path == "/id":
            raise ValueError("The /id path cannot be encrypted")
        if not self.client_encryption_key_id:
            raise ValueError(f"Path {self.path} has no client encryption key id")
        if self.encryption_algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported encryption algorithm: {self.encryption_algorithm}"
            )

    @property
    def field(self) -> str:
        return field_name(self.path)

    @property
    def deterministic(self) -> bool:
        return self.encryption_type is EncryptionType.DETERMINISTIC

    def to_dict(self) -> Dict[str, str]:
        return {
            "path": self.path,
            "clientEncryptionKeyId": self.client_encryption_key_id,
            "encryptionType": self.encryption_type.value,
            "encryptionAlgorithm": self.encryption_algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PolicyEntry:
        return cls(
            path=data["path"],
            client_encryption_key_id=data["clientEncryptionKeyId"],
            encryption_type=EncryptionType.from_str(data["encryptionType"]),
            encryption_algorithm=data["encryptionAlgorithm"],
        )


class FieldEncryptionPolicy:
    """
    Ordered, immutable set of PolicyEntry, unique per path.

    Key ids are not checked here; they are resolved on first use.
    """

    __slots__ = ("_entries", "_by_path")

    def __init__(self, entries: Iterable[PolicyEntry] = ()) -> None:
        """
        Build a policy.

        Args:
            entries: Policy entries; paths must be unique

        Raises:
            ValueError: If a path appears twice
        """
        self._entries: Tuple[PolicyEntry, ...] = tuple(entries)
        self._by_path: Dict[str, PolicyEntry] = {}
        for entry in self._entries:
            if entry.path in self._by_path:
                raise ValueError(f"Duplicate policy path: {entry.path}")
            self._by_path[entry.path] = entry

    @classmethod
    def deterministic(
        cls,
        key_id: str,
        paths: Iterable[str],
        algorithm: str = AEAD_AES_256_CBC_HMAC_SHA256,
    ) -> FieldEncryptionPolicy:
        """Policy encrypting every path deterministically with one key."""
        return cls(
            PolicyEntry(
                path=path,
                client_encryption_key_id=key_id,
                encryption_type=EncryptionType.DETERMINISTIC,
                encryption_algorithm=algorithm,
            )
            for path in paths
        )

    def with_included_path(self, entry: PolicyEntry) -> FieldEncryptionPolicy:
        """Return a new policy with entry appended."""
        return FieldEncryptionPolicy(self._entries + (entry,))

    def for_path(self, path: str) -> Optional[PolicyEntry]:
        """Entry for an exact, case-sensitive path, or None."""
        return self._by_path.get(path)

    def paths(self) -> List[str]:
        return [entry.path for entry in self._entries]

    def key_ids(self) -> List[str]:
        """Distinct key ids in policy order."""
        seen: Dict[str, None] = {}
        for entry in self._entries:
            seen.setdefault(entry.client_encryption_key_id, None)
        return list(seen)

    def validate_partition_key(self, partition_key_path: str) -> None:
        """
        Raises:
            ValueError: If the partition key is encrypted non-deterministically
        """
        entry = self.for_path(partition_key_path)
        if entry is not None and not entry.deterministic:
            raise ValueError(
                f"Partition key path {partition_key_path} must use deterministic encryption"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policyFormatVersion": POLICY_FORMAT_VERSION,
            "includedPaths": [entry.to_dict() for entry in self._entries],
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> FieldEncryptionPolicy:
        if not data:
            return cls()
        return cls(PolicyEntry.from_dict(item) for item in data.get("includedPaths", []))

    def __iter__(self) -> Iterator[PolicyEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldEncryptionPolicy):
            return NotImplemented
        return self._entries == other._entries

    def __hash__(self) -> int:
        return hash(self._entries)

    def __repr__(self) -> str:
        return f"FieldEncryptionPolicy({list(self._entries)!r})"
