"""
Data encryption key store.

This module provides:
- EncryptionKeyWrapMetadata: How a data encryption key was wrapped
- DataEncryptionKey: Wrapped data encryption key record
- KeyStorage: Abstract persistence interface for wrapped keys
- InMemoryKeyStorage: asyncio-safe in-memory implementation for testing
- DataEncryptionKeyStore: exists / create / resolve with a resolved-key cache

Key hierarchy:
- KEK (external key-management service, addressed by URI)
- KEK -> DEK (wrapped DEK persisted per database, keyed by logical id)
- DEK -> encrypted document fields
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from .crypto import AES_256_KEY_SIZE, SUPPORTED_ALGORITHMS, SecureKey, generate_random_bytes
from .errors import DuplicateKeyError, KeyAccessError, KeyNotFoundError
from .key_wrap import KeyWrapProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncryptionKeyWrapMetadata:
    """Wrap metadata: resolver name, key name, KEK URI and wrap algorithm."""

    type: str
    name: str
    value: str  # KEK URI
    algorithm: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "name": self.name,
            "value": self.value,
            "algorithm": self.algorithm,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> EncryptionKeyWrapMetadata:
        return cls(
            type=data["type"],
            name=data["name"],
            value=data["value"],
            algorithm=data["algorithm"],
        )


@dataclass(frozen=True)
class DataEncryptionKey:
    """
    Wrapped data encryption key.

    Immutable once created; the raw key never leaves memory.
    """

    id: str
    wrapped_key: bytes
    encryption_algorithm: str
    wrap_metadata: EncryptionKeyWrapMetadata
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class KeyStorage(ABC):
    """
    Abstract storage interface for wrapped data encryption keys.

    get() returns None when the key does not exist and raises StoreAccessError
    for every other failure. insert() raises DuplicateKeyError atomically.
    """

    @abstractmethod
    async def get(self, key_id: str) -> Optional[DataEncryptionKey]:
        """Get a key by id."""
        ...

    @abstractmethod
    async def insert(self, key: DataEncryptionKey) -> None:
        """Store a new key."""
        ...


class InMemoryKeyStorage(KeyStorage):
    """
    In-memory key storage for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(self) -> None:
        self._keys: Dict[str, DataEncryptionKey] = {}
        self._lock = asyncio.Lock()

    async def get(self, key_id: str) -> Optional[DataEncryptionKey]:
        async with self._lock:
            return self._keys.get(key_id)

    async def insert(self, key: DataEncryptionKey) -> None:
        async with self._lock:
            if key.id in self._keys:
                raise DuplicateKeyError(f"Data encryption key already exists: {key.id}")
            self._keys[key.id] = key


class _ResolvedKeyCache:
    """
    Unwrapped keys per key id, with optional TTL.

    One asyncio.Lock per key id so at most one unwrap is in flight for a key.
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[SecureKey, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, key_id: str) -> asyncio.Lock:
        lock = self._locks.get(key_id)
        if lock is None:
            lock = self._locks[key_id] = asyncio.Lock()
        return lock

    def get(self, key_id: str) -> Optional[SecureKey]:
        entry = self._entries.get(key_id)
        if entry is None:
            return None
        key, stored_at = entry
        if self._ttl is not None and self._clock() - stored_at >= self._ttl:
            del self._entries[key_id]
            return None
        return key

    def put(self, key_id: str, key: SecureKey) -> None:
        self._entries[key_id] = (key, self._clock())

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()


class DataEncryptionKeyStore:
    """
    Persists wrapped data encryption keys and resolves them to raw keys.

    Resolved keys are cached in memory for the process lifetime, or for
    `cache_ttl` seconds when given.
    """

    def __init__(
        self,
        storage: KeyStorage,
        key_wrap_provider: KeyWrapProvider,
        *,
        cache_ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize key store.

        Args:
            storage: KeyStorage backend
            key_wrap_provider: Provider used to wrap and unwrap keys
            cache_ttl: Seconds a resolved key stays cached (None = forever)
            clock: Monotonic clock, injectable for tests
        """
        self._storage = storage
        self._provider = key_wrap_provider
        self._cache = _ResolvedKeyCache(ttl=cache_ttl, clock=clock)

    @property
    def key_wrap_provider(self) -> KeyWrapProvider:
        return self._provider

    def wrap_metadata_for(
        self, key_encryption_key_uri: str, name: str = "akvKey"
    ) -> EncryptionKeyWrapMetadata:
        """Wrap metadata describing the configured provider and a KEK URI."""
        return EncryptionKeyWrapMetadata(
            type=self._provider.name,
            name=name,
            value=key_encryption_key_uri,
            algorithm=self._provider.algorithm,
        )

    async def read(self, key_id: str) -> Optional[DataEncryptionKey]:
        """
        Read a wrapped key.

        Returns:
            DataEncryptionKey, or None if it does not exist

        Raises:
            StoreAccessError: On any backend failure
        """
        return await self._storage.get(key_id)

    async def exists(self, key_id: str) -> bool:
        """True if key_id is registered. Not-found is never an error."""
        return await self._storage.get(key_id) is not None

    async def create(
        self,
        key_id: str,
        algorithm: str,
        wrap_metadata: EncryptionKeyWrapMetadata,
    ) -> DataEncryptionKey:
        """
        Generate, wrap and persist a new data encryption key.

        Args:
            key_id: Logical key id, unique within the database
            algorithm: Data encryption algorithm the key is used with
            wrap_metadata: Resolver, KEK URI and wrap algorithm

        Returns:
            The stored DataEncryptionKey

        Raises:
            DuplicateKeyError: If key_id already exists
            KeyAccessError: If the KEK cannot be used
            ValueError: If the algorithm is not supported
        """
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported encryption algorithm: {algorithm}")
        self._check_provider(wrap_metadata)

        raw_key = SecureKey(generate_random_bytes(AES_256_KEY_SIZE))
        wrapped = await self._provider.wrap(raw_key.as_bytes(), wrap_metadata.value)

        key = DataEncryptionKey(
            id=key_id,
            wrapped_key=wrapped,
            encryption_algorithm=algorithm,
            wrap_metadata=wrap_metadata,
        )
        await self._storage.insert(key)
        self._cache.put(key_id, raw_key)

        logger.info(
            "Created data encryption key %s wrapped by %s", key_id, wrap_metadata.value
        )
        return key

    async def resolve(self, key_id: str) -> SecureKey:
        """
        Resolve a key id to its raw (unwrapped) key.

        Concurrent callers for an uncached key wait for a single unwrap.

        Raises:
            KeyNotFoundError: If key_id is unknown
            KeyAccessError: If the key cannot be unwrapped
        """
        cached = self._cache.get(key_id)
        if cached is not None:
            return cached

        async with self._cache.lock(key_id):
            cached = self._cache.get(key_id)
            if cached is not None:
                return cached

            stored = await self._storage.get(key_id)
            if stored is None:
                raise KeyNotFoundError(f"Data encryption key {key_id}")
            self._check_provider(stored.wrap_metadata)

            raw = await self._provider.unwrap(stored.wrapped_key, stored.wrap_metadata.value)
            if len(raw) != AES_256_KEY_SIZE:
                raise KeyAccessError(
                    f"Unwrapped key {key_id} has invalid size {len(raw)}"
                )
            key = SecureKey(raw)
            self._cache.put(key_id, key)
            logger.debug("Resolved data encryption key %s", key_id)
            return key

    def clear_cache(self) -> None:
        """Forget all resolved keys."""
        self._cache.clear()

    def _check_provider(self, wrap_metadata: EncryptionKeyWrapMetadata) -> None:
        if wrap_metadata.type != self._provider.name:
            raise KeyAccessError(
                f"Key resolver {wrap_metadata.type} does not match "
                f"configured provider {self._provider.name}"
            )
