"""
Encrypted store facade.

This module provides:
- EncryptedStore: Composition root (transport + key store + key wrap provider),
  opened with `await EncryptedStore.open(config)` and closed explicitly
- EncryptedContainer: create / read / equality-query with transparent
  encrypt-before-write and decrypt-after-read

Setup flow:
1. open(): connect, create schema and database if needed
2. ensure_data_encryption_key(): check-then-create the wrapped DEK
3. provision_container(): create the container with its encryption policy
4. container(): load the stored policy and issue item operations
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from .cipher import DocumentCipher
from .config import StoreConfig
from .crypto import AEAD_AES_256_CBC_HMAC_SHA256
from .errors import (
    ConfigError,
    DuplicateKeyError,
    ItemNotFoundError,
    PolicyConflictError,
    StoreAccessError,
)
from .key_store import (
    DataEncryptionKey,
    DataEncryptionKeyStore,
    EncryptionKeyWrapMetadata,
    KeyStorage,
)
from .key_wrap import AzureKeyVaultKeyWrapProvider, KeyWrapProvider, LocalKeyWrapProvider
from .policy import FieldEncryptionPolicy, field_name
from .postgres_storage import PostgresKeyStorage, PostgresTransport, ensure_schema
from .query import EqualityPredicate, bind_equality_parameter
from .serialization import dumps_document, loads_document
from .transport import ContainerProperties, DocumentTransport

logger = logging.getLogger(__name__)

ID_FIELD = "id"
TTL_FIELD = "ttl"


def build_key_wrap_provider(config: StoreConfig) -> KeyWrapProvider:
    """Key wrap provider selected by config.key_wrap_provider."""
    if config.key_wrap_provider == "local":
        if config.local_key_encryption_key is None:
            raise ConfigError("Local key wrap provider requires a key encryption key")
        return LocalKeyWrapProvider(
            {config.key_encryption_key_uri: config.local_key_encryption_key}
        )
    return AzureKeyVaultKeyWrapProvider()


class EncryptedContainer:
    """
    A container with its encryption policy loaded.

    Documents are plain dicts; designated fields are encrypted on the way in
    and decrypted on the way out.
    """

    def __init__(
        self,
        transport: DocumentTransport,
        properties: ContainerProperties,
        key_store: DataEncryptionKeyStore,
    ) -> None:
        self._transport = transport
        self._properties = properties
        self._policy = FieldEncryptionPolicy.from_dict(properties.encryption_policy)
        self._key_store = key_store

    @property
    def name(self) -> str:
        return self._properties.name

    @property
    def partition_key_path(self) -> str:
        return self._properties.partition_key_path

    @property
    def policy(self) -> FieldEncryptionPolicy:
        return self._policy

    async def create_item(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Encrypt and store a new document.

        Args:
            document: Plaintext document with id and partition key fields

        Returns:
            The plaintext document as written

        Raises:
            ValueError: If id or the partition key is missing
            ItemConflictError: If the id already exists in the partition
        """
        item_id = document.get(ID_FIELD)
        if not isinstance(item_id, str) or not item_id:
            raise ValueError("Document must have a non-empty string 'id'")
        pk_field = field_name(self.partition_key_path)
        if document.get(pk_field) is None:
            raise ValueError(f"Document is missing partition key field '{pk_field}'")

        ttl = document.get(TTL_FIELD)
        encrypted = await DocumentCipher.encrypt(document, self._policy, self._key_store.resolve)
        await self._transport.put(
            self.name,
            item_id,
            encrypted[pk_field],
            dumps_document(encrypted),
            ttl=ttl if isinstance(ttl, int) and not isinstance(ttl, bool) else None,
        )
        logger.debug("Created item %s in %s", item_id, self.name)
        return dict(document)

    async def read_item(self, item_id: str, partition_key: Any) -> Dict[str, Any]:
        """
        Read and decrypt one document.

        Raises:
            ItemNotFoundError: If no live item matches
            DecryptionError: If any designated field fails to decrypt
        """
        stored_pk = await self._partition_key_at_rest(partition_key)
        body = await self._transport.get(self.name, item_id, stored_pk)
        if body is None:
            raise ItemNotFoundError(
                f"Item {item_id} not found in {self.name} (partition {partition_key!r})"
            )
        return await DocumentCipher.decrypt(
            loads_document(body), self._policy, self._key_store.resolve
        )

    async def iter_query_equals(self, path: str, value: Any) -> AsyncIterator[Dict[str, Any]]:
        """
        Stream documents whose field at path equals value.

        Raises:
            UnsupportedQueryError: If path is randomized-encrypted
        """
        predicate = await self._predicate(path, value)
        async for body in self._transport.query(self.name, predicate):
            yield await DocumentCipher.decrypt(
                loads_document(body), self._policy, self._key_store.resolve
            )

    async def query_equals(self, path: str, value: Any) -> List[Dict[str, Any]]:
        """All documents whose field at path equals value."""
        return [document async for document in self.iter_query_equals(path, value)]

    async def _predicate(self, path: str, value: Any) -> EqualityPredicate:
        if self._policy.for_path(path) is None or value is None:
            return EqualityPredicate.plaintext(path, value)
        bound = await bind_equality_parameter(
            path, value, self._policy, self._key_store.resolve
        )
        return EqualityPredicate.encrypted(path, bound)

    async def _partition_key_at_rest(self, partition_key: Any) -> Any:
        entry = self._policy.for_path(self.partition_key_path)
        if entry is None or partition_key is None:
            return partition_key
        encrypted = await DocumentCipher.encrypt_entry_value(
            entry, partition_key, self._key_store.resolve
        )
        return encrypted.to_base64()


class EncryptedStore:
    """
    Encrypted document store.

    Owns the transport, key store and key wrap provider for one database.
    Construct with open(); there is no module-level client.
    """

    def __init__(
        self,
        transport: DocumentTransport,
        key_store: DataEncryptionKeyStore,
        *,
        config: Optional[StoreConfig] = None,
        pool: Optional[asyncpg.Pool] = None,
        owns_key_wrap_provider: bool = False,
    ) -> None:
        """
        Initialize store with already-built collaborators.

        Args:
            transport: Document transport scoped to the database
            key_store: Data encryption key store
            config: Configuration the store was opened with, if any
            pool: asyncpg pool to close with the store, if owned
            owns_key_wrap_provider: Close the provider with the store
        """
        self._transport = transport
        self._key_store = key_store
        self._config = config
        self._pool = pool
        self._owns_key_wrap_provider = owns_key_wrap_provider
        self._containers: Dict[str, EncryptedContainer] = {}

    @classmethod
    async def open(
        cls,
        config: StoreConfig,
        *,
        transport: Optional[DocumentTransport] = None,
        key_storage: Optional[KeyStorage] = None,
        key_wrap_provider: Optional[KeyWrapProvider] = None,
    ) -> EncryptedStore:
        """
        Open a store (async factory method).

        Collaborators not supplied are built from config: an asyncpg pool
        backing PostgresTransport and PostgresKeyStorage, and the configured
        key wrap provider.

        Args:
            config: StoreConfig
            transport: Optional transport override
            key_storage: Optional key storage override
            key_wrap_provider: Optional key wrap provider override

        Returns:
            EncryptedStore with its database created

        Raises:
            StoreAccessError: If the database cannot be reached or created
            ConfigError: If no key wrap provider can be built from config
        """
        pool: Optional[asyncpg.Pool] = None
        if transport is None or key_storage is None:
            try:
                pool = await asyncpg.create_pool(config.database_url)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                raise StoreAccessError(f"Failed to connect to database: {e}") from e

        try:
            if pool is not None:
                await ensure_schema(pool)
                transport = transport or PostgresTransport(pool, config.database_name)
                key_storage = key_storage or PostgresKeyStorage(pool, config.database_name)
            provider = key_wrap_provider or build_key_wrap_provider(config)
        except Exception:
            if pool is not None:
                await pool.close()
            raise

        owns_provider = key_wrap_provider is None
        key_store = DataEncryptionKeyStore(
            key_storage, provider, cache_ttl=config.key_cache_ttl
        )
        store = cls(
            transport,
            key_store,
            config=config,
            pool=pool,
            owns_key_wrap_provider=owns_provider,
        )

        try:
            if await transport.create_database_if_not_exists():
                logger.info("Created database %s", transport.database_name)
        except Exception:
            await store.close()
            raise
        return store

    @property
    def key_store(self) -> DataEncryptionKeyStore:
        return self._key_store

    @property
    def transport(self) -> DocumentTransport:
        return self._transport

    async def ensure_data_encryption_key(
        self,
        key_id: Optional[str] = None,
        wrap_metadata: Optional[EncryptionKeyWrapMetadata] = None,
        algorithm: str = AEAD_AES_256_CBC_HMAC_SHA256,
    ) -> DataEncryptionKey:
        """
        Return the data encryption key, creating it if it does not exist.

        Args:
            key_id: Key id (config.data_encryption_key_id if None)
            wrap_metadata: Wrap metadata (built from config if None)
            algorithm: Data encryption algorithm

        Returns:
            The existing or newly created DataEncryptionKey
        """
        key_id = key_id or (self._config.data_encryption_key_id if self._config else None)
        if not key_id:
            raise ConfigError("No data encryption key id given")

        existing = await self._key_store.read(key_id)
        if existing is not None:
            return existing

        logger.info("Client encryption key %s doesn't exist, creating it", key_id)
        if wrap_metadata is None:
            if self._config is None:
                raise ConfigError("No wrap metadata given and store has no config")
            wrap_metadata = self._key_store.wrap_metadata_for(
                self._config.key_encryption_key_uri
            )

        try:
            return await self._key_store.create(key_id, algorithm, wrap_metadata)
        except DuplicateKeyError:
            logger.info("Client encryption key %s was created concurrently", key_id)
            created = await self._key_store.read(key_id)
            if created is None:
                raise
            return created

    async def provision_container(
        self,
        name: str,
        partition_key_path: str,
        policy: FieldEncryptionPolicy,
    ) -> None:
        """
        Create a container with an encryption policy, if it does not exist.

        Args:
            name: Container name
            partition_key_path: Partition key path, e.g. "/accountNumber"
            policy: Field encryption policy to attach

        Raises:
            PolicyConflictError: If the existing container disagrees on the
                partition key or on any shared path
            ValueError: If the partition key is encrypted non-deterministically
        """
        if not partition_key_path.startswith("/") or "/" in partition_key_path[1:]:
            raise ValueError(f"Invalid partition key path {partition_key_path!r}")
        policy.validate_partition_key(partition_key_path)

        properties, created = await self._transport.create_container_if_not_exists(
            name, partition_key_path, policy.to_dict()
        )
        if created:
            logger.info(
                "Created container %s (partition key %s, %d encrypted paths)",
                name,
                partition_key_path,
                len(policy),
            )
            return

        if properties.partition_key_path != partition_key_path:
            raise PolicyConflictError(
                f"Container {name} exists with partition key "
                f"{properties.partition_key_path}, not {partition_key_path}"
            )
        existing = FieldEncryptionPolicy.from_dict(properties.encryption_policy)
        _check_compatible(name, existing, policy)

    async def container(self, name: str) -> EncryptedContainer:
        """
        Container handle with its stored encryption policy.

        Raises:
            StoreAccessError: If the container does not exist
        """
        cached = self._containers.get(name)
        if cached is not None:
            return cached
        properties = await self._transport.read_container(name)
        if properties is None:
            raise StoreAccessError(f"Container {name} does not exist")
        container = EncryptedContainer(self._transport, properties, self._key_store)
        self._containers[name] = container
        return container

    async def close(self) -> None:
        """Close owned resources."""
        if self._owns_key_wrap_provider:
            await self._key_store.key_wrap_provider.close()
        await self._transport.close()
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> EncryptedStore:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def _check_compatible(
    name: str, existing: FieldEncryptionPolicy, requested: FieldEncryptionPolicy
) -> None:
    """Raise PolicyConflictError on shared-path disagreement; warn on drift."""
    for entry in requested:
        current = existing.for_path(entry.path)
        if current is None:
            logger.warning(
                "Container %s exists without encryption for %s; existing policy is kept",
                name,
                entry.path,
            )
            continue
        if current != entry:
            raise PolicyConflictError(
                f"Container {name} encrypts {entry.path} with "
                f"{current.encryption_type}/{current.encryption_algorithm} "
                f"(key {current.client_encryption_key_id}); requested "
                f"{entry.encryption_type}/{entry.encryption_algorithm} "
                f"(key {entry.client_encryption_key_id})"
            )
    for entry in existing:
        if requested.for_path(entry.path) is None:
            logger.warning(
                "Container %s encrypts %s, which the requested policy omits",
                name,
                entry.path,
            )
