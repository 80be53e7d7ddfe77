"""
PostgreSQL storage backends.

This module provides:
- PostgresKeyStorage: Wrapped data encryption keys, one row per (database, key id)
- PostgresTransport: Document transport storing containers and items as JSONB
- SCHEMA_SQL: Tables used by both backends (applied by ensure_schema)

Architecture:
- A "database" is a row in document_databases; containers and keys are scoped to it
- Item bodies are stored as JSONB exactly as the cipher produced them, so
  encrypted fields are base64 strings and equality predicates compare ciphertext
- Expired items (ttl) are filtered on read and replaced on write
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple

import asyncpg

from .errors import DuplicateKeyError, ItemConflictError, StoreAccessError
from .key_store import DataEncryptionKey, EncryptionKeyWrapMetadata, KeyStorage
from .query import EqualityPredicate
from .serialization import escape_key
from .transport import ContainerProperties, DocumentTransport, partition_key_token

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS document_databases (
    name        TEXT PRIMARY KEY,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS document_containers (
    database_name       TEXT NOT NULL REFERENCES document_databases (name) ON DELETE CASCADE,
    name                TEXT NOT NULL,
    partition_key_path  TEXT NOT NULL,
    encryption_policy   JSONB NOT NULL,
    created_at          TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (database_name, name)
);

CREATE TABLE IF NOT EXISTS documents (
    database_name   TEXT NOT NULL,
    container_name  TEXT NOT NULL,
    partition_key   TEXT NOT NULL,
    id              TEXT NOT NULL,
    body            JSONB NOT NULL,
    expires_at      TIMESTAMPTZ,
    updated_at      TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (database_name, container_name, partition_key, id),
    FOREIGN KEY (database_name, container_name)
        REFERENCES document_containers (database_name, name) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS client_encryption_keys (
    database_name         TEXT NOT NULL REFERENCES document_databases (name) ON DELETE CASCADE,
    key_id                TEXT NOT NULL,
    wrapped_key           BYTEA NOT NULL,
    encryption_algorithm  TEXT NOT NULL,
    wrap_metadata         JSONB NOT NULL,
    created_at            TIMESTAMPTZ NOT NULL,
    PRIMARY KEY (database_name, key_id)
);
"""


async def ensure_schema(pool: asyncpg.Pool) -> None:
    """Create the tables if they do not exist."""
    try:
        await pool.execute(SCHEMA_SQL)
    except Exception as e:
        raise StoreAccessError(f"Failed to apply schema: {e}") from e


# =============================================================================
# Key Storage
# =============================================================================


class PostgresKeyStorage(KeyStorage):
    """
    PostgreSQL storage for wrapped data encryption keys.

    Only wrapped key material is stored; unwrapping needs the external KEK.
    """

    def __init__(self, pool: asyncpg.Pool, database_name: str) -> None:
        """
        Initialize PostgreSQL key storage.

        Args:
            pool: asyncpg connection pool
            database_name: Database scope of the keys
        """
        self._pool = pool
        self._database_name = database_name

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    async def get(self, key_id: str) -> Optional[DataEncryptionKey]:
        query = """
            SELECT key_id, wrapped_key, encryption_algorithm,
                   wrap_metadata::TEXT AS wrap_metadata, created_at
            FROM client_encryption_keys
            WHERE database_name = $1 AND key_id = $2
        """
        try:
            row = await self._pool.fetchrow(query, self._database_name, key_id)
        except Exception as e:
            raise StoreAccessError(f"Failed to read data encryption key: {e}") from e
        if row is None:
            return None
        return self._row_to_key(row)

    async def insert(self, key: DataEncryptionKey) -> None:
        query = """
            INSERT INTO client_encryption_keys
                (database_name, key_id, wrapped_key, encryption_algorithm, wrap_metadata, created_at)
            VALUES ($1, $2, $3, $4, $5::jsonb, $6)
        """
        try:
            await self._pool.execute(
                query,
                self._database_name,
                key.id,
                key.wrapped_key,
                key.encryption_algorithm,
                json.dumps(key.wrap_metadata.to_dict()),
                key.created_at,
            )
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(f"Data encryption key already exists: {key.id}") from e
        except Exception as e:
            raise StoreAccessError(f"Failed to store data encryption key: {e}") from e

    @staticmethod
    def _row_to_key(row: asyncpg.Record) -> DataEncryptionKey:
        """Convert database row to DataEncryptionKey."""
        return DataEncryptionKey(
            id=row["key_id"],
            wrapped_key=bytes(row["wrapped_key"]),
            encryption_algorithm=row["encryption_algorithm"],
            wrap_metadata=EncryptionKeyWrapMetadata.from_dict(json.loads(row["wrap_metadata"])),
            created_at=row["created_at"],
        )


# =============================================================================
# Document Transport
# =============================================================================


class PostgresTransport(DocumentTransport):
    """PostgreSQL document transport (JSONB items)."""

    def __init__(self, pool: asyncpg.Pool, database_name: str) -> None:
        """
        Initialize PostgreSQL transport.

        Args:
            pool: asyncpg connection pool
            database_name: Database every container belongs to
        """
        self._pool = pool
        self._database_name = database_name

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the connection pool."""
        return self._pool

    @property
    def database_name(self) -> str:
        return self._database_name

    async def create_database_if_not_exists(self) -> bool:
        query = """
            INSERT INTO document_databases (name) VALUES ($1)
            ON CONFLICT (name) DO NOTHING
            RETURNING name
        """
        try:
            row = await self._pool.fetchrow(query, self._database_name)
        except Exception as e:
            raise StoreAccessError(f"Failed to create database: {e}") from e
        return row is not None

    async def create_container_if_not_exists(
        self,
        name: str,
        partition_key_path: str,
        encryption_policy: Dict[str, Any],
    ) -> Tuple[ContainerProperties, bool]:
        query = """
            INSERT INTO document_containers
                (database_name, name, partition_key_path, encryption_policy)
            VALUES ($1, $2, $3, $4::jsonb)
            ON CONFLICT (database_name, name) DO NOTHING
            RETURNING name
        """
        try:
            row = await self._pool.fetchrow(
                query,
                self._database_name,
                name,
                partition_key_path,
                json.dumps(encryption_policy),
            )
        except Exception as e:
            raise StoreAccessError(f"Failed to create container: {e}") from e

        if row is not None:
            return (
                ContainerProperties(
                    name=name,
                    partition_key_path=partition_key_path,
                    encryption_policy=encryption_policy,
                ),
                True,
            )

        existing = await self.read_container(name)
        if existing is None:
            raise StoreAccessError(f"Container {name} vanished during creation")
        return existing, False

    async def read_container(self, name: str) -> Optional[ContainerProperties]:
        query = """
            SELECT name, partition_key_path, encryption_policy::TEXT AS encryption_policy
            FROM document_containers
            WHERE database_name = $1 AND name = $2
        """
        try:
            row = await self._pool.fetchrow(query, self._database_name, name)
        except Exception as e:
            raise StoreAccessError(f"Failed to read container: {e}") from e
        if row is None:
            return None
        return ContainerProperties(
            name=row["name"],
            partition_key_path=row["partition_key_path"],
            encryption_policy=json.loads(row["encryption_policy"]),
        )

    async def put(
        self,
        container: str,
        item_id: str,
        partition_key: Any,
        body: bytes,
        ttl: Optional[int] = None,
    ) -> None:
        # An expired row with the same key is replaced; a live one is a conflict.
        query = """
            INSERT INTO documents
                (database_name, container_name, partition_key, id, body, expires_at)
            VALUES (
                $1, $2, $3, $4, $5::jsonb,
                CASE WHEN $6::INTEGER > 0 THEN now() + $6::INTEGER * INTERVAL '1 second' END
            )
            ON CONFLICT (database_name, container_name, partition_key, id) DO UPDATE
                SET body = EXCLUDED.body,
                    expires_at = EXCLUDED.expires_at,
                    updated_at = now()
                WHERE documents.expires_at IS NOT NULL AND documents.expires_at <= now()
            RETURNING id
        """
        try:
            row = await self._pool.fetchrow(
                query,
                self._database_name,
                container,
                partition_key_token(partition_key),
                item_id,
                body.decode("utf-8"),
                ttl,
            )
        except Exception as e:
            raise StoreAccessError(f"Failed to store item {item_id}: {e}") from e
        if row is None:
            raise ItemConflictError(f"Item {item_id} already exists in container {container}")

    async def get(self, container: str, item_id: str, partition_key: Any) -> Optional[bytes]:
        query = """
            SELECT body::TEXT AS body
            FROM documents
            WHERE database_name = $1 AND container_name = $2
              AND partition_key = $3 AND id = $4
              AND (expires_at IS NULL OR expires_at > now())
        """
        try:
            row = await self._pool.fetchrow(
                query,
                self._database_name,
                container,
                partition_key_token(partition_key),
                item_id,
            )
        except Exception as e:
            raise StoreAccessError(f"Failed to read item {item_id}: {e}") from e
        if row is None:
            return None
        return row["body"].encode("utf-8")

    async def query(self, container: str, predicate: EqualityPredicate) -> AsyncIterator[bytes]:
        query = """
            SELECT body::TEXT AS body
            FROM documents
            WHERE database_name = $1 AND container_name = $2
              AND body -> $3 = $4::jsonb
              AND (expires_at IS NULL OR expires_at > now())
            ORDER BY partition_key, id
        """
        value = json.dumps(predicate.value)
        try:
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    async for row in conn.cursor(
                        query, self._database_name, container, escape_key(predicate.field), value
                    ):
                        yield row["body"].encode("utf-8")
        except Exception as e:
            raise StoreAccessError(f"Query on {container} failed: {e}") from e
