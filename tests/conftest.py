"""
Pytest configuration and fixtures for document encryption tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Dict

import asyncpg
import pytest
from dotenv import load_dotenv

from document_encryption import (
    AEAD_AES_256_CBC_HMAC_SHA256,
    DataEncryptionKeyStore,
    EncryptedStore,
    InMemoryKeyStorage,
    InMemoryTransport,
    LocalKeyWrapProvider,
    SecureKey,
    StoreConfig,
)
from document_encryption.postgres_storage import ensure_schema

KEK_URI = "local://keys/akvKey"


class CountingKeyWrapProvider(LocalKeyWrapProvider):
    """Local provider that counts unwrap calls."""

    def __init__(self) -> None:
        super().__init__()
        self.unwrap_calls = 0

    async def unwrap(self, wrapped_key: bytes, key_encryption_key_uri: str) -> bytes:
        self.unwrap_calls += 1
        return await super().unwrap(wrapped_key, key_encryption_key_uri)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def provider() -> CountingKeyWrapProvider:
    """Local key wrap provider with one KEK registered."""
    p = CountingKeyWrapProvider()
    p.add_key(KEK_URI)
    return p


@pytest.fixture
def key_storage() -> InMemoryKeyStorage:
    return InMemoryKeyStorage()


@pytest.fixture
def key_store(key_storage: InMemoryKeyStorage, provider: CountingKeyWrapProvider) -> DataEncryptionKeyStore:
    return DataEncryptionKeyStore(key_storage, provider)


@pytest.fixture
async def key1(key_store: DataEncryptionKeyStore) -> str:
    """Create data encryption key 'key1' and return its id."""
    await key_store.create(
        "key1", AEAD_AES_256_CBC_HMAC_SHA256, key_store.wrap_metadata_for(KEK_URI)
    )
    return "key1"


@pytest.fixture
def static_keys() -> Dict[str, SecureKey]:
    return {"key1": SecureKey(b"\x01" * 32), "key2": SecureKey(b"\x02" * 32)}


@pytest.fixture
def resolver(static_keys: Dict[str, SecureKey]):
    """Key resolver over fixed keys."""

    async def resolve(key_id: str) -> SecureKey:
        return static_keys[key_id]

    return resolve


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> StoreConfig:
    return StoreConfig(
        database_url="postgresql://unused",
        database_name="salesdb",
        container_name="orders",
        data_encryption_key_id="key1",
        key_encryption_key_uri=KEK_URI,
        key_wrap_provider="local",
        local_key_encryption_key=b"\x07" * 32,
    )


@pytest.fixture
async def store(
    config: StoreConfig,
    provider: CountingKeyWrapProvider,
    key_storage: InMemoryKeyStorage,
    clock: FakeClock,
) -> AsyncGenerator[EncryptedStore, None]:
    """Encrypted store over in-memory transport and key storage."""
    transport = InMemoryTransport(database_name=config.database_name, clock=clock)
    s = await EncryptedStore.open(
        config,
        transport=transport,
        key_storage=key_storage,
        key_wrap_provider=provider,
    )
    yield s
    await s.close()


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    await ensure_schema(pool)
    await pool.execute("TRUNCATE TABLE document_databases CASCADE")

    yield pool

    await pool.close()
