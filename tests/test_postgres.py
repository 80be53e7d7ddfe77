"""
PostgreSQL backend tests.

Live-database tests are skipped unless DATABASE_URL points at a disposable
database; error-mapping tests run against a failing stand-in pool.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import asyncpg
import pytest

from document_encryption import (
    AEAD_AES_256_CBC_HMAC_SHA256,
    ConfigError,
    DataEncryptionKey,
    DataEncryptionKeyStore,
    DuplicateKeyError,
    EncryptedStore,
    EqualityPredicate,
    ItemConflictError,
    ItemNotFoundError,
    PostgresKeyStorage,
    PostgresTransport,
    StoreAccessError,
)
from document_encryption.sales_order import (
    PARTITION_KEY_PATH,
    SalesOrder,
    sales_order_policy,
    sample_sales_order,
)

KEK_URI = "local://keys/akvKey"


@pytest.fixture
async def pg_store(pg_pool, config, provider):
    s = await EncryptedStore.open(
        config,
        transport=PostgresTransport(pg_pool, config.database_name),
        key_storage=PostgresKeyStorage(pg_pool, config.database_name),
        key_wrap_provider=provider,
    )
    yield s
    await s.close()


async def test_database_created_once(pg_pool):
    transport = PostgresTransport(pg_pool, "salesdb")
    assert await transport.create_database_if_not_exists() is True
    assert await transport.create_database_if_not_exists() is False


async def test_container_requires_database(pg_pool):
    transport = PostgresTransport(pg_pool, "missing-db")
    with pytest.raises(StoreAccessError):
        await transport.create_container_if_not_exists("orders", "/accountNumber", {})


async def test_key_storage(pg_store):
    key_store = pg_store.key_store
    assert await key_store.exists("key1") is False
    created = await pg_store.ensure_data_encryption_key()
    stored = await key_store.read("key1")
    assert stored.wrapped_key == created.wrapped_key
    assert stored.wrap_metadata == created.wrap_metadata

    with pytest.raises(DuplicateKeyError):
        await key_store.create(
            "key1", AEAD_AES_256_CBC_HMAC_SHA256, created.wrap_metadata
        )


async def test_sales_order_scenario(pg_store):
    key = await pg_store.ensure_data_encryption_key()
    await pg_store.provision_container(
        "orders", PARTITION_KEY_PATH, sales_order_policy(key.id)
    )
    container = await pg_store.container("orders")

    order1 = sample_sales_order("Account1", "order-1")
    order2 = sample_sales_order("Account1", "order-2")
    order2.sub_total = Decimal("552.4589")
    await container.create_item(order1.to_document())
    await container.create_item(order2.to_document())

    with pytest.raises(ItemConflictError):
        await container.create_item(order1.to_document())

    read = SalesOrder.from_document(await container.read_item("order-1", "Account1"))
    assert read == order1

    results = await container.query_equals("/subTotal", Decimal("552.4589"))
    assert [r["id"] for r in results] == ["order-2"]
    assert await container.query_equals("/subTotal", Decimal("1.00")) == []

    with pytest.raises(ItemNotFoundError):
        await container.read_item("order-1", "Account2")


async def test_plain_field_query(pg_store):
    key = await pg_store.ensure_data_encryption_key()
    await pg_store.provision_container(
        "orders", PARTITION_KEY_PATH, sales_order_policy(key.id)
    )
    container = await pg_store.container("orders")
    await container.create_item(sample_sales_order("Account1", "order-1").to_document())

    results = await container.query_equals("/taxAmount", Decimal("12.5838"))
    assert [r["id"] for r in results] == ["order-1"]


class FailingPool:
    """asyncpg.Pool stand-in whose calls raise the given error."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.closed = False

    async def fetchrow(self, query, *args):
        raise self.error

    async def execute(self, query, *args):
        if self.error is not None:
            raise self.error
        return "OK"

    def acquire(self):
        raise self.error

    async def close(self) -> None:
        self.closed = True


async def test_unique_violation_becomes_duplicate_key(key_store):
    metadata = key_store.wrap_metadata_for(KEK_URI)
    key = DataEncryptionKey(
        id="key1",
        wrapped_key=b"\x00" * 40,
        encryption_algorithm=AEAD_AES_256_CBC_HMAC_SHA256,
        wrap_metadata=metadata,
    )
    storage = PostgresKeyStorage(
        FailingPool(asyncpg.UniqueViolationError("duplicate key")), "salesdb"
    )
    with pytest.raises(DuplicateKeyError):
        await storage.insert(key)


async def test_backend_failures_become_store_access_error(provider):
    storage = PostgresKeyStorage(FailingPool(OSError("connection reset")), "salesdb")
    key_store = DataEncryptionKeyStore(storage, provider)
    with pytest.raises(StoreAccessError):
        await key_store.exists("key1")


async def test_query_connection_failure_becomes_store_access_error():
    transport = PostgresTransport(FailingPool(OSError("connection reset")), "salesdb")
    with pytest.raises(StoreAccessError):
        async for _ in transport.query(
            "orders", EqualityPredicate.plaintext("/id", "order-1")
        ):
            pass


async def test_open_closes_pool_when_schema_fails(config, monkeypatch):
    pool = FailingPool(OSError("permission denied"))

    async def create_pool(dsn):
        return pool

    monkeypatch.setattr(asyncpg, "create_pool", create_pool)
    with pytest.raises(StoreAccessError):
        await EncryptedStore.open(config)
    assert pool.closed


async def test_open_closes_pool_when_provider_config_is_invalid(config, monkeypatch):
    pool = FailingPool()

    async def create_pool(dsn):
        return pool

    monkeypatch.setattr(asyncpg, "create_pool", create_pool)
    with pytest.raises(ConfigError):
        await EncryptedStore.open(replace(config, local_key_encryption_key=None))
    assert pool.closed
