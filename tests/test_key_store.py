"""Tests for the data encryption key store."""

from __future__ import annotations

import asyncio

import pytest

from document_encryption import (
    AEAD_AES_256_CBC_HMAC_SHA256,
    DataEncryptionKeyStore,
    DuplicateKeyError,
    EncryptionKeyWrapMetadata,
    KeyAccessError,
    KeyNotFoundError,
)

KEK_URI = "local://keys/akvKey"


async def test_exists_then_create(key_store):
    assert await key_store.exists("key1") is False
    key = await key_store.create(
        "key1", AEAD_AES_256_CBC_HMAC_SHA256, key_store.wrap_metadata_for(KEK_URI)
    )
    assert await key_store.exists("key1") is True
    assert key.encryption_algorithm == AEAD_AES_256_CBC_HMAC_SHA256
    assert key.wrap_metadata.name == "akvKey"
    assert key.wrap_metadata.value == KEK_URI
    assert len(key.wrapped_key) > 32


async def test_duplicate_create(key_store, key1):
    with pytest.raises(DuplicateKeyError):
        await key_store.create(
            key1, AEAD_AES_256_CBC_HMAC_SHA256, key_store.wrap_metadata_for(KEK_URI)
        )


async def test_resolve_unknown_key(key_store):
    with pytest.raises(KeyNotFoundError):
        await key_store.resolve("missing")


async def test_resolve_after_create_does_not_unwrap(key_store, key1, provider):
    key = await key_store.resolve(key1)
    assert len(key) == 32
    assert provider.unwrap_calls == 0


async def test_resolved_key_matches_after_cache_clear(key_store, key1, provider):
    before = await key_store.resolve(key1)
    key_store.clear_cache()
    after = await key_store.resolve(key1)
    assert before.as_bytes() == after.as_bytes()
    assert provider.unwrap_calls == 1


async def test_concurrent_resolve_unwraps_once(key_store, key1, provider):
    key_store.clear_cache()
    keys = await asyncio.gather(*(key_store.resolve(key1) for _ in range(20)))
    assert provider.unwrap_calls == 1
    assert len({k.as_bytes() for k in keys}) == 1


async def test_cache_ttl_expires(key_storage, provider, clock):
    store = DataEncryptionKeyStore(key_storage, provider, cache_ttl=60, clock=clock)
    await store.create("key1", AEAD_AES_256_CBC_HMAC_SHA256, store.wrap_metadata_for(KEK_URI))

    clock.advance(59)
    await store.resolve("key1")
    assert provider.unwrap_calls == 0

    clock.advance(1)
    await store.resolve("key1")
    assert provider.unwrap_calls == 1


async def test_resolver_mismatch(key_store):
    metadata = EncryptionKeyWrapMetadata(
        type="AZURE_KEY_VAULT", name="akvKey", value=KEK_URI, algorithm="RSA-OAEP"
    )
    with pytest.raises(KeyAccessError):
        await key_store.create("key1", AEAD_AES_256_CBC_HMAC_SHA256, metadata)
    assert await key_store.exists("key1") is False


async def test_unsupported_algorithm(key_store):
    with pytest.raises(ValueError):
        await key_store.create("key1", "AES_128_ECB", key_store.wrap_metadata_for(KEK_URI))


async def test_unknown_kek_uri(key_store):
    with pytest.raises(KeyAccessError):
        await key_store.create(
            "key1",
            AEAD_AES_256_CBC_HMAC_SHA256,
            key_store.wrap_metadata_for("local://keys/unknown"),
        )
    assert await key_store.exists("key1") is False


def test_wrap_metadata_round_trip(key_store):
    metadata = key_store.wrap_metadata_for(KEK_URI)
    assert metadata.type == "LOCAL"
    assert metadata.algorithm == "A256KW"
    assert EncryptionKeyWrapMetadata.from_dict(metadata.to_dict()) == metadata


async def test_clear_cache_forgets_key_locks(key_store, key1):
    key_store.clear_cache()
    assert key_store._cache._locks == {}
    await asyncio.gather(key_store.resolve(key1), key_store.resolve(key1))
    assert len(key_store._cache._locks) == 1
    key_store.clear_cache()
    assert key_store._cache._locks == {}
