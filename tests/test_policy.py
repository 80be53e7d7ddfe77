"""Tests for field encryption policies."""

from __future__ import annotations

import pytest

from document_encryption import EncryptionType, FieldEncryptionPolicy, PolicyEntry
from document_encryption.sales_order import sales_order_policy


def test_for_path_exact_match():
    policy = sales_order_policy("key1")
    entry = policy.for_path("/subTotal")
    assert entry is not None
    assert entry.client_encryption_key_id == "key1"
    assert entry.encryption_type is EncryptionType.DETERMINISTIC
    assert entry.field == "subTotal"


def test_for_path_is_case_sensitive_and_not_prefix():
    policy = sales_order_policy("key1")
    assert policy.for_path("/subtotal") is None
    assert policy.for_path("/sub") is None
    assert policy.for_path("/taxAmount") is None


def test_duplicate_path_rejected():
    entry = PolicyEntry(path="/subTotal", client_encryption_key_id="key1")
    with pytest.raises(ValueError):
        FieldEncryptionPolicy([entry, entry])


@pytest.mark.parametrize("path", ["subTotal", "/", "/items/0", "/*", "/id", ""])
def test_invalid_paths_rejected(path):
    with pytest.raises(ValueError):
        PolicyEntry(path=path, client_encryption_key_id="key1")


def test_unsupported_algorithm_rejected():
    with pytest.raises(ValueError):
        PolicyEntry(path="/a", client_encryption_key_id="key1", encryption_algorithm="ROT13")


def test_key_ids_are_not_resolved_at_construction():
    policy = FieldEncryptionPolicy.deterministic("does-not-exist-yet", ["/a"])
    assert policy.key_ids() == ["does-not-exist-yet"]


def test_partition_key_must_be_deterministic():
    policy = FieldEncryptionPolicy(
        [
            PolicyEntry(
                path="/accountNumber",
                client_encryption_key_id="key1",
                encryption_type=EncryptionType.RANDOMIZED,
            )
        ]
    )
    with pytest.raises(ValueError):
        policy.validate_partition_key("/accountNumber")
    sales_order_policy("key1").validate_partition_key("/accountNumber")


def test_descriptor_round_trip():
    policy = sales_order_policy("key1").with_included_path(
        PolicyEntry(
            path="/freight",
            client_encryption_key_id="key2",
            encryption_type=EncryptionType.RANDOMIZED,
        )
    )
    restored = FieldEncryptionPolicy.from_dict(policy.to_dict())
    assert restored == policy
    assert restored.paths() == ["/subTotal", "/items", "/orderDate", "/freight"]
    assert restored.key_ids() == ["key1", "key2"]
    assert len(restored) == 4


def test_empty_descriptor():
    assert len(FieldEncryptionPolicy.from_dict(None)) == 0
    assert len(FieldEncryptionPolicy.from_dict({})) == 0


def test_encryption_type_from_str():
    assert EncryptionType.from_str("randomized") is EncryptionType.RANDOMIZED
    with pytest.raises(ValueError):
        EncryptionType.from_str("plain")
