"""
Field-level encryption demo CLI.

Usage:
    document-encryption-demo

Or run directly:
    python -m document_encryption.demo

Setup:
    1. Set DATABASE_URL, DATABASE_NAME, CONTAINER_NAME, CLIENT_ENCRYPTION_KEY_ID
       and KEY_VAULT_KEY_URI in the environment or a .env file
    2. Sign in to Azure (DefaultAzureCredential), or set KEY_WRAP_PROVIDER=local
       and LOCAL_KEK_BASE64 to wrap keys in-process
"""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from document_encryption.config import StoreConfig, load_config
from document_encryption.errors import ConfigError, EncryptionError
from document_encryption.sales_order import (
    PARTITION_KEY_PATH,
    sales_order_policy,
    sample_sales_order,
)
from document_encryption.serialization import to_json_compatible
from document_encryption.store import EncryptedStore


def _show(documents: List[Dict[str, Any]]) -> None:
    for document in documents:
        print(f"  {to_json_compatible(document)}")


async def run_demo(config: Optional[StoreConfig] = None, **open_kwargs: Any) -> None:
    """
    Provision an encrypted container, write two orders, read and query them.

    Args:
        config: StoreConfig (loaded from the environment if None)
        **open_kwargs: Collaborator overrides passed to EncryptedStore.open
    """
    print("=== Field-Level Encryption Demo ===\n")

    if config is None:
        try:
            config = load_config()
        except ConfigError as e:
            print(f"ERROR: {e}")
            sys.exit(1)

    store = await EncryptedStore.open(config, **open_kwargs)
    try:
        # ====================================================================
        # Step 1: Data encryption key + container
        # ====================================================================
        print("+" + "-" * 68 + "+")
        print("|  Step 1: Client Encryption Key and Container" + " " * 23 + "|")
        print("+" + "-" * 68 + "+")

        setup_start = time.perf_counter()
        key = await store.ensure_data_encryption_key()
        await store.provision_container(
            config.container_name,
            PARTITION_KEY_PATH,
            sales_order_policy(key.id),
        )
        setup_duration = time.perf_counter() - setup_start

        print(f"[OK] Key {key.id} wrapped by {key.wrap_metadata.value}")
        print(f"[OK] Container {config.container_name} ready")
        print(f"[PERF] Setup: {setup_duration * 1000:.3f}ms\n")

        container = await store.container(config.container_name)

        # ====================================================================
        # Step 2: Create items
        # ====================================================================
        print("+" + "-" * 68 + "+")
        print("|  Step 2: Create Items" + " " * 46 + "|")
        print("+" + "-" * 68 + "+")

        order1 = sample_sales_order("Account1", str(uuid4()))
        order2 = sample_sales_order("Account2", str(uuid4()))
        order2.sub_total = Decimal("552.4589")

        create_start = time.perf_counter()
        await container.create_item(order1.to_document())
        await container.create_item(order2.to_document())
        create_duration = time.perf_counter() - create_start

        print(f"[OK] Created orders {order1.id} and {order2.id}")
        print(f"[PERF] Create: {create_duration * 1000:.3f}ms\n")

        # ====================================================================
        # Step 3: Read item by id
        # ====================================================================
        print("+" + "-" * 68 + "+")
        print("|  Step 3: Read Item by Id" + " " * 43 + "|")
        print("+" + "-" * 68 + "+")

        read_start = time.perf_counter()
        document = await container.read_item(order1.id, order1.account_number)
        read_duration = time.perf_counter() - read_start

        _show([document])
        print(f"[PERF] Read: {read_duration * 1000:.3f}ms\n")

        # ====================================================================
        # Step 4: Query on an encrypted field
        # ====================================================================
        print("+" + "-" * 68 + "+")
        print("|  Step 4: Query subTotal = 552.4589" + " " * 33 + "|")
        print("+" + "-" * 68 + "+")

        query_start = time.perf_counter()
        results = await container.query_equals("/subTotal", Decimal("552.4589"))
        query_duration = time.perf_counter() - query_start

        _show(results)
        print(f"[OK] {len(results)} matching document(s)")
        print(f"[PERF] Query: {query_duration * 1000:.3f}ms\n")
    except EncryptionError as e:
        print(f"[ERROR] {type(e).__name__}: {e}")
        raise
    finally:
        await store.close()

    print("=" * 70)
    print("                    DEMO COMPLETE")
    print("=" * 70 + "\n")


def main() -> None:
    """CLI entry point for document-encryption-demo command."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run_demo())


if __name__ == "__main__":
    main()
