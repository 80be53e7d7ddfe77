"""
Document Encryption Library

Client-side field-level envelope encryption for a document store.

Overview
--------
- **Data Encryption Keys (DEKs)** encrypt document fields; each is stored
  wrapped, keyed by a logical id
- **Key Encryption Keys (KEKs)** live in a key-management service (Azure Key
  Vault) and wrap/unwrap DEKs
- **Field Encryption Policies** name the encrypted paths of a container and
  whether each is deterministic (queryable by equality) or randomized

Quick Start
-----------
```python
import asyncio
from decimal import Decimal
from document_encryption import (
    EncryptedStore,
    load_config,
    sales_order_policy,
    sample_sales_order,
)

async def main():
    config = load_config()
    async with await EncryptedStore.open(config) as store:
        key = await store.ensure_data_encryption_key()
        await store.provision_container(
            config.container_name, "/accountNumber", sales_order_policy(key.id)
        )
        container = await store.container(config.container_name)

        await container.create_item(sample_sales_order("Account1", "order-1").to_document())
        orders = await container.query_equals("/subTotal", Decimal("419.4589"))

asyncio.run(main())
```

Modules
-------
- `crypto`: AEAD_AES_256_CBC_HMAC_SHA256 primitives
- `serialization`: Typed value encoding and at-rest document JSON
- `key_wrap`: Azure Key Vault and local key wrap providers
- `key_store`: Wrapped DEK storage and resolved-key cache
- `policy`: Field encryption policy
- `cipher`: Document field encryption/decryption
- `query`: Encrypted equality parameters
- `transport`: Document-store transport interface (in-memory)
- `postgres_storage`: PostgreSQL key storage and transport
- `store`: Encrypted store facade
- `config`: Environment and .env configuration
- `sales_order`: Sales order documents and their policy
- `demo`: Demo CLI
- `errors`: Error types and exception classes
"""

__version__ = "0.1.0"

# ============================================================================
# Crypto Exports
# ============================================================================

from .crypto import (
    AEAD_AES_256_CBC_HMAC_SHA256,
    AES_256_KEY_SIZE,
    AeadAes256CbcHmacSha256,
    EncryptedValue,
    SecureKey,
    generate_random_bytes,
)

# ============================================================================
# Error Exports
# ============================================================================

from .errors import (
    ConfigError,
    CryptoError,
    DecryptionError,
    DuplicateKeyError,
    EncryptionError,
    ItemConflictError,
    ItemNotFoundError,
    KeyAccessError,
    KeyNotFoundError,
    PolicyConflictError,
    SerializationError,
    StoreAccessError,
    UnsupportedQueryError,
)

# ============================================================================
# Key Management Exports
# ============================================================================

from .key_wrap import (
    AzureKeyVaultKeyWrapProvider,
    KeyWrapProvider,
    LocalKeyWrapProvider,
)

from .key_store import (
    DataEncryptionKey,
    DataEncryptionKeyStore,
    EncryptionKeyWrapMetadata,
    InMemoryKeyStorage,
    KeyStorage,
)

# ============================================================================
# Policy / Cipher / Query Exports
# ============================================================================

from .policy import EncryptionType, FieldEncryptionPolicy, PolicyEntry
from .cipher import DocumentCipher
from .query import EqualityPredicate, bind_equality_parameter

# ============================================================================
# Store Exports (Primary API)
# ============================================================================

from .transport import ContainerProperties, DocumentTransport, InMemoryTransport
from .postgres_storage import PostgresKeyStorage, PostgresTransport
from .config import StoreConfig, load_config
from .store import EncryptedContainer, EncryptedStore
from .sales_order import (
    SalesOrder,
    SalesOrderDetail,
    sales_order_policy,
    sample_sales_order,
)

# ============================================================================
# Public API
# ============================================================================

__all__ = [
    # Version
    "__version__",
    # Crypto
    "AEAD_AES_256_CBC_HMAC_SHA256",
    "AES_256_KEY_SIZE",
    "AeadAes256CbcHmacSha256",
    "EncryptedValue",
    "SecureKey",
    "generate_random_bytes",
    # Errors
    "EncryptionError",
    "CryptoError",
    "KeyAccessError",
    "DuplicateKeyError",
    "KeyNotFoundError",
    "StoreAccessError",
    "ItemNotFoundError",
    "ItemConflictError",
    "DecryptionError",
    "UnsupportedQueryError",
    "PolicyConflictError",
    "SerializationError",
    "ConfigError",
    # Key management
    "KeyWrapProvider",
    "AzureKeyVaultKeyWrapProvider",
    "LocalKeyWrapProvider",
    "KeyStorage",
    "InMemoryKeyStorage",
    "DataEncryptionKey",
    "DataEncryptionKeyStore",
    "EncryptionKeyWrapMetadata",
    # Policy / cipher / query
    "EncryptionType",
    "PolicyEntry",
    "FieldEncryptionPolicy",
    "DocumentCipher",
    "EqualityPredicate",
    "bind_equality_parameter",
    # Store (Primary API)
    "ContainerProperties",
    "DocumentTransport",
    "InMemoryTransport",
    "PostgresKeyStorage",
    "PostgresTransport",
    "StoreConfig",
    "load_config",
    "EncryptedContainer",
    "EncryptedStore",
    # Sales orders
    "SalesOrder",
    "SalesOrderDetail",
    "sales_order_policy",
    "sample_sales_order",
]
