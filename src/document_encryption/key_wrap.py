"""
Key wrap providers.

This module provides:
- KeyWrapProvider: Abstract interface to a key-management service
- AzureKeyVaultKeyWrapProvider: Wraps keys with an Azure Key Vault RSA key
- LocalKeyWrapProvider: RFC 3394 AES key wrap with in-process KEKs (dev/tests)

A provider wraps a raw data encryption key with the key-encryption key (KEK)
identified by URI, and unwraps it again. Failures surface as KeyAccessError;
providers never retry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
)
from azure.identity.aio import DefaultAzureCredential
from azure.keyvault.keys.crypto import KeyWrapAlgorithm
from azure.keyvault.keys.crypto.aio import CryptographyClient
from cryptography.hazmat.primitives.keywrap import (
    InvalidUnwrap,
    aes_key_unwrap,
    aes_key_wrap,
)

from .crypto import AES_256_KEY_SIZE, SecureKey
from .errors import KeyAccessError

logger = logging.getLogger(__name__)

AZURE_KEY_VAULT: str = "AZURE_KEY_VAULT"
LOCAL: str = "LOCAL"


class KeyWrapProvider(ABC):
    """
    Interface to a key-management service.

    `name` is recorded in wrap metadata as the resolver name and `algorithm`
    as the wrap algorithm.
    """

    name: str
    algorithm: str

    @abstractmethod
    async def wrap(self, raw_key: bytes, key_encryption_key_uri: str) -> bytes:
        """Wrap a raw data encryption key with the KEK at the given URI."""
        ...

    @abstractmethod
    async def unwrap(self, wrapped_key: bytes, key_encryption_key_uri: str) -> bytes:
        """Unwrap a wrapped data encryption key with the KEK at the given URI."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None


class AzureKeyVaultKeyWrapProvider(KeyWrapProvider):
    """
    Azure Key Vault key wrap provider.

    Authenticates with an ambient credential (DefaultAzureCredential unless
    one is supplied) and keeps one CryptographyClient per KEK URI.
    """

    name = AZURE_KEY_VAULT

    def __init__(
        self,
        credential: Any = None,
        *,
        algorithm: str = KeyWrapAlgorithm.rsa_oaep.value,
    ) -> None:
        """
        Initialize Azure Key Vault provider.

        Args:
            credential: Async Azure credential (DefaultAzureCredential if None)
            algorithm: Key wrap algorithm name, e.g. "RSA-OAEP"
        """
        self._owns_credential = credential is None
        self._credential = credential or DefaultAzureCredential()
        self._wrap_algorithm = KeyWrapAlgorithm(algorithm)
        self.algorithm = self._wrap_algorithm.value
        self._clients: Dict[str, CryptographyClient] = {}

    def _client_for(self, key_encryption_key_uri: str) -> CryptographyClient:
        client = self._clients.get(key_encryption_key_uri)
        if client is None:
            try:
                client = CryptographyClient(key_encryption_key_uri, self._credential)
            except ValueError as e:
                raise KeyAccessError(
                    f"Invalid key encryption key URI {key_encryption_key_uri}: {e}"
                ) from e
            self._clients[key_encryption_key_uri] = client
        return client

    async def wrap(self, raw_key: bytes, key_encryption_key_uri: str) -> bytes:
        client = self._client_for(key_encryption_key_uri)
        try:
            result = await client.wrap_key(self._wrap_algorithm, raw_key)
        except AzureError as e:
            raise _key_access_error("wrap", key_encryption_key_uri, e) from e
        logger.debug("Wrapped data encryption key with %s", key_encryption_key_uri)
        return result.encrypted_key

    async def unwrap(self, wrapped_key: bytes, key_encryption_key_uri: str) -> bytes:
        client = self._client_for(key_encryption_key_uri)
        try:
            result = await client.unwrap_key(self._wrap_algorithm, wrapped_key)
        except AzureError as e:
            raise _key_access_error("unwrap", key_encryption_key_uri, e) from e
        logger.debug("Unwrapped data encryption key with %s", key_encryption_key_uri)
        return result.key

    async def close(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.close()
        if self._owns_credential:
            await self._credential.close()


def _key_access_error(operation: str, uri: str, error: AzureError) -> KeyAccessError:
    if isinstance(error, ClientAuthenticationError):
        reason = "authentication failed"
    elif isinstance(error, ResourceNotFoundError):
        reason = "key encryption key not found"
    elif isinstance(error, HttpResponseError) and error.status_code == 403:
        reason = "access denied"
    else:
        reason = "key vault request failed"
    return KeyAccessError(f"Failed to {operation} key with {uri}: {reason}: {error}")


class LocalKeyWrapProvider(KeyWrapProvider):
    """
    In-process key wrap provider using AES key wrap (RFC 3394).

    KEKs are held in memory and addressed by an arbitrary URI string.
    NOT recommended for production use.
    """

    name = LOCAL
    algorithm = "A256KW"

    def __init__(self, keys: Optional[Dict[str, bytes]] = None) -> None:
        """
        Initialize local provider.

        Args:
            keys: Mapping of KEK URI to 32-byte KEK
        """
        self._keys: Dict[str, SecureKey] = {}
        for uri, kek in (keys or {}).items():
            self.add_key(uri, kek)

    def add_key(self, key_encryption_key_uri: str, kek: Optional[bytes] = None) -> None:
        """
        Register a KEK (generated if not given).

        Raises:
            ValueError: If kek is not 32 bytes
        """
        if kek is None:
            self._keys[key_encryption_key_uri] = SecureKey.generate()
            return
        if len(kek) != AES_256_KEY_SIZE:
            raise ValueError("KEK must be exactly 32 bytes")
        self._keys[key_encryption_key_uri] = SecureKey(kek)

    def _kek(self, key_encryption_key_uri: str) -> SecureKey:
        kek = self._keys.get(key_encryption_key_uri)
        if kek is None:
            raise KeyAccessError(
                f"Key encryption key not found: {key_encryption_key_uri}"
            )
        return kek

    async def wrap(self, raw_key: bytes, key_encryption_key_uri: str) -> bytes:
        kek = self._kek(key_encryption_key_uri)
        try:
            return aes_key_wrap(kek.as_bytes(), raw_key)
        except ValueError as e:
            raise KeyAccessError(f"Failed to wrap key: {e}") from e

    async def unwrap(self, wrapped_key: bytes, key_encryption_key_uri: str) -> bytes:
        kek = self._kek(key_encryption_key_uri)
        try:
            return aes_key_unwrap(kek.as_bytes(), wrapped_key)
        except (InvalidUnwrap, ValueError) as e:
            raise KeyAccessError(
                f"Failed to unwrap key with {key_encryption_key_uri}"
            ) from e
