"""
Document-store transport.

This module provides:
- DocumentTransport: Narrow interface to the underlying document store
- ContainerProperties: Container name, partition key path, policy descriptor
- InMemoryTransport: asyncio-safe in-memory implementation for testing

The transport only ever sees at-rest bytes: designated fields are already
ciphertext. Items carrying a ttl (seconds) expire ttl seconds after their
last write.
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from .errors import ItemConflictError, StoreAccessError
from .query import EqualityPredicate
from .serialization import escape_key, to_json_compatible


@dataclass(frozen=True)
class ContainerProperties:
    """Container metadata as stored by the transport."""

    name: str
    partition_key_path: str
    encryption_policy: Dict[str, Any] = field(default_factory=dict)


def partition_key_token(partition_key: Any) -> str:
    """Stable string form of a partition key value."""
    return json.dumps(to_json_compatible(partition_key), sort_keys=True, separators=(",", ":"))


class DocumentTransport(ABC):
    """
    Abstract document-store transport, scoped to one database.

    All methods are async. Failures raise StoreAccessError (or a subclass).
    """

    @property
    @abstractmethod
    def database_name(self) -> str:
        ...

    @abstractmethod
    async def create_database_if_not_exists(self) -> bool:
        """Create the database. Returns True if it was created."""
        ...

    @abstractmethod
    async def create_container_if_not_exists(
        self,
        name: str,
        partition_key_path: str,
        encryption_policy: Dict[str, Any],
    ) -> Tuple[ContainerProperties, bool]:
        """
        Create a container with an attached encryption policy descriptor.

        Returns:
            (properties of the container as stored, True if it was created)
        """
        ...

    @abstractmethod
    async def read_container(self, name: str) -> Optional[ContainerProperties]:
        """Container properties, or None if it does not exist."""
        ...

    @abstractmethod
    async def put(
        self,
        container: str,
        item_id: str,
        partition_key: Any,
        body: bytes,
        ttl: Optional[int] = None,
    ) -> None:
        """
        Create an item.

        Raises:
            ItemConflictError: If the id already exists in the partition
        """
        ...

    @abstractmethod
    async def get(self, container: str, item_id: str, partition_key: Any) -> Optional[bytes]:
        """Item body, or None if missing or expired."""
        ...

    @abstractmethod
    def query(self, container: str, predicate: EqualityPredicate) -> AsyncIterator[bytes]:
        """Stream the bodies of live items matching predicate."""
        ...

    async def close(self) -> None:
        return None


@dataclass
class _Item:
    body: bytes
    expires_at: Optional[float]


class InMemoryTransport(DocumentTransport):
    """
    In-memory transport for testing.

    Uses asyncio.Lock for safe concurrent access.
    """

    def __init__(
        self,
        database_name: str = "test",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._database_name = database_name
        self._clock = clock
        self._database_created = False
        self._containers: Dict[str, ContainerProperties] = {}
        self._items: Dict[str, Dict[Tuple[str, str], _Item]] = {}
        self._lock = asyncio.Lock()

    @property
    def database_name(self) -> str:
        return self._database_name

    async def create_database_if_not_exists(self) -> bool:
        async with self._lock:
            created = not self._database_created
            self._database_created = True
            return created

    async def create_container_if_not_exists(
        self,
        name: str,
        partition_key_path: str,
        encryption_policy: Dict[str, Any],
    ) -> Tuple[ContainerProperties, bool]:
        async with self._lock:
            self._require_database()
            existing = self._containers.get(name)
            if existing is not None:
                return existing, False
            properties = ContainerProperties(
                name=name,
                partition_key_path=partition_key_path,
                encryption_policy=encryption_policy,
            )
            self._containers[name] = properties
            self._items[name] = {}
            return properties, True

    async def read_container(self, name: str) -> Optional[ContainerProperties]:
        async with self._lock:
            return self._containers.get(name)

    async def put(
        self,
        container: str,
        item_id: str,
        partition_key: Any,
        body: bytes,
        ttl: Optional[int] = None,
    ) -> None:
        async with self._lock:
            items = self._container_items(container)
            key = (partition_key_token(partition_key), item_id)
            current = items.get(key)
            if current is not None and not self._expired(current):
                raise ItemConflictError(
                    f"Item {item_id} already exists in container {container}"
                )
            expires_at = self._clock() + ttl if ttl is not None and ttl > 0 else None
            items[key] = _Item(body=body, expires_at=expires_at)

    async def get(self, container: str, item_id: str, partition_key: Any) -> Optional[bytes]:
        async with self._lock:
            items = self._container_items(container)
            item = items.get((partition_key_token(partition_key), item_id))
            if item is None or self._expired(item):
                return None
            return item.body

    async def query(self, container: str, predicate: EqualityPredicate) -> AsyncIterator[bytes]:
        async with self._lock:
            snapshot: List[_Item] = list(self._container_items(container).values())
        field = escape_key(predicate.field)
        expected = predicate.value
        for item in snapshot:
            if self._expired(item):
                continue
            raw = json.loads(item.body)
            if field in raw and raw[field] == expected and _same_kind(raw[field], expected):
                yield item.body

    def _require_database(self) -> None:
        if not self._database_created:
            raise StoreAccessError(f"Database {self._database_name} does not exist")

    def _container_items(self, container: str) -> Dict[Tuple[str, str], _Item]:
        self._require_database()
        items = self._items.get(container)
        if items is None:
            raise StoreAccessError(f"Container {container} does not exist")
        return items

    def _expired(self, item: _Item) -> bool:
        return item.expires_at is not None and self._clock() >= item.expires_at


def _same_kind(left: Any, right: Any) -> bool:
    # JSON equality: true != 1
    return isinstance(left, bool) == isinstance(right, bool)
