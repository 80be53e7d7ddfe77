"""
Value and document serialization.

Field values are turned into bytes before encryption: a one-byte type marker
followed by a canonical payload, so decryption restores the original Python
type (Decimal keeps its exponent, datetimes keep microseconds).

Documents at rest are JSON. Decimal, datetime and date values outside
encrypted fields are written as tagged objects ({"$decimal": "419.4589"})
so they survive the trip through the store. User keys starting with "$" are
escaped with a second "$" so they are never read back as tags.

Tuples are written as JSON arrays and read back as lists.
"""

from __future__ import annotations

import json
import struct
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any, Dict, Tuple

from .errors import DecryptionError, SerializationError

_DECIMAL_TAG = "$decimal"
_DATETIME_TAG = "$datetime"
_DATE_TAG = "$date"
_TAGS = frozenset({_DECIMAL_TAG, _DATETIME_TAG, _DATE_TAG})


class TypeMarker(IntEnum):
    """Leading byte of a serialized plaintext value."""

    BOOLEAN = 1
    DOUBLE = 2
    LONG = 3
    STRING = 4
    DECIMAL = 5
    DATETIME = 6
    DATE = 7
    ARRAY = 8
    OBJECT = 9


def to_json_compatible(value: Any) -> Any:
    """Convert a document value to plain JSON types, tagging Decimal/datetime/date."""
    if isinstance(value, Decimal):
        return {_DECIMAL_TAG: str(value)}
    # datetime is a subclass of date: check it first
    if isinstance(value, datetime):
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, dict):
        return {escape_key(str(k)): to_json_compatible(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_compatible(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    raise SerializationError(f"Unsupported value type: {type(value).__name__}")


def escape_key(key: str) -> str:
    """Object key as written at rest."""
    return "$" + key if key.startswith("$") else key


def _untag(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1:
        tag, raw = next(iter(obj.items()))
        if tag in _TAGS and isinstance(raw, str):
            try:
                if tag == _DECIMAL_TAG:
                    return Decimal(raw)
                if tag == _DATETIME_TAG:
                    return datetime.fromisoformat(raw)
                return date.fromisoformat(raw)
            except (InvalidOperation, ValueError) as e:
                raise SerializationError(f"Invalid {tag} value {raw!r}: {e}")
    if any(k.startswith("$$") for k in obj):
        return {(k[1:] if k.startswith("$$") else k): v for k, v in obj.items()}
    return obj


def from_json_compatible(value: Any) -> Any:
    """Inverse of to_json_compatible for an already-parsed JSON value."""
    if isinstance(value, dict):
        return _untag({k: from_json_compatible(v) for k, v in value.items()})
    if isinstance(value, list):
        return [from_json_compatible(v) for v in value]
    return value


def canonical_json(value: Any) -> bytes:
    """Canonical UTF-8 JSON (sorted keys, compact separators)."""
    try:
        return json.dumps(
            to_json_compatible(value),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")
    except ValueError as e:
        raise SerializationError(f"Value is not JSON serializable: {e}")


def dumps_document(document: Dict[str, Any]) -> bytes:
    """Serialize a document for the transport."""
    return canonical_json(document)


def loads_document(body: bytes | str) -> Dict[str, Any]:
    """Parse a document returned by the transport."""
    try:
        parsed = json.loads(body, object_hook=_untag)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Failed to parse document: {e}")
    if not isinstance(parsed, dict):
        raise SerializationError("Document body is not a JSON object")
    return parsed


def encode_value(value: Any) -> bytes:
    """
    Serialize a field value to type marker + payload bytes.

    Args:
        value: Non-null field value

    Returns:
        Bytes to be encrypted

    Raises:
        SerializationError: If the value type is not supported
    """
    if isinstance(value, bool):
        marker, payload = TypeMarker.BOOLEAN, b"\x01" if value else b"\x00"
    elif isinstance(value, int):
        marker, payload = TypeMarker.LONG, str(value).encode("ascii")
    elif isinstance(value, float):
        marker, payload = TypeMarker.DOUBLE, struct.pack(">d", value)
    elif isinstance(value, str):
        marker, payload = TypeMarker.STRING, value.encode("utf-8")
    elif isinstance(value, Decimal):
        marker, payload = TypeMarker.DECIMAL, str(value).encode("ascii")
    elif isinstance(value, datetime):
        marker, payload = TypeMarker.DATETIME, value.isoformat().encode("ascii")
    elif isinstance(value, date):
        marker, payload = TypeMarker.DATE, value.isoformat().encode("ascii")
    elif isinstance(value, (list, tuple)):
        marker, payload = TypeMarker.ARRAY, canonical_json(list(value))
    elif isinstance(value, dict):
        marker, payload = TypeMarker.OBJECT, canonical_json(value)
    else:
        raise SerializationError(f"Unsupported value type: {type(value).__name__}")
    return bytes([marker]) + payload


def _split(data: bytes) -> Tuple[TypeMarker, bytes]:
    if not data:
        raise DecryptionError("Decrypted value is empty")
    try:
        return TypeMarker(data[0]), data[1:]
    except ValueError:
        raise DecryptionError(f"Unknown type marker {data[0]}")


def decode_value(data: bytes) -> Any:
    """
    Inverse of encode_value.

    Raises:
        DecryptionError: If the marker or payload is malformed
    """
    marker, payload = _split(data)
    try:
        if marker == TypeMarker.BOOLEAN:
            return payload == b"\x01"
        if marker == TypeMarker.LONG:
            return int(payload.decode("ascii"))
        if marker == TypeMarker.DOUBLE:
            return struct.unpack(">d", payload)[0]
        if marker == TypeMarker.STRING:
            return payload.decode("utf-8")
        if marker == TypeMarker.DECIMAL:
            return Decimal(payload.decode("ascii"))
        if marker == TypeMarker.DATETIME:
            return datetime.fromisoformat(payload.decode("ascii"))
        if marker == TypeMarker.DATE:
            return date.fromisoformat(payload.decode("ascii"))
        # ARRAY / OBJECT
        return from_json_compatible(json.loads(payload.decode("utf-8")))
    except (ValueError, InvalidOperation, struct.error, SerializationError) as e:
        raise DecryptionError(f"Malformed {marker.name} payload: {e}")
