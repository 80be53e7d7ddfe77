"""
Configuration loading.

Values come from the process environment, optionally seeded from a .env file.

Environment variables:
    DATABASE_URL              PostgreSQL connection string (required)
    DATABASE_NAME             Logical database name (required)
    CONTAINER_NAME            Container holding the documents (required)
    CLIENT_ENCRYPTION_KEY_ID  Data encryption key id (required)
    KEY_VAULT_KEY_URI         Key encryption key URI (required)
    KEY_WRAP_PROVIDER         "azure" (default) or "local"
    LOCAL_KEK_BASE64          32-byte KEK, base64, for the local provider
    KEY_CACHE_TTL_SECONDS     Lifetime of resolved keys (default: forever)
"""

from __future__ import annotations

import base64
import binascii
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

KEY_WRAP_PROVIDERS = ("azure", "local")


@dataclass(frozen=True)
class StoreConfig:
    """Static configuration record supplied at process start."""

    database_url: str
    database_name: str
    container_name: str
    data_encryption_key_id: str
    key_encryption_key_uri: str
    key_wrap_provider: str = "azure"
    local_key_encryption_key: Optional[bytes] = None
    key_cache_ttl: Optional[float] = None

    def __repr__(self) -> str:
        return (
            f"StoreConfig(database_name={self.database_name!r}, "
            f"container_name={self.container_name!r}, "
            f"data_encryption_key_id={self.data_encryption_key_id!r}, "
            f"key_encryption_key_uri={self.key_encryption_key_uri!r}, "
            f"key_wrap_provider={self.key_wrap_provider!r})"
        )


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigError(f"{name} must be set in environment or .env file")
    return value


def config_from_env(env: Mapping[str, str]) -> StoreConfig:
    """
    Build a StoreConfig from an environment mapping.

    Raises:
        ConfigError: If a required value is missing or malformed
    """
    provider = env.get("KEY_WRAP_PROVIDER", "azure").strip().lower() or "azure"
    if provider not in KEY_WRAP_PROVIDERS:
        raise ConfigError(
            f"KEY_WRAP_PROVIDER must be one of {', '.join(KEY_WRAP_PROVIDERS)}, got {provider!r}"
        )

    local_kek: Optional[bytes] = None
    if provider == "local":
        encoded = _required(env, "LOCAL_KEK_BASE64")
        try:
            local_kek = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ConfigError(f"LOCAL_KEK_BASE64 is not valid base64: {e}")
        if len(local_kek) != 32:
            raise ConfigError("LOCAL_KEK_BASE64 must decode to exactly 32 bytes")

    ttl: Optional[float] = None
    raw_ttl = env.get("KEY_CACHE_TTL_SECONDS", "").strip()
    if raw_ttl:
        try:
            ttl = float(raw_ttl)
        except ValueError:
            raise ConfigError(f"KEY_CACHE_TTL_SECONDS must be a number, got {raw_ttl!r}")
        if ttl <= 0:
            raise ConfigError("KEY_CACHE_TTL_SECONDS must be positive")

    return StoreConfig(
        database_url=_required(env, "DATABASE_URL"),
        database_name=_required(env, "DATABASE_NAME"),
        container_name=_required(env, "CONTAINER_NAME"),
        data_encryption_key_id=_required(env, "CLIENT_ENCRYPTION_KEY_ID"),
        key_encryption_key_uri=_required(env, "KEY_VAULT_KEY_URI"),
        key_wrap_provider=provider,
        local_key_encryption_key=local_kek,
        key_cache_ttl=ttl,
    )


def load_config(env_file: Optional[Path] = None) -> StoreConfig:
    """
    Load configuration from a .env file (if any) and the environment.

    Args:
        env_file: Explicit .env path; the nearest .env is used when None

    Returns:
        StoreConfig
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()
    return config_from_env(os.environ)
