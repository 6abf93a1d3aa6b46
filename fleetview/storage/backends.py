"""Key/value storage backends used for snapshot and preference persistence."""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

import redis.asyncio as redis

from fleetview.config import settings

logger = logging.getLogger(__name__)

SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class StorageError(RuntimeError):
    """Raised by a backend when a read or write fails."""

    def __init__(self, operation: str, key: str, message: str):
        super().__init__(f"storage {operation} {key}: {message}")
        self.operation = operation
        self.key = key


class KeyValueStorage(ABC):
    """Durable string key/value store."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored string or None. Raises StorageError on failure."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a string. Raises StorageError on failure."""
        pass

    async def close(self):
        """Release backend resources."""
        return None


class MemoryStorage(KeyValueStorage):
    """Process-local storage for tests and ephemeral runs."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value


class FileStorage(KeyValueStorage):
    """
    One JSON document per key under a base directory.

    Writes go to a temporary file first and are renamed into place, so a
    crash mid-write leaves the previous document intact.
    """

    def __init__(self, base_path: Optional[str] = None):
        """
        Args:
            base_path: Directory for stored documents (defaults to config)
        """
        self.base_path = Path(base_path or settings.storage_path)

    def _path(self, key: str) -> Path:
        return self.base_path / f"{SAFE_KEY_RE.sub('_', key)}.json"

    async def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError("get", key, str(e)) from e

    async def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError("set", key, str(e)) from e


class RedisStorage(KeyValueStorage):
    """Redis-backed storage."""

    def __init__(self, redis_url: Optional[str] = None, namespace: str = "fleetview"):
        self.redis_url = redis_url or settings.redis_url
        self.namespace = namespace
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get or create Redis connection."""
        if self._redis is None:
            self._redis = await redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            redis_client = await self._get_redis()
            return await redis_client.get(self._key(key))
        except (redis.RedisError, OSError) as e:
            raise StorageError("get", key, str(e)) from e

    async def set(self, key: str, value: str) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.set(self._key(key), value)
        except (redis.RedisError, OSError) as e:
            raise StorageError("set", key, str(e)) from e


def build_storage(backend: Optional[str] = None) -> KeyValueStorage:
    """Create the configured storage backend."""
    name = (backend or settings.storage_backend).lower()
    if name == "redis":
        return RedisStorage()
    if name == "memory":
        return MemoryStorage()
    if name != "file":
        logger.warning(f"Unknown storage backend {name!r}, using file storage")
    return FileStorage()
