"""Storage adapters: in-memory and one-file-per-key on disk."""

import base64
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Dict, Optional, Tuple

import aiofiles
import aiofiles.os

from intake_gateway.lib.errors import StorageFailure
from intake_gateway.services.interfaces.storage import IStorageAdapter


logger = logging.getLogger(__name__)


class InMemoryStorageAdapter(IStorageAdapter):
    """Process-local storage with TTL support."""

    def __init__(self):
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        if not isinstance(value, (bytes, bytearray)):
            raise StorageFailure(f"Value for {key} must be bytes", {"key": key})
        expires_at = time.time() + ttl_seconds if ttl_seconds else None
        self._data[key] = (bytes(value), expires_at)

    def __len__(self) -> int:
        return len(self._data)


class FileStorageAdapter(IStorageAdapter):
    """Stores each key as a JSON envelope file under a directory."""

    def __init__(self, directory: str):
        self.directory = Path(directory).expanduser()
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        if not path.exists():
            return None

        try:
            async with aiofiles.open(path, 'r') as f:
                envelope = json.loads(await f.read())
        except (OSError, ValueError) as e:
            raise StorageFailure(f"Failed to read {key}: {e}", {"key": key})

        if not isinstance(envelope, dict) or not isinstance(envelope.get("value"), str):
            raise StorageFailure(f"Malformed entry for {key}", {"key": key})

        expires_at = envelope.get("expires_at")
        if expires_at is not None and (isinstance(expires_at, bool) or not isinstance(expires_at, (int, float))):
            raise StorageFailure(f"Malformed expiry for {key}: {expires_at!r}", {"key": key})

        if expires_at is not None and time.time() >= expires_at:
            try:
                await aiofiles.os.remove(path)
            except OSError as e:
                logger.debug(f"Could not remove expired entry {key}: {e}")
            return None

        try:
            return base64.b64decode(envelope["value"], validate=True)
        except ValueError as e:
            raise StorageFailure(f"Failed to decode {key}: {e}", {"key": key})

    async def put(self, key: str, value: bytes, ttl_seconds: Optional[int] = None) -> None:
        path = self._path_for(key)
        temp_path = path.with_suffix(".tmp")
        envelope = {
            "key": key,
            "expires_at": time.time() + ttl_seconds if ttl_seconds else None,
            "value": base64.b64encode(value).decode("ascii")
        }

        try:
            async with aiofiles.open(temp_path, 'w') as f:
                await f.write(json.dumps(envelope))
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            raise StorageFailure(f"Failed to write {key}: {e}", {"key": key})


def create_storage_adapter(backend: str, directory: str) -> IStorageAdapter:
    """Storage adapter for the configured backend."""
    if backend == "file":
        return FileStorageAdapter(directory)
    return InMemoryStorageAdapter()
