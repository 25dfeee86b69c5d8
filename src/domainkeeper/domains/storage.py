"""JSON file storage for domain records.

Storage file format (domains.json):
    {
        "domains": {
            "shop.example.com": {
                "hostname": "shop.example.com",
                "tenant_id": "tenant-1",
                "target": {"type": "shop", "id": "42"},
                "verification_token": "3f1c...",
                "status": "awaiting_dns",
                ...
            }
        }
    }

Every read returns a copy, so callers never hold a reference into the
cache. State changes go through update(), which re-reads the current
record under the store lock, lets the caller validate and mutate it,
and persists it before the lock is released. That read-modify-write is
the only serialization point; no lock is held across network calls.

The CLI and the server may share a file. Writes always re-read it and
replace it atomically, and reads reload it when it changed on disk.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

import structlog

from domainkeeper.core.exceptions import (
    DomainConflictError,
    DomainKeeperError,
    DomainNotFoundError,
    StorageCorruptedError,
)
from domainkeeper.domains.models import CustomDomain, DomainStatus

logger = structlog.get_logger()

T = TypeVar("T")


class JsonRecordStore(Generic[T]):
    """Keyed records in one JSON file, guarded by an asyncio lock.

    Suitable for self-hosted deployments with moderate record counts.
    Subclasses define the key, the codec and the errors raised for
    duplicate and missing keys.
    """

    collection = "records"

    def __init__(self, storage_path: str | Path) -> None:
        self.storage_path = Path(storage_path)
        self._lock = asyncio.Lock()
        self._cache: dict[str, T] | None = None
        self._cache_stamp: tuple[int, int, int] | None = None

    def key_for(self, record: T) -> str:
        raise NotImplementedError

    def _encode(self, record: T) -> dict[str, Any]:
        raise NotImplementedError

    def _decode(self, data: dict[str, Any]) -> T:
        raise NotImplementedError

    def _conflict(self, key: str) -> DomainKeeperError:
        raise NotImplementedError

    def _missing(self, key: str) -> DomainKeeperError:
        raise NotImplementedError

    def _stamp(self) -> tuple[int, int, int] | None:
        try:
            st = self.storage_path.stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    async def _load(self, fresh: bool = False) -> dict[str, T]:
        """Return the records, re-reading the file if another writer changed it.

        Raises:
            StorageCorruptedError: The file exists but cannot be decoded.
        """
        stamp = self._stamp()
        if not fresh and self._cache is not None and stamp == self._cache_stamp:
            return self._cache

        if stamp is None:
            self._cache, self._cache_stamp = {}, None
            return self._cache

        content = await asyncio.to_thread(self.storage_path.read_text)
        try:
            data = json.loads(content)
            records = {
                key: self._decode(item) for key, item in data.get(self.collection, {}).items()
            }
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Storage file unreadable", path=str(self.storage_path), error=str(e))
            raise StorageCorruptedError(str(self.storage_path), str(e)) from e

        self._cache, self._cache_stamp = records, stamp
        return self._cache

    def _write_atomic(self, content: str) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            dir=self.storage_path.parent, prefix=f".{self.storage_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.storage_path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp)
            raise

    async def _save(self, records: dict[str, T]) -> None:
        data = {self.collection: {key: self._encode(rec) for key, rec in records.items()}}
        content = json.dumps(data, indent=2)
        await asyncio.to_thread(self._write_atomic, content)
        self._cache, self._cache_stamp = records, self._stamp()

    async def get(self, key: str) -> T | None:
        async with self._lock:
            records = await self._load()
            record = records.get(key)
            return copy.deepcopy(record) if record is not None else None

    async def list_all(self) -> list[T]:
        async with self._lock:
            records = await self._load()
            return [copy.deepcopy(r) for r in records.values()]

    async def create(self, record: T) -> T:
        """Insert a new record.

        Raises:
            DomainKeeperError: The subclass conflict error if the key is taken.
        """
        key = self.key_for(record)
        async with self._lock:
            records = await self._load(fresh=True)
            if key in records:
                raise self._conflict(key)
            updated = dict(records)
            updated[key] = copy.deepcopy(record)
            await self._save(updated)
            return copy.deepcopy(record)

    async def update(self, key: str, mutate: Callable[[T], None]) -> T:
        """Re-read a record, apply mutate() to a copy and persist the result.

        mutate() may raise to reject the change; nothing is written then.

        Raises:
            DomainKeeperError: The subclass missing error if the key is unknown,
                or whatever mutate() raised.
        """
        async with self._lock:
            records = await self._load(fresh=True)
            current = records.get(key)
            if current is None:
                raise self._missing(key)
            record = copy.deepcopy(current)
            mutate(record)
            updated = dict(records)
            updated[key] = record
            await self._save(updated)
            return copy.deepcopy(record)

    async def delete(self, key: str) -> bool:
        """Delete a record.

        Returns:
            True if deleted, False if not found.
        """
        async with self._lock:
            records = await self._load(fresh=True)
            if key not in records:
                return False
            updated = dict(records)
            del updated[key]
            await self._save(updated)
            return True

    async def exists(self, key: str) -> bool:
        async with self._lock:
            records = await self._load()
            return key in records


class DomainStore(JsonRecordStore[CustomDomain]):
    """Custom domains keyed by normalized hostname.

    The hostname key is global across tenants.
    """

    collection = "domains"

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        super().__init__(storage_path)

    def key_for(self, record: CustomDomain) -> str:
        return record.hostname

    def _encode(self, record: CustomDomain) -> dict[str, Any]:
        return record.to_dict()

    def _decode(self, data: dict[str, Any]) -> CustomDomain:
        return CustomDomain.from_dict(data)

    def _conflict(self, key: str) -> DomainKeeperError:
        return DomainConflictError(key)

    def _missing(self, key: str) -> DomainKeeperError:
        return DomainNotFoundError(key)

    async def list_by_tenant(self, tenant_id: str) -> list[CustomDomain]:
        return [d for d in await self.list_all() if d.tenant_id == tenant_id]

    async def list_by_status(self, *statuses: DomainStatus) -> list[CustomDomain]:
        wanted = set(statuses)
        return [d for d in await self.list_all() if d.status in wanted]
