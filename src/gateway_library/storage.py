# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Credential storage.

Two layers:
- KeyValueStore: a durable string-keyed JSON store (in-memory or a single
  JSON file on disk). Any backend failure surfaces as StoreUnavailableError.
- CredentialStore: typed access to credential records and global usage
  stats on top of a KeyValueStore. Read paths degrade to "nothing found"
  when the backend is unavailable instead of failing the request.
"""

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import StoreUnavailableError
from .types import CredentialRecord, GlobalUsageStats, now_ms
from .utils.resilient_io import safe_read_json, safe_write_json

lib_logger = logging.getLogger("gateway_library")

KEY_PREFIX = "key:"
STATS_KEY = "stats:global"


class KeyValueStore(ABC):
    """Minimal async key-value interface the gateway persists through."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def put(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        ...


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store. Values are deep-copied in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str = "") -> List[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class JsonFileKeyValueStore(KeyValueStore):
    """
    Whole-document JSON file store.

    Features:
    - Blocking file I/O runs in a worker thread
    - Atomic writes (write to temp, then rename)
    - One asyncio.Lock serializes read-modify-write cycles
    """

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path)
        self._lock = asyncio.Lock()

    async def _load(self) -> Dict[str, Any]:
        try:
            data = await asyncio.to_thread(safe_read_json, self.file_path, lib_logger)
        except (OSError, ValueError) as e:  # JSONDecodeError, UnicodeDecodeError
            raise StoreUnavailableError(f"Failed to read {self.file_path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreUnavailableError(f"{self.file_path} does not hold a JSON object")
        return data

    async def _save(self, data: Dict[str, Any]) -> None:
        saved = await asyncio.to_thread(
            safe_write_json, self.file_path, data, lib_logger, True
        )
        if not saved:
            raise StoreUnavailableError(f"Failed to write {self.file_path}")

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            return (await self._load()).get(key)

    async def put(self, key: str, value: Any) -> None:
        async with self._lock:
            data = await self._load()
            data[key] = value
            await self._save(data)

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = await self._load()
            if key in data:
                del data[key]
                await self._save(data)

    async def list_keys(self, prefix: str = "") -> List[str]:
        async with self._lock:
            data = await self._load()
        return sorted(k for k in data if k.startswith(prefix))


class CredentialStore:
    """Typed credential and stats access over a KeyValueStore."""

    def __init__(self, backend: KeyValueStore):
        self.backend = backend

    @staticmethod
    def _record_key(label: str) -> str:
        return f"{KEY_PREFIX}{label}"

    def _parse(self, key: str, raw: Any) -> Optional[CredentialRecord]:
        try:
            return CredentialRecord.from_dict(raw)
        except ValueError as e:
            lib_logger.warning(f"Skipping malformed credential entry '{key}': {e}")
            return None

    async def get(self, label: str) -> Optional[CredentialRecord]:
        key = self._record_key(label)
        try:
            raw = await self.backend.get(key)
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] get '{label}' failed: {e}")
            return None
        if raw is None:
            return None
        return self._parse(key, raw)

    async def put_strict(self, record: CredentialRecord) -> None:
        await self.backend.put(self._record_key(record.label), record.to_dict())

    async def put(self, record: CredentialRecord) -> bool:
        try:
            await self.put_strict(record)
            return True
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] save '{record.label}' failed: {e}")
            return False

    async def delete_strict(self, label: str) -> None:
        await self.backend.delete(self._record_key(label))

    async def delete(self, label: str) -> bool:
        try:
            await self.delete_strict(label)
            return True
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] delete '{label}' failed: {e}")
            return False

    async def list_all(self) -> List[CredentialRecord]:
        try:
            keys = await self.backend.list_keys(KEY_PREFIX)
            records = []
            for key in keys:
                raw = await self.backend.get(key)
                if raw is None:
                    continue
                record = self._parse(key, raw)
                if record:
                    records.append(record)
            return records
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] list failed: {e}")
            return []

    async def get_stats(self) -> GlobalUsageStats:
        try:
            return GlobalUsageStats.from_dict(await self.backend.get(STATS_KEY))
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] stats read failed: {e}")
            return GlobalUsageStats()

    async def increment_stats(self, at_ms: Optional[int] = None) -> None:
        try:
            stats = GlobalUsageStats.from_dict(await self.backend.get(STATS_KEY))
            stats.increment(now_ms() if at_ms is None else at_ms)
            await self.backend.put(STATS_KEY, stats.to_dict())
        except StoreUnavailableError as e:
            lib_logger.error(f"[Store] stats update failed: {e}")


def create_store(path: Optional[Union[str, Path]] = None) -> CredentialStore:
    """File-backed store when a path is given, in-memory otherwise."""
    if path:
        lib_logger.info(f"Using JSON credential store at {path}")
        return CredentialStore(JsonFileKeyValueStore(path))
    lib_logger.warning(
        "CREDENTIAL_STORE_PATH not set; credentials are kept in memory and lost on restart"
    )
    return CredentialStore(MemoryKeyValueStore())
