from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from katana_apr.exceptions import PersistenceFailure
from katana_apr.utils.addresses import normalize_address

logger = logging.getLogger(__name__)

Records = Dict[str, Dict[str, Any]]


class CacheStore(ABC):
    """Whole-document store for the vault APR mapping. Reads never raise; writes replace everything."""

    @abstractmethod
    async def put(self, records: Records) -> None:
        ...

    @abstractmethod
    async def get_all(self) -> Records:
        ...

    async def get(self, vault_address: str) -> Optional[Dict[str, Any]]:
        records = await self.get_all()
        return records.get(normalize_address(vault_address))


def _decode(raw: str | bytes, source: str) -> Records:
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Corrupt APR cache in {source}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"APR cache in {source} is not a mapping, ignoring")
        return {}
    return data


class FileCacheStore(CacheStore):
    def __init__(self, path: str):
        self.path = os.path.abspath(path)

    async def put(self, records: Records) -> None:
        payload = json.dumps(records, indent=2)
        try:
            await asyncio.to_thread(self._write_atomic, payload)
        except OSError as e:
            raise PersistenceFailure(f"could not write {self.path}: {e}") from e
        logger.info(f"Wrote {len(records)} vault records to {self.path}")

    def _write_atomic(self, payload: str) -> None:
        directory = os.path.dirname(self.path)
        os.makedirs(directory, exist_ok=True)
        # Same directory so the rename cannot cross filesystems
        fd, tmp_path = tempfile.mkstemp(prefix=".vault-apr-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get_all(self) -> Records:
        try:
            raw = await asyncio.to_thread(self._read)
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Could not read APR cache {self.path}: {e}")
            return {}
        return _decode(raw, self.path)

    def _read(self) -> str:
        with open(self.path, "r", encoding="utf-8") as fh:
            return fh.read()


class RedisCacheStore(CacheStore):
    def __init__(self, redis: Redis, key: str):
        self.r = redis
        self.key = key

    async def put(self, records: Records) -> None:
        payload = json.dumps(records, indent=2)
        try:
            await self.r.set(self.key, payload)
        except RedisError as e:
            raise PersistenceFailure(f"could not write redis key {self.key}: {e}") from e
        logger.info(f"Wrote {len(records)} vault records to redis key {self.key}")

    async def get_all(self) -> Records:
        try:
            data = await self.r.get(self.key)
        except RedisError as e:
            logger.warning(f"Could not read APR cache from redis: {e}")
            return {}
        if not data:
            return {}
        return _decode(data, f"redis key {self.key}")
