# backend/storage/record_store.py

import copy
import json
from typing import Dict, Any, List, Optional
from abc import ABC, abstractmethod

import redis

from backend.config import get_settings
from backend.utils.logger import get_logger

logger = get_logger(__name__)


class RecordStore(ABC):
    """
    Key/value store for conversations, messages, sources, quizzes and attempts.
    Keys are namespaced by the caller, e.g. "conversation:<id>".
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Retrieve a record by key"""
        pass

    @abstractmethod
    def save(self, key: str, record: Dict[str, Any]):
        """Create or replace a record"""
        pass

    @abstractmethod
    def delete(self, key: str):
        """Delete a record (no-op when missing)"""
        pass

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        """All records whose key starts with prefix"""
        pass


class InMemoryRecordStore(RecordStore):
    """
    In-memory record store using Python dict.

    WARNING: All records are lost on server restart.
    Use only for development/testing.
    """

    def __init__(self):
        self._store: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        record = self._store.get(key)
        # Callers mutate what they read; keep stored records isolated like Redis does
        return copy.deepcopy(record) if record is not None else None

    def save(self, key: str, record: Dict[str, Any]):
        self._store[key] = copy.deepcopy(record)

    def delete(self, key: str):
        self._store.pop(key, None)

    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(self._store[key]) for key in sorted(self._store) if key.startswith(prefix)]


class RedisRecordStore(RecordStore):
    """
    Redis-based record store.

    Features:
    - Persistent storage across server restarts
    - Optional TTL (record_ttl=0 keeps records forever)
    - JSON serialization
    """

    KEY_PREFIX = "record:"

    def __init__(self, settings=None):
        if settings is None:
            settings = get_settings()

        self.settings = settings
        self.ttl = settings.record_ttl  # seconds, 0 = no expiry

        try:
            if settings.redis_url:
                self.redis_client = redis.from_url(
                    settings.redis_url,
                    decode_responses=True,
                    encoding='utf-8'
                )
            else:
                redis_kwargs = {
                    "host": settings.redis_host,
                    "port": settings.redis_port,
                    "db": settings.redis_db,
                    "decode_responses": True,
                    "encoding": "utf-8",
                    "max_connections": 10,
                }
                if settings.redis_password:
                    redis_kwargs["password"] = settings.redis_password
                if settings.redis_ssl:
                    redis_kwargs["ssl"] = True

                self.redis_client = redis.Redis(**redis_kwargs)

            self.redis_client.ping()
            logger.info("Redis connection established (TTL=%ss)", self.ttl)

        except redis.ConnectionError as e:
            logger.warning("Redis connection failed: %s", e)
            raise

    def _make_key(self, key: str) -> str:
        return f"{self.KEY_PREFIX}{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        data = self.redis_client.get(self._make_key(key))
        if data is None:
            return None

        try:
            return json.loads(data)
        except json.JSONDecodeError as e:
            logger.warning("JSON decode error for record %s: %s", key, e)
            return None

    def save(self, key: str, record: Dict[str, Any]):
        data = json.dumps(record, ensure_ascii=False)
        if self.ttl > 0:
            self.redis_client.setex(name=self._make_key(key), time=self.ttl, value=data)
        else:
            self.redis_client.set(name=self._make_key(key), value=data)

    def delete(self, key: str):
        self.redis_client.delete(self._make_key(key))

    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        keys = sorted(self.redis_client.scan_iter(match=f"{self._make_key(prefix)}*"))
        if not keys:
            return []

        records = []
        for key, data in zip(keys, self.redis_client.mget(keys)):
            if data is None:
                continue
            try:
                records.append(json.loads(data))
            except json.JSONDecodeError as e:
                logger.warning("JSON decode error for record %s: %s", key, e)
        return records


def create_record_store() -> RecordStore:
    """
    Factory function to create the appropriate record store.

    Returns:
        - RedisRecordStore if use_redis_store=True and Redis is available
        - InMemoryRecordStore otherwise (fallback for dev/testing)
    """
    settings = get_settings()

    if settings.use_redis_store:
        try:
            store = RedisRecordStore(settings)
            logger.info("Using RedisRecordStore")
            return store
        except Exception as e:
            logger.warning("Failed to initialize Redis: %s", e)
            logger.info("Falling back to InMemoryRecordStore")

    logger.info("Using InMemoryRecordStore (development mode)")
    return InMemoryRecordStore()
