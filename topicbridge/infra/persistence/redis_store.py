# =============================================================================
# File: topicbridge/infra/persistence/redis_store.py
# Description: Redis-backed document store for the mapping collections
# =============================================================================
# • One hash per collection: <prefix>:<collection>, field = natural key,
#   value = JSON document.
# • upsert = HSET (idempotent on the key); find = HGETALL + field filter.
# • Redis errors are converted into the bridge failure taxonomy.
# =============================================================================

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import (
    RedisError,
    AuthenticationError as RedisAuthenticationError,
    ConnectionError as RedisConnectionError,
    TimeoutError as RedisTimeoutError,
)

from topicbridge.common.exceptions.exceptions import TransientError, PermanentConfigError
from topicbridge.config.logging_config import get_logger
from topicbridge.config.redis_config import RedisConfig, get_redis_config

log = get_logger("topicbridge.infra.redis_store")


def build_redis_client(config: Optional[RedisConfig] = None) -> redis.Redis:
    """Build a Redis client from RedisConfig"""
    config = config or get_redis_config()
    return redis.from_url(config.redis_url, **config.get_connection_kwargs())


class RedisDocumentStore:
    """
    DocumentStorePort implementation on Redis hashes.

    Usage:
        store = RedisDocumentStore(build_redis_client())
        await store.upsert("chat_mappings", "123@s.whatsapp.net", {...})
        docs = await store.find("chat_mappings", {"destination_topic_id": 42})
    """

    def __init__(self, client: redis.Redis, key_prefix: Optional[str] = None):
        self._redis = client
        self._prefix = key_prefix if key_prefix is not None else get_redis_config().key_prefix

    def _hash_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}"

    async def upsert(self, collection: str, key: str, document: Dict[str, Any]) -> None:
        payload = json.dumps(document, ensure_ascii=False, default=str)
        try:
            await self._redis.hset(self._hash_key(collection), key, payload)
        except RedisError as e:
            raise self._classify(e, f"upsert {collection}/{key}") from e

    async def find(self, collection: str, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            raw = await self._redis.hgetall(self._hash_key(collection))
        except RedisError as e:
            raise self._classify(e, f"find {collection}") from e

        documents = []
        for field, value in raw.items():
            try:
                document = json.loads(value)
            except (TypeError, ValueError):
                log.warning(f"Skipping unreadable document {collection}/{field}")
                continue
            if all(document.get(k) == v for k, v in filter.items()):
                documents.append(document)
        return documents

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            log.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        log.info("Redis document store closed")

    @staticmethod
    def _classify(error: RedisError, context: str) -> Exception:
        if isinstance(error, RedisAuthenticationError):
            return PermanentConfigError(f"Redis {context}: {error}")
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            return TransientError(f"Redis {context}: {error}")
        # Everything else (READONLY replica, OOM, LOADING) clears on its own
        return TransientError(f"Redis {context}: {error}")
