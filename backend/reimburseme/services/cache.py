"""Redis cache for single-file OCR results.

The cache short-circuits re-extraction when the same user submits the
same file URL twice.  It is not an authoritative record: lookups that
fail (Redis down, corrupt payload) are logged and treated as a miss,
and the entry expires after ``OCR_CACHE_TTL_SECONDS``.

Keys are always namespaced by owner: ``ocr:<owner_id>:<normalized url>``.

The API reads through an async client, the worker writes through a
sync one; both are created once per process and passed in explicitly.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import redis
from pydantic import ValidationError as PydanticValidationError
from redis import asyncio as aioredis  # redis>=5

from reimburseme.core.config import settings
from reimburseme.models.schemas import ExtractedData

logger = logging.getLogger(__name__)

_redis_client: Optional[aioredis.Redis] = None
_sync_client: Optional[redis.Redis] = None
_lock = asyncio.Lock()


async def get_redis() -> aioredis.Redis:
    """Return the process-wide async Redis client, creating it on first use."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    async with _lock:
        if _redis_client is None:
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def get_sync_redis() -> redis.Redis:
    """Return the process-wide sync Redis client used by worker actors."""
    global _sync_client
    if _sync_client is None:
        _sync_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _sync_client


def normalize_cache_url(url: str) -> str:
    """Lowercase scheme and host, drop the fragment; path and query are kept."""
    parts = urlsplit(url.strip())
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, parts.query, ""))


def ocr_cache_key(owner_id: int, url: str) -> str:
    return f"ocr:{owner_id}:{normalize_cache_url(url)}"


def _decode(raw: Optional[str], key: str) -> Optional[ExtractedData]:
    if raw is None:
        return None
    try:
        return ExtractedData.model_validate(json.loads(raw))
    except (json.JSONDecodeError, PydanticValidationError):
        logger.warning("Discarding corrupt OCR cache entry %s", key)
        return None


class OcrCache:
    """Async read side of the OCR cache (API process)."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    async def lookup(self, owner_id: int, url: str) -> Optional[ExtractedData]:
        key = ocr_cache_key(owner_id, url)
        try:
            raw = await self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("OCR cache lookup failed for %s: %s", key, exc)
            return None
        return _decode(raw, key)


class OcrCacheWriter:
    """Sync write side of the OCR cache (worker process)."""

    def __init__(self, client: redis.Redis, ttl: Optional[int] = None):
        self.client = client
        self.ttl = ttl or settings.OCR_CACHE_TTL_SECONDS

    def store(self, owner_id: int, url: str, data: ExtractedData) -> None:
        key = ocr_cache_key(owner_id, url)
        try:
            self.client.set(key, data.model_dump_json(), ex=self.ttl)
        except redis.RedisError as exc:
            logger.warning("OCR cache write failed for %s: %s", key, exc)
