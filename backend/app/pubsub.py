from __future__ import annotations

import json
import logging
import os
from contextlib import suppress
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as redis

# purpose: fan labs status changes out to checklist badge and triage listeners
# status: active

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
_redis = None

logger = logging.getLogger(__name__)


async def get_redis():
    global _redis
    if _redis is None:
        if os.getenv("TESTING") == "1":
            from fakeredis import aioredis
            _redis = aioredis.FakeRedis()
        else:
            _redis = redis.from_url(REDIS_URL)
    return _redis


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _serialize_event(event: dict[str, Any]) -> str:
    return json.dumps(event, default=_json_default)


async def publish_labs_event(topic: str, event: dict[str, Any]) -> None:
    """Publish a labs event on ``labs:{topic}``.

    Delivery is best effort; the durable copy lives in the labs event log.
    """

    try:
        r = await get_redis()
        await r.publish(f"labs:{topic}", _serialize_event(event))
    except (redis.RedisError, OSError) as exc:
        logger.warning("labs event for %s not published: %s", topic, exc)


async def iter_labs_events(topic: str) -> AsyncIterator[str]:
    """Yield labs pub/sub messages as a stream."""

    r = await get_redis()
    channel = f"labs:{topic}"
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                yield data.decode()
            else:
                yield str(data)
    finally:
        with suppress(Exception):
            await pubsub.unsubscribe(channel)
        with suppress(AttributeError):
            await pubsub.close()
