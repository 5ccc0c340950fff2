import asyncio
import json
import uuid
from datetime import datetime, timezone

from app import pubsub


async def _publish_and_receive(topic, event):
    pubsub._redis = None
    r = await pubsub.get_redis()
    listener = r.pubsub()
    await listener.subscribe(f"labs:{topic}")
    await pubsub.publish_labs_event(topic, event)
    message = None
    for _ in range(20):
        message = await listener.get_message(ignore_subscribe_messages=True, timeout=0.1)
        if message is not None:
            break
    await listener.unsubscribe(f"labs:{topic}")
    return message


def test_labs_events_are_serialized_onto_topic_channel():
    item_id = uuid.uuid4()
    stamp = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)
    try:
        message = asyncio.run(
            _publish_and_receive("knowledge", {"type": "knowledge_item_updated", "id": item_id, "at": stamp})
        )
    finally:
        pubsub._redis = None
    assert message is not None
    data = message["data"]
    body = json.loads(data.decode() if isinstance(data, bytes) else data)
    assert body == {"type": "knowledge_item_updated", "id": str(item_id), "at": stamp.isoformat()}
