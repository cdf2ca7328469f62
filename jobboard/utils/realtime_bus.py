import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

from jobboard.config import get_settings
from jobboard.errors import ConnectionFailure

logger = logging.getLogger(__name__)

OnMessage = Callable[[str], Awaitable[None]]


def change_channel(table: str) -> str:
    return f"changes:{table}"


def encode_change(table: str, record: Dict[str, Any], event: str = "INSERT") -> str:
    return json.dumps({"table": table, "type": event, "record": record}, default=str)


class LocalBus:
    """In-process pub/sub; each subscriber drains its own queue in delivery order."""

    def __init__(self) -> None:
        self._queues: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    async def publish(self, channel: str, message: str) -> None:
        for queue in list(self._queues.get(channel, ())):
            queue.put_nowait(message)

    async def subscribe(self, channel: str, on_message: OnMessage):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[channel].add(queue)
        queues = self._queues

        class _Sub:
            async def run(self_inner):
                while True:
                    data = await queue.get()
                    await on_message(data)

            async def cancel(self_inner):
                subscribers = queues.get(channel)
                if subscribers is not None:
                    subscribers.discard(queue)
                    if not subscribers:
                        del queues[channel]

        return _Sub()

    def subscriber_count(self, channel: str) -> int:
        return len(self._queues.get(channel, ()))

    async def close(self) -> None:
        self._queues.clear()


class RedisBus:

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        try:
            await self._redis.publish(channel, message)
        except RedisError as exc:
            raise ConnectionFailure(f"publish to {channel} failed: {exc}") from exc

    async def subscribe(self, channel: str, on_message: OnMessage):
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
        except RedisError as exc:
            await pubsub.aclose()
            raise ConnectionFailure(f"subscribe to {channel} failed: {exc}") from exc

        class _Sub:
            _running = True

            async def run(self_inner):
                while self_inner._running:
                    try:
                        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                    except RedisError as exc:
                        raise ConnectionFailure(f"feed for {channel} dropped: {exc}") from exc
                    if msg and msg.get("type") == "message":
                        data = msg.get("data")
                        if isinstance(data, bytes):
                            data = data.decode("utf-8")
                        await on_message(data)

            async def cancel(self_inner):
                self_inner._running = False
                try:
                    await pubsub.unsubscribe(channel)
                except RedisError as exc:
                    logger.warning("Unsubscribe from %s failed: %s", channel, exc)
                finally:
                    await pubsub.aclose()

        return _Sub()

    async def close(self) -> None:
        await self._redis.aclose()


_bus = None


async def get_bus():
    global _bus
    if _bus is not None:
        return _bus
    url = get_settings().redis_url
    if url:
        _bus = RedisBus(url)
        logger.info("Realtime bus backed by Redis")
    else:
        _bus = LocalBus()
        logger.info("Realtime bus running in-process (REDIS_URL not set)")
    return _bus


def set_bus(bus) -> None:
    global _bus
    _bus = bus


async def close_bus() -> None:
    global _bus
    if _bus is not None:
        await _bus.close()
    _bus = None


async def publish_change(table: str, record: Dict[str, Any], bus: Optional[Any] = None) -> None:
    target = bus if bus is not None else await get_bus()
    await target.publish(change_channel(table), encode_change(table, record))
