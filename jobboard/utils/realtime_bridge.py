"""Scoped subscriptions over the change feed.

A subscription is an explicitly owned handle: whoever subscribes must call
:meth:`RealtimeBridge.unsubscribe` before dropping it. Once ``unsubscribe``
returns, the handle's callback is never invoked again, including for events
the bus had already queued.
"""
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from jobboard.errors import ConnectionFailure
from jobboard.utils.realtime_bus import change_channel

logger = logging.getLogger(__name__)

Predicate = Callable[[Dict[str, Any]], bool]
OnEvent = Callable[[Dict[str, Any]], Union[None, Awaitable[None]]]
OnError = Callable[[ConnectionFailure], None]


@dataclass(frozen=True)
class Scope:

    table: str
    key: str

    @classmethod
    def conversation(cls, conversation_id: str) -> "Scope":
        return cls("messages", f"conversation:{conversation_id}")

    @classmethod
    def inbox(cls, user_id: str) -> "Scope":
        return cls("messages", f"user:{user_id}")

    @classmethod
    def notifications(cls, user_id: str) -> "Scope":
        return cls("notifications", f"user:{user_id}")

    @property
    def channel(self) -> str:
        return change_channel(self.table)

    def __str__(self) -> str:
        return f"{self.table}/{self.key}"


@dataclass(eq=False)
class Subscription:

    scope: Scope
    active: bool = True
    _sub: Any = field(default=None, repr=False)
    _task: Optional[asyncio.Task] = field(default=None, repr=False)


class RealtimeBridge:

    def __init__(self, bus) -> None:
        self._bus = bus
        self._active: set[Subscription] = set()

    @property
    def active_count(self) -> int:
        return len(self._active)

    async def subscribe(
        self,
        scope: Scope,
        predicate: Predicate,
        on_event: OnEvent,
        on_error: Optional[OnError] = None,
    ) -> Subscription:
        handle = Subscription(scope)

        async def _deliver(raw: str) -> None:
            if not handle.active:
                return
            try:
                change = json.loads(raw)
            except ValueError:
                logger.warning("Dropping malformed change event on %s", scope)
                return
            if change.get("type") != "INSERT" or change.get("table") != scope.table:
                return
            record = change.get("record")
            if not isinstance(record, dict) or not predicate(record):
                return
            try:
                result = on_event(record)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event handler for %s failed", scope)

        # bus.subscribe raises ConnectionFailure when the feed cannot be opened
        handle._sub = await self._bus.subscribe(scope.channel, _deliver)
        handle._task = asyncio.create_task(handle._sub.run())
        handle._task.add_done_callback(lambda task: self._feed_ended(handle, task, on_error))
        self._active.add(handle)
        logger.debug("Subscribed to %s", scope)
        return handle

    async def unsubscribe(self, handle: Optional[Subscription]) -> None:
        if handle is None or not handle.active:
            return
        handle.active = False
        self._active.discard(handle)
        task = handle._task
        if task is asyncio.current_task():
            # released from inside its own handler; stop the feed once the handler yields
            asyncio.get_running_loop().call_soon(task.cancel)
            await handle._sub.cancel()
        else:
            task.cancel()
            await handle._sub.cancel()
            try:
                await task
            except (asyncio.CancelledError, ConnectionFailure):
                pass
        logger.debug("Unsubscribed from %s", handle.scope)

    async def close(self) -> None:
        for handle in list(self._active):
            await self.unsubscribe(handle)

    def _feed_ended(self, handle: Subscription, task: asyncio.Task, on_error: Optional[OnError]) -> None:
        if task.cancelled() or not handle.active:
            return
        handle.active = False
        self._active.discard(handle)
        exc = task.exception()
        failure = exc if isinstance(exc, ConnectionFailure) else ConnectionFailure(f"feed for {handle.scope} ended: {exc}")
        logger.error("Realtime feed for %s dropped: %s", handle.scope, failure)
        if on_error is not None:
            on_error(failure)
