"""One connected dashboard: owns the user's stores and speaks the websocket protocol.

Client frames are ``{"type": <action>, ...}``. Every action is answered with a
``result`` frame; every state change (local or realtime) schedules a ``state``
frame with a fresh snapshot.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from jobboard.errors import Outcome, ValidationFailure
from jobboard.services.chat_service import ChatService
from jobboard.services.conversation_store import ConversationStore
from jobboard.services.notification_feed import NotificationFeed
from jobboard.services.notification_service import NotificationService
from jobboard.utils.realtime_bridge import RealtimeBridge

logger = logging.getLogger(__name__)

SendJson = Callable[[Dict[str, Any]], Awaitable[None]]


class DashboardSession:

    def __init__(
        self,
        user_id: str,
        chat: ChatService,
        notifications: NotificationService,
        bridge: RealtimeBridge,
        send: SendJson,
        feed_limit: int = 10,
    ) -> None:
        self.user_id = user_id
        self._bridge = bridge
        self._send = send
        self._dirty = asyncio.Event()
        self._pusher: Optional[asyncio.Task] = None
        self.search_term = ""
        self.conversations = ConversationStore(user_id, chat, bridge, on_change=self._dirty.set)
        self.feed = NotificationFeed(user_id, notifications, bridge, on_change=self._dirty.set, limit=feed_limit)

    async def start(self) -> Dict[str, Outcome]:
        outcomes = {
            "conversations": await self.conversations.load_conversations(),
            "notifications": await self.feed.load_recent(),
            "inbox": await self.conversations.watch_inbox(),
            "feed": await self.feed.watch(),
        }
        for name, outcome in outcomes.items():
            if not outcome.ok:
                await self._send(_result(name, outcome))
        self._pusher = asyncio.create_task(self._push_state())
        self._dirty.set()
        return outcomes

    async def handle(self, frame: Dict[str, Any]) -> Dict[str, Any]:
        action = frame.get("type")
        if action == "open":
            outcome = await self.conversations.open_conversation(str(frame.get("conversation_id", "")))
            return _result(action, outcome, value=None)
        if action == "send":
            content = frame.get("content")
            if not isinstance(content, str):
                return _result(action, Outcome.failure(ValidationFailure("Message content must be text")))
            outcome = await self.conversations.send_message(str(frame.get("conversation_id", "")), content)
            return _result(action, outcome)
        if action == "search":
            self.search_term = str(frame.get("term") or "")
            self._dirty.set()
            matches = self.conversations.search(self.search_term)
            return _result(action, Outcome.success([c.id for c in matches]))
        if action == "mark_read":
            outcome = await self.feed.mark_read(str(frame.get("notification_id", "")))
            return _result(action, outcome, value=None)
        if action == "activate":
            return _result(action, await self.feed.activate(str(frame.get("notification_id", ""))))
        if action == "refresh":
            outcome = await self.conversations.load_conversations()
            if outcome.ok:
                outcome = await self.feed.load_recent()
            return _result(action, outcome, value=None)
        return {"type": "result", "action": action, "ok": False, "error": {"kind": "unknown_action", "detail": f"Unsupported action {action!r}"}}

    def snapshot(self) -> Dict[str, Any]:
        store = self.conversations
        return {
            "type": "state",
            "conversations": [c.model_dump(mode="json") for c in store.search(self.search_term)],
            "selected_id": store.selected_id,
            "messages": [dict(m.model_dump(mode="json"), own=store.is_own(m)) for m in store.messages],
            "unread_messages": store.unread_total,
            "notifications": [n.model_dump(mode="json") for n in self.feed.visible],
            "unread_notifications": self.feed.unread_count,
            "connection_error": _describe(store.connection_error or self.feed.connection_error),
        }

    async def close(self) -> None:
        pusher, self._pusher = self._pusher, None
        if pusher is not None:
            pusher.cancel()
            (result,) = await asyncio.gather(pusher, return_exceptions=True)
            if isinstance(result, Exception):
                logger.info("State push for %s stopped: %s", self.user_id, result)
        await self.conversations.close()
        await self.feed.close()

    async def _push_state(self) -> None:
        while True:
            await self._dirty.wait()
            self._dirty.clear()
            await self._send(self.snapshot())


def _describe(error) -> Optional[Dict[str, str]]:
    if error is None:
        return None
    return {"kind": error.kind, "detail": str(error)}


_UNSET = object()


def _result(action: str, outcome: Outcome, value: Any = _UNSET) -> Dict[str, Any]:
    frame: Dict[str, Any] = {"type": "result", "action": action, "ok": outcome.ok}
    if outcome.ok:
        if value is _UNSET:
            value = outcome.value
        if value is not None:
            frame["value"] = value
    else:
        frame["error"] = _describe(outcome.error)
    return frame
