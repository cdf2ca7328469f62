"""Conversation list and open-conversation state for one dashboard view.

The store is bound to the acting user when it is created; nothing in here
looks the user up again. Messages only enter :attr:`ConversationStore.messages`
through the realtime path (or the history load), never speculatively on send.

Every open bumps a generation counter. Async completions capture the
generation they were issued under and are dropped when it has moved on, so a
slow "mark read" for a conversation the user already left cannot reset
counters of the one now on screen.
"""
import bisect
import functools
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from jobboard.errors import (
    CommandFailure,
    ConnectionFailure,
    DataServiceError,
    LoadFailure,
    Outcome,
    Superseded,
    ValidationFailure,
)
from jobboard.schemas.chat import Conversation, Message
from jobboard.services.chat_service import PREVIEW_LENGTH, ChatService
from jobboard.utils.realtime_bridge import RealtimeBridge, Scope, Subscription

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _order(message: Message):
    return message.order_key


def _by_recency(conversations: List[Conversation]) -> List[Conversation]:
    return sorted(conversations, key=lambda c: c.last_message_at or _EPOCH, reverse=True)


class ConversationStore:

    def __init__(
        self,
        user_id: str,
        chat: ChatService,
        bridge: RealtimeBridge,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.user_id = user_id
        self._chat = chat
        self._bridge = bridge
        self._on_change = on_change

        self.conversations: List[Conversation] = []
        self.selected_id: Optional[str] = None
        self.messages: List[Message] = []
        self.connection_error: Optional[ConnectionFailure] = None

        self._message_ids: set[str] = set()
        # message ids already reflected in the conversation list (preview + counter)
        self._applied: set[str] = set()
        self._generation = 0
        # generation whose open committed; events for later opens wait in _pending
        self._committed_generation = 0
        # conversation whose committed subscription is live; the inbox leaves it alone
        self._live_id: Optional[str] = None
        self._pending: List[Dict] = []
        self._subscription: Optional[Subscription] = None
        self._inbox: Optional[Subscription] = None

    @property
    def unread_total(self) -> int:
        return sum(c.unread_count for c in self.conversations)

    def is_own(self, message: Message) -> bool:
        return message.sender_id == self.user_id

    def search(self, term: str) -> List[Conversation]:
        needle = (term or "").strip().casefold()
        if not needle:
            return list(self.conversations)
        return [c for c in self.conversations if needle in c.participant.display_name.casefold()]

    async def load_conversations(self) -> Outcome:
        try:
            conversations = await self._chat.list_conversations(self.user_id)
        except DataServiceError as exc:
            logger.warning("Loading conversations for %s failed: %s", self.user_id, exc)
            return Outcome.failure(LoadFailure(str(exc)))
        self.conversations = _by_recency(conversations)
        self._notify()
        return Outcome.success(list(self.conversations))

    async def open_conversation(self, conversation_id: str) -> Outcome:
        await self._release_conversation()
        self._generation += 1
        generation = self._generation
        self._pending = []

        try:
            subscription = await self._bridge.subscribe(
                Scope.conversation(conversation_id),
                lambda record: record.get("conversation_id") == conversation_id,
                functools.partial(self._on_conversation_event, generation, conversation_id),
                on_error=self._on_feed_error,
            )
        except ConnectionFailure as exc:
            logger.warning("Could not subscribe to conversation %s: %s", conversation_id, exc)
            return Outcome.failure(exc)
        if generation != self._generation:
            await self._bridge.unsubscribe(subscription)
            return Outcome.failure(Superseded(conversation_id))
        self._subscription = subscription

        try:
            history = await self._chat.get_history(conversation_id)
        except DataServiceError as exc:
            return await self._abandon_open(generation, LoadFailure(f"history of {conversation_id}: {exc}"))
        if generation != self._generation:
            return Outcome.failure(Superseded(conversation_id))
        try:
            await self._chat.mark_conversation_read(conversation_id, self.user_id)
        except DataServiceError as exc:
            return await self._abandon_open(generation, CommandFailure(f"mark {conversation_id} read: {exc}"))
        if generation != self._generation:
            logger.debug("Dropping superseded open of %s", conversation_id)
            return Outcome.failure(Superseded(conversation_id))

        messages: Dict[str, Message] = {m.id: self._as_read(m) for m in history}
        self.selected_id = conversation_id
        self._committed_generation = generation
        self._live_id = conversation_id
        self.messages = sorted(messages.values(), key=_order)
        self._message_ids = set(messages)
        self._applied.update(messages)
        self._set_unread(conversation_id, 0)
        self.connection_error = None

        pending, self._pending = self._pending, []
        for record in pending:
            self.on_message_event(record)
        self._notify()

        if any(self._addressed_unread(m) for m in self.messages):
            await self._acknowledge(generation, conversation_id)
        return Outcome.success(list(self.messages))

    async def send_message(self, conversation_id: str, text: str) -> Outcome:
        if not text or not text.strip():
            return Outcome.failure(ValidationFailure("Message text is empty"))
        index = self._index_of(conversation_id)
        if index is None:
            return Outcome.failure(ValidationFailure(f"Unknown conversation {conversation_id}"))
        receiver_id = self.conversations[index].participant.id
        try:
            message = await self._chat.send_message(conversation_id, self.user_id, receiver_id, text)
        except ValidationFailure as exc:
            return Outcome.failure(exc)
        except DataServiceError as exc:
            logger.warning("Sending to %s failed: %s", conversation_id, exc)
            return Outcome.failure(CommandFailure(str(exc)))
        return Outcome.success(message.id)

    def on_message_event(self, record: Dict) -> Optional[Message]:
        """Merge one delivered message; returns it, or None when nothing changed."""
        try:
            message = Message.model_validate(record)
        except ValidationError as exc:
            logger.warning("Ignoring malformed message event: %s", exc)
            return None

        displayed = message.conversation_id == self.selected_id
        if displayed:
            if message.id in self._message_ids:
                return None
            bisect.insort(self.messages, message, key=_order)
            self._message_ids.add(message.id)
        if not self._apply_to_conversation(message) and not displayed:
            return None
        self._notify()
        return message

    async def watch_inbox(self) -> Outcome:
        if self._inbox is not None and self._inbox.active:
            return Outcome.success()
        try:
            self._inbox = await self._bridge.subscribe(
                Scope.inbox(self.user_id),
                lambda record: self.user_id in (record.get("receiver_id"), record.get("sender_id")),
                self._on_inbox_event,
                on_error=self._on_feed_error,
            )
        except ConnectionFailure as exc:
            logger.warning("Could not watch inbox of %s: %s", self.user_id, exc)
            return Outcome.failure(exc)
        return Outcome.success()

    async def close(self) -> None:
        self._generation += 1
        await self._release_conversation()
        await self._bridge.unsubscribe(self._inbox)
        self._inbox = None

    async def _on_conversation_event(self, generation: int, conversation_id: str, record: Dict) -> None:
        if generation != self._generation:
            return
        if self._committed_generation != generation:
            # history still loading
            self._pending.append(record)
            return
        message = self.on_message_event(record)
        if message is not None and self._addressed_unread(message):
            await self._acknowledge(generation, conversation_id)

    async def _on_inbox_event(self, record: Dict) -> None:
        conversation_id = record.get("conversation_id")
        if conversation_id == self._live_id:
            return
        if self._index_of(conversation_id) is None:
            # someone started a new conversation; its counters come from the server
            outcome = await self.load_conversations()
            message_id = record.get("id") or record.get("_id")
            if outcome.ok and message_id:
                self._applied.add(str(message_id))
            return
        self.on_message_event(record)

    async def _acknowledge(self, generation: int, conversation_id: str) -> Outcome:
        try:
            await self._chat.mark_conversation_read(conversation_id, self.user_id)
        except DataServiceError as exc:
            logger.warning("Marking %s read failed: %s", conversation_id, exc)
            return Outcome.failure(CommandFailure(str(exc)))
        if generation != self._generation or self.selected_id != conversation_id:
            return Outcome.failure(Superseded(conversation_id))
        self.messages = [self._as_read(m) for m in self.messages]
        self._set_unread(conversation_id, 0)
        self._notify()
        return Outcome.success()

    async def _abandon_open(self, generation: int, error) -> Outcome:
        logger.warning("Opening conversation failed: %s", error)
        if generation == self._generation:
            await self._release_conversation()
        return Outcome.failure(error)

    async def _release_conversation(self) -> None:
        subscription, self._subscription = self._subscription, None
        self._live_id = None
        await self._bridge.unsubscribe(subscription)

    def _on_feed_error(self, failure: ConnectionFailure) -> None:
        self.connection_error = failure
        self._notify()

    def _apply_to_conversation(self, message: Message) -> bool:
        if message.id in self._applied:
            return False
        index = self._index_of(message.conversation_id)
        if index is None:
            logger.debug("Message %s for unknown conversation %s", message.id, message.conversation_id)
            return False
        self._applied.add(message.id)
        convo = self.conversations[index]
        update = {}
        if convo.last_message_at is None or message.created_at >= convo.last_message_at:
            update["last_message"] = message.content[:PREVIEW_LENGTH]
            update["last_message_at"] = message.created_at
        if self._addressed_unread(message):
            update["unread_count"] = convo.unread_count + 1
        if update:
            conversations = list(self.conversations)
            conversations[index] = convo.model_copy(update=update)
            self.conversations = _by_recency(conversations)
        return True

    def _set_unread(self, conversation_id: str, count: int) -> None:
        self.conversations = [
            c.model_copy(update={"unread_count": count}) if c.id == conversation_id else c
            for c in self.conversations
        ]

    def _index_of(self, conversation_id: Optional[str]) -> Optional[int]:
        for index, convo in enumerate(self.conversations):
            if convo.id == conversation_id:
                return index
        return None

    def _addressed_unread(self, message: Message) -> bool:
        return message.receiver_id == self.user_id and not message.read

    def _as_read(self, message: Message) -> Message:
        if self._addressed_unread(message):
            return message.model_copy(update={"read": True})
        return message

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
