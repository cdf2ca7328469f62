from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import pytest

from jobboard.errors import ConnectionFailure, DataServiceError
from jobboard.schemas.chat import Conversation, Message
from jobboard.schemas.notification import Notification
from jobboard.schemas.user import Participant
from jobboard.utils.realtime_bus import LocalBus, publish_change


BASE_TIME = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
ME = "user-me"


def at(minute: int) -> datetime:
    return BASE_TIME + timedelta(minutes=minute)


def make_message(message_id: str, conversation_id: str, sender: str, receiver: str, minute: int, read: bool = False, content: str = "hello") -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender,
        receiver_id=receiver,
        content=content,
        created_at=at(minute),
        read=read,
    )


def make_conversation(conversation_id: str, other_id: str, name: str, minute: int, unread: int = 0) -> Conversation:
    return Conversation(
        id=conversation_id,
        participant=Participant(id=other_id, full_name=name, role="employer"),
        last_message="earlier",
        last_message_at=at(minute),
        unread_count=unread,
    )


def make_notification(notification_id: str, minute: int, read: bool = False, link: Optional[str] = None, user_id: str = ME) -> Notification:
    return Notification(
        id=notification_id,
        user_id=user_id,
        type="application_status",
        title=f"Notification {notification_id}",
        message="Your application was reviewed.",
        link=link,
        read=read,
        created_at=at(minute),
    )


async def settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeChat:
    """ChatService stand-in keeping rows in memory and broadcasting inserts on the bus."""

    def __init__(self, bus: LocalBus) -> None:
        self.bus = bus
        self.conversations: list[Conversation] = []
        self.messages: dict[str, list[Message]] = {}
        self.calls: list[tuple] = []
        self.failing: set[str] = set()
        self.history_hook: Optional[Callable[[str], Awaitable[None]]] = None
        self._next_id = 0
        self._clock = 100

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failing:
            raise DataServiceError(f"{name} rejected")

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        self._call("list_conversations", user_id)
        return list(self.conversations)

    async def get_history(self, conversation_id: str) -> list[Message]:
        self._call("get_history", conversation_id)
        if self.history_hook is not None:
            await self.history_hook(conversation_id)
        return list(self.messages.get(conversation_id, []))

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        self._call("mark_conversation_read", conversation_id, user_id)
        rows = self.messages.get(conversation_id, [])
        flipped = [m.model_copy(update={"read": True}) if m.receiver_id == user_id and not m.read else m for m in rows]
        self.messages[conversation_id] = flipped
        return sum(1 for old, new in zip(rows, flipped) if old.read != new.read)

    async def send_message(self, conversation_id: str, sender_id: str, receiver_id: str, content: str) -> Message:
        self._call("send_message", conversation_id, sender_id, receiver_id, content)
        self._next_id += 1
        self._clock += 1
        message = make_message(f"sent-{self._next_id}", conversation_id, sender_id, receiver_id, self._clock, content=content.strip())
        self.messages.setdefault(conversation_id, []).append(message)
        await publish_change("messages", message.model_dump(mode="json"), self.bus)
        return message

    async def deliver(self, message: Message) -> None:
        """Simulate the other participant's insert reaching the change feed."""
        self.messages.setdefault(message.conversation_id, []).append(message)
        await publish_change("messages", message.model_dump(mode="json"), self.bus)


class FakeNotifications:

    def __init__(self, bus: LocalBus) -> None:
        self.bus = bus
        self.items: list[Notification] = []
        self.calls: list[tuple] = []
        self.failing: set[str] = set()

    def _call(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.failing:
            raise DataServiceError(f"{name} rejected")

    def calls_to(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def list_recent(self, user_id: str, limit: int = 10) -> list[Notification]:
        self._call("list_recent", user_id, limit)
        mine = [n for n in self.items if n.user_id == user_id]
        return sorted(mine, key=lambda n: n.created_at, reverse=True)[:limit]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        self._call("mark_read", notification_id, user_id)
        for index, n in enumerate(self.items):
            if n.id == notification_id and n.user_id == user_id:
                self.items[index] = n.model_copy(update={"read": True})
                return True
        return False

    async def push(self, notification: Notification) -> None:
        self.items.append(notification)
        await publish_change("notifications", notification.model_dump(mode="json"), self.bus)


@pytest.fixture
def bus() -> LocalBus:
    return LocalBus()


@pytest.fixture
def chat(bus: LocalBus) -> FakeChat:
    return FakeChat(bus)


@pytest.fixture
def notifications(bus: LocalBus) -> FakeNotifications:
    return FakeNotifications(bus)


class RecordingBus:

    def __init__(self, fail: bool = False) -> None:
        self.published: list[tuple[str, dict]] = []
        self.fail = fail

    async def publish(self, channel: str, message: str) -> None:
        if self.fail:
            raise ConnectionFailure("redis down")
        self.published.append((channel, json.loads(message)))

    def records(self, table: str) -> list[dict]:
        return [p["record"] for channel, p in self.published if p["table"] == table]


class MemoryMessages:

    def __init__(self) -> None:
        self.rows: list[dict] = []

    async def save_message(self, conversation_id, sender_id, receiver_id, content):
        doc = {
            "_id": f"m{len(self.rows) + 1}",
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "created_at": datetime.now(timezone.utc),
            "read": False,
        }
        self.rows.append(doc)
        return dict(doc)

    async def get_messages_by_conversation(self, conversation_id, limit=500):
        return [dict(r) for r in self.rows if r["conversation_id"] == conversation_id]

    async def mark_read(self, conversation_id, receiver_id):
        count = 0
        for row in self.rows:
            if row["conversation_id"] == conversation_id and row["receiver_id"] == receiver_id and not row["read"]:
                row["read"] = True
                count += 1
        return count


class MemoryConversations:

    def __init__(self) -> None:
        self.rows: dict[str, dict] = {}

    async def get(self, conversation_id):
        row = self.rows.get(conversation_id)
        return dict(row) if row else None

    async def get_or_create_one_to_one(self, user_a, user_b):
        participants = sorted([user_a, user_b])
        for row in self.rows.values():
            if row["participants"] == participants:
                return dict(row)
        row = {"_id": f"c{len(self.rows) + 1}", "participants": participants, "last_message": None,
               "last_message_at": at(0), "unread_counters": {user_a: 0, user_b: 0}}
        self.rows[row["_id"]] = row
        return dict(row)

    async def update_on_new_message(self, conversation_id, preview, sent_at, receiver_id):
        row = self.rows[conversation_id]
        row["last_message"] = preview
        row["last_message_at"] = sent_at
        row["unread_counters"][receiver_id] = row["unread_counters"].get(receiver_id, 0) + 1

    async def reset_unread(self, conversation_id, user_id):
        self.rows[conversation_id]["unread_counters"][user_id] = 0

    async def list_for_user(self, user_id, limit=100):
        mine = [dict(r) for r in self.rows.values() if user_id in r["participants"]]
        return sorted(mine, key=lambda r: r["last_message_at"], reverse=True)[:limit]


class MemoryUsers:

    def __init__(self, users: dict[str, dict]) -> None:
        self.users = users

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_profiles(self, user_ids):
        return {uid: self.users[uid] for uid in set(user_ids) if uid in self.users}


class MemoryNotifications:

    def __init__(self) -> None:
        self.rows: list[dict] = []

    async def create(self, user_id, type, title, message, link=None):
        doc = {"_id": f"n{len(self.rows) + 1}", "user_id": user_id, "type": type, "title": title,
               "message": message, "link": link, "read": False, "created_at": datetime.now(timezone.utc)}
        self.rows.append(doc)
        return dict(doc)

    async def list_recent(self, user_id, limit=10):
        return [dict(r) for r in self.rows if r["user_id"] == user_id][::-1][:limit]

    async def mark_read(self, notification_id, user_id):
        for row in self.rows:
            if row["_id"] == notification_id and row["user_id"] == user_id:
                row["read"] = True
                return True
        return False


USERS = {
    "cand": {"_id": "cand", "full_name": "Camille Roux", "type": "candidate"},
    "emp": {"_id": "emp", "full_name": "Eve Laurent", "type": "employer"},
}

