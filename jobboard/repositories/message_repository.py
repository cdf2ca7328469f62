from datetime import datetime, timezone
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from jobboard.repositories.base import data_errors, normalize


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    @data_errors
    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("read", ASCENDING)])

    @data_errors
    async def save_message(self, conversation_id: str, sender_id: str, receiver_id: str, content: str) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "created_at": datetime.now(timezone.utc),
            "read": False,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @data_errors
    async def get_messages_by_conversation(self, conversation_id: str, limit: int = 500) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        items = await cursor.to_list(length=limit)
        return [normalize(it) for it in items]

    @data_errors
    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        result = await self.collection.update_many(
            {"conversation_id": conversation_id, "receiver_id": receiver_id, "read": False},
            {"$set": {"read": True}},
        )
        return result.modified_count or 0
