from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from jobboard.repositories.base import data_errors, normalize, to_object_id


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @data_errors
    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("participants", ASCENDING)])
        await self.collection.create_index([("last_message_at", DESCENDING)])

    @data_errors
    async def get(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        return normalize(await self.collection.find_one({"_id": to_object_id(conversation_id)}))

    @data_errors
    async def get_or_create_one_to_one(self, user_a: str, user_b: str) -> Dict[str, Any]:
        participants = sorted([user_a, user_b])
        existing = await self.collection.find_one({"participants": participants})
        if existing:
            return normalize(existing)
        doc: Dict[str, Any] = {
            "participants": participants,
            "last_message_at": datetime.now(timezone.utc),
            "last_message": None,
            "unread_counters": {user_a: 0, user_b: 0},
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @data_errors
    async def update_on_new_message(self, conversation_id: str, preview: str, sent_at: datetime, receiver_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id)},
            {
                "$set": {
                    "last_message_at": sent_at,
                    "last_message": preview,
                },
                "$inc": {f"unread_counters.{receiver_id}": 1},
            },
        )

    @data_errors
    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        await self.collection.update_one(
            {"_id": to_object_id(conversation_id)},
            {"$set": {f"unread_counters.{user_id}": 0}},
        )

    @data_errors
    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        query = {"participants": {"$in": [user_id]}}
        sort = [("last_message_at", DESCENDING), ("_id", DESCENDING)]
        items = await self.collection.find(query).sort(sort).to_list(length=limit)
        return [normalize(it) for it in items]
