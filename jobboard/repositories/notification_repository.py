from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from jobboard.repositories.base import data_errors, normalize, to_object_id


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("notifications")

    @data_errors
    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    @data_errors
    async def create(self, user_id: str, type: str, title: str, message: str, link: Optional[str] = None) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "user_id": user_id,
            "type": type,
            "title": title,
            "message": message,
            "link": link,
            "read": False,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self._collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        return doc

    @data_errors
    async def list_recent(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        cursor = self._collection.find({"user_id": user_id}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
        items = await cursor.to_list(length=limit)
        return [normalize(it) for it in items]

    @data_errors
    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        result = await self._collection.update_one(
            {"_id": to_object_id(notification_id), "user_id": user_id},
            {"$set": {"read": True}},
        )
        return bool(result.matched_count)
