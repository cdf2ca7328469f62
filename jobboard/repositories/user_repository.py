from typing import Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from jobboard.repositories.base import data_errors, normalize, to_object_id


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    @data_errors
    async def get_user(self, user_id: str) -> Optional[dict]:
        return normalize(await self._collection.find_one({"_id": to_object_id(user_id)}, {"full_name": 1, "type": 1}))

    @data_errors
    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, dict]:
        ids = [to_object_id(uid) for uid in set(user_ids)]
        if not ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": ids}}, {"full_name": 1, "type": 1})
        users: List[dict] = await cursor.to_list(length=len(ids))
        return {u["_id"]: u for u in map(normalize, users)}
