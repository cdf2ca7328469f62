import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from jobboard.config import get_settings

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None
_database: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo() -> None:
    global _client, _database
    settings = get_settings()
    # tz_aware keeps timestamps comparable with the ones parsed from change events
    _client = AsyncIOMotorClient(settings.mongodb_url, tz_aware=True)
    _database = _client[settings.mongodb_db]
    logger.info("Connected to MongoDB database %s", settings.mongodb_db)


async def close_mongo_connection() -> None:
    global _client, _database
    if _client is not None:
        _client.close()
        logger.info("MongoDB connection closed")
    _client = None
    _database = None


def get_database() -> AsyncIOMotorDatabase:
    if _database is None:
        raise RuntimeError("MongoDB is not connected")
    return _database


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()
