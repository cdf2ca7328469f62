import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jobboard.config import get_settings
from jobboard.database.connection import close_mongo_connection, connect_to_mongo, get_database
from jobboard.log import configure_logging
from jobboard.repositories.conversation_repository import ConversationRepository
from jobboard.repositories.message_repository import MessageRepository
from jobboard.repositories.notification_repository import NotificationRepository
from jobboard.routers.chat import router as chat_router
from jobboard.routers.conversations import router as conversations_router
from jobboard.routers.notifications import router as notifications_router
from jobboard.utils.realtime_bus import close_bus, get_bus
from jobboard.utils.websocket_manager import manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    configure_logging(get_settings().log_level)
    await connect_to_mongo()
    db = get_database()
    for repo in (ConversationRepository(db), MessageRepository(db), NotificationRepository(db)):
        await repo.ensure_indexes()
    await get_bus()
    logger.info("Job board messaging service started")
    try:
        yield
    finally:
        await manager.close_all()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="Job board messaging", lifespan=lifespan)


app.include_router(conversations_router)
app.include_router(notifications_router)
app.include_router(chat_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections}
