from fastapi import Depends, Header, HTTPException, status

from jobboard.database.connection import mongo_db_dependency
from jobboard.errors import JobBoardError, NotFound, ValidationFailure
from jobboard.repositories.conversation_repository import ConversationRepository
from jobboard.repositories.message_repository import MessageRepository
from jobboard.repositories.notification_repository import NotificationRepository
from jobboard.repositories.user_repository import UserRepository
from jobboard.services.chat_service import ChatService
from jobboard.services.notification_service import NotificationService
from jobboard.utils.realtime_bus import get_bus


async def get_current_user(x_user_id: str = Header(default="")) -> str:
    # identity is established upstream; this service only scopes queries by it
    if not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user identity")
    return x_user_id.strip()


async def bus_dependency():
    return await get_bus()


def get_notification_service(db=Depends(mongo_db_dependency), bus=Depends(bus_dependency)) -> NotificationService:
    return NotificationService(NotificationRepository(db), bus)


def get_chat_service(
    db=Depends(mongo_db_dependency),
    bus=Depends(bus_dependency),
    notifications: NotificationService = Depends(get_notification_service),
) -> ChatService:
    return ChatService(MessageRepository(db), ConversationRepository(db), UserRepository(db), notifications, bus)


def http_error(exc: JobBoardError) -> HTTPException:
    if isinstance(exc, ValidationFailure):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
