from fastapi import APIRouter, Depends, status

from jobboard.errors import JobBoardError
from jobboard.schemas.chat import SendMessageRequest, StartConversationRequest
from jobboard.services.chat_service import ChatService
from jobboard.utils.dependencies import get_chat_service, get_current_user, http_error


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("")
async def list_conversations(current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        items = await service.list_conversations(current_user)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"items": [c.model_dump(mode="json") for c in items]}


@router.post("", status_code=status.HTTP_201_CREATED)
async def start_conversation(body: StartConversationRequest, current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        message = await service.start_conversation(current_user, body.participant_id, body.content)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"conversation_id": message.conversation_id, "message_id": message.id}


@router.get("/{conversation_id}/messages")
async def list_messages(conversation_id: str, current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        messages = await service.get_history(conversation_id)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"items": [dict(m.model_dump(mode="json"), own=m.sender_id == current_user) for m in messages]}


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, body: SendMessageRequest, current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        message = await service.reply(conversation_id, current_user, body.content)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"message_id": message.id}


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, current_user: str = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    try:
        count = await service.mark_conversation_read(conversation_id, current_user)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"updated": count}
