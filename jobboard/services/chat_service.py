import logging
from typing import List

from jobboard.errors import ConnectionFailure, DataServiceError, NotFound, ValidationFailure
from jobboard.repositories.conversation_repository import ConversationRepository
from jobboard.repositories.message_repository import MessageRepository
from jobboard.repositories.user_repository import UserRepository
from jobboard.schemas.chat import Conversation, Message
from jobboard.schemas.user import Participant
from jobboard.services.notification_service import NotificationService
from jobboard.utils.realtime_bus import publish_change

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


class ChatService:
    """Server side of messaging: what the data platform does on each query and insert."""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        notifications: NotificationService,
        bus,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._notifications = notifications
        self._bus = bus

    async def list_conversations(self, user_id: str) -> List[Conversation]:
        docs = await self._conversation_repo.list_for_user(user_id)
        others = {d["_id"]: _other_participant(d, user_id) for d in docs}
        profiles = await self._user_repo.get_profiles(others.values())
        conversations = []
        for doc in docs:
            other_id = others[doc["_id"]]
            profile = profiles.get(other_id) or {"_id": other_id}
            conversations.append(Conversation(
                _id=doc["_id"],
                participant=Participant.from_user(profile),
                last_message=doc.get("last_message"),
                last_message_at=doc.get("last_message_at"),
                unread_count=(doc.get("unread_counters") or {}).get(user_id, 0),
            ))
        return conversations

    async def get_history(self, conversation_id: str) -> List[Message]:
        docs = await self._message_repo.get_messages_by_conversation(conversation_id)
        return [Message.model_validate(d) for d in docs]

    async def send_message(self, conversation_id: str, sender_id: str, receiver_id: str, content: str) -> Message:
        if not content or not content.strip():
            raise ValidationFailure("Message content cannot be empty")
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None:
            raise NotFound(f"conversation {conversation_id} not found")
        if sorted([sender_id, receiver_id]) != sorted(convo.get("participants", [])):
            raise ValidationFailure("Sender and receiver must be the conversation's participants")
        return await self._deliver(convo["_id"], sender_id, receiver_id, content.strip())

    async def reply(self, conversation_id: str, sender_id: str, content: str) -> Message:
        convo = await self._conversation_repo.get(conversation_id)
        if convo is None or sender_id not in convo.get("participants", []):
            raise NotFound(f"conversation {conversation_id} not found")
        return await self.send_message(conversation_id, sender_id, _other_participant(convo, sender_id), content)

    async def start_conversation(self, sender_id: str, receiver_id: str, content: str) -> Message:
        if not content or not content.strip():
            raise ValidationFailure("Message content cannot be empty")
        if sender_id == receiver_id:
            raise ValidationFailure("Cannot start a conversation with yourself")
        if await self._user_repo.get_user(receiver_id) is None:
            raise ValidationFailure(f"Unknown user {receiver_id}")
        convo = await self._conversation_repo.get_or_create_one_to_one(sender_id, receiver_id)
        return await self._deliver(convo["_id"], sender_id, receiver_id, content.strip())

    async def mark_conversation_read(self, conversation_id: str, user_id: str) -> int:
        modified = await self._message_repo.mark_read(conversation_id, user_id)
        await self._conversation_repo.reset_unread(conversation_id, user_id)
        return modified

    async def _deliver(self, conversation_id: str, sender_id: str, receiver_id: str, content: str) -> Message:
        saved = await self._message_repo.save_message(conversation_id, sender_id, receiver_id, content)
        message = Message.model_validate(saved)
        await self._conversation_repo.update_on_new_message(
            conversation_id, content[:PREVIEW_LENGTH], message.created_at, receiver_id
        )
        try:
            await publish_change("messages", message.model_dump(mode="json"), self._bus)
        except ConnectionFailure as exc:
            logger.error("Message %s stored but not broadcast: %s", message.id, exc)
        try:
            await self._notifications.notify(
                receiver_id,
                type="new_message",
                title="New message",
                message=content[:100],
                link=f"/dashboard/messages?conversation={conversation_id}",
            )
        except DataServiceError as exc:
            logger.warning("Could not create new-message notification for %s: %s", receiver_id, exc)
        return message


def _other_participant(doc: dict, user_id: str) -> str:
    others = [p for p in doc.get("participants", []) if p != user_id]
    return others[0] if others else user_id
