from typing import Optional

from pydantic import BaseModel, Field

from jobboard.schemas.user import Participant, Record, Timestamp


class Message(Record):

    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: Timestamp
    read: bool = False

    @property
    def order_key(self):
        return (self.created_at, self.id)


class Conversation(Record):

    participant: Participant
    last_message: Optional[str] = None
    last_message_at: Optional[Timestamp] = None
    unread_count: int = 0


class SendMessageRequest(BaseModel):

    content: str = Field(max_length=5000)


class StartConversationRequest(BaseModel):

    participant_id: str
    content: str = Field(max_length=5000)
