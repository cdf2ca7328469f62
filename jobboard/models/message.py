from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    read: bool
