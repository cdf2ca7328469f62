from datetime import datetime
from typing import List, Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    # exactly two user ids, sorted
    participants: List[str]
    last_message: Optional[str]
    last_message_at: datetime
    # per-user unread counters (user_id -> count)
    unread_counters: dict[str, int]
