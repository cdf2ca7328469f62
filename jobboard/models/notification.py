from datetime import datetime
from typing import Optional, TypedDict


class NotificationDocument(TypedDict, total=False):
    _id: str
    user_id: str
    # new_message, application_status, ...
    type: str
    title: str
    message: str
    link: Optional[str]
    read: bool
    created_at: datetime
