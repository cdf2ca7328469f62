from typing import Optional

from jobboard.schemas.user import Record, Timestamp


class Notification(Record):

    user_id: str
    type: str
    title: str
    message: str = ""
    link: Optional[str] = None
    read: bool = False
    created_at: Timestamp
