import logging
from typing import List, Optional

from jobboard.errors import ConnectionFailure
from jobboard.repositories.notification_repository import NotificationRepository
from jobboard.schemas.notification import Notification
from jobboard.utils.realtime_bus import publish_change

logger = logging.getLogger(__name__)

APPLICATION_STATUS_LABELS = {
    "pending": "is pending review",
    "accepted": "was accepted",
    "rejected": "was declined",
}


class NotificationService:

    def __init__(self, notification_repo: NotificationRepository, bus) -> None:
        self._notification_repo = notification_repo
        self._bus = bus

    async def list_recent(self, user_id: str, limit: int = 10) -> List[Notification]:
        docs = await self._notification_repo.list_recent(user_id, limit=limit)
        return [Notification.model_validate(d) for d in docs]

    async def mark_read(self, notification_id: str, user_id: str) -> bool:
        return await self._notification_repo.mark_read(notification_id, user_id)

    async def notify(self, user_id: str, type: str, title: str, message: str, link: Optional[str] = None) -> Notification:
        doc = await self._notification_repo.create(user_id, type, title, message, link)
        notification = Notification.model_validate(doc)
        try:
            await publish_change("notifications", notification.model_dump(mode="json"), self._bus)
        except ConnectionFailure as exc:
            # stored; the recipient sees it on the next load
            logger.error("Notification %s stored but not broadcast: %s", notification.id, exc)
        return notification

    async def notify_application_status(self, candidate_id: str, job_title: str, status: str, link: Optional[str] = None) -> Notification:
        label = APPLICATION_STATUS_LABELS.get(status, f"changed to {status}")
        return await self.notify(
            candidate_id,
            type="application_status",
            title="Application update",
            message=f"Your application for {job_title} {label}.",
            link=link or "/dashboard/applications",
        )
