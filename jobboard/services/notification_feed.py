import logging
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from jobboard.errors import (
    CommandFailure,
    ConnectionFailure,
    DataServiceError,
    LoadFailure,
    Outcome,
    ValidationFailure,
)
from jobboard.schemas.notification import Notification
from jobboard.services.notification_service import NotificationService
from jobboard.utils.realtime_bridge import RealtimeBridge, Scope, Subscription

logger = logging.getLogger(__name__)


class NotificationFeed:
    """Most recent notifications of one user plus the unread badge count."""

    def __init__(
        self,
        user_id: str,
        service: NotificationService,
        bridge: RealtimeBridge,
        on_change: Optional[Callable[[], None]] = None,
        limit: int = 10,
    ) -> None:
        self.user_id = user_id
        self.limit = limit
        self._service = service
        self._bridge = bridge
        self._on_change = on_change
        self.items: List[Notification] = []
        self.unread_count = 0
        self.connection_error: Optional[ConnectionFailure] = None
        self._subscription: Optional[Subscription] = None

    @property
    def visible(self) -> List[Notification]:
        return self.items[: self.limit]

    async def load_recent(self) -> Outcome:
        try:
            items = await self._service.list_recent(self.user_id, limit=self.limit)
        except DataServiceError as exc:
            logger.warning("Loading notifications for %s failed: %s", self.user_id, exc)
            return Outcome.failure(LoadFailure(str(exc)))
        self.items = list(items)
        self.unread_count = sum(1 for n in self.items if not n.read)
        self._notify()
        return Outcome.success(list(self.items))

    def on_notification_event(self, record: Dict) -> Optional[Notification]:
        try:
            notification = Notification.model_validate(record)
        except ValidationError as exc:
            logger.warning("Ignoring malformed notification event: %s", exc)
            return None
        if notification.user_id != self.user_id or self._find(notification.id) is not None:
            return None
        self.items = [notification] + self.items
        if not notification.read:
            self.unread_count += 1
        self._notify()
        return notification

    async def mark_read(self, notification_id: str) -> Outcome:
        notification = self._find(notification_id)
        if notification is None:
            return Outcome.failure(ValidationFailure(f"Unknown notification {notification_id}"))
        if notification.read:
            return Outcome.success(notification)
        try:
            updated = await self._service.mark_read(notification_id, self.user_id)
        except DataServiceError as exc:
            logger.warning("Marking notification %s read failed: %s", notification_id, exc)
            return Outcome.failure(CommandFailure(str(exc)))
        if not updated:
            return Outcome.failure(CommandFailure(f"Notification {notification_id} was not updated"))

        # the list may have been reloaded or already flipped while the update was in flight
        current = self._find(notification_id)
        if current is None or current.read:
            return Outcome.success(current or notification.model_copy(update={"read": True}))
        flipped = current.model_copy(update={"read": True})
        self.items = [flipped if n.id == notification_id else n for n in self.items]
        self.unread_count -= 1
        self._notify()
        return Outcome.success(flipped)

    async def activate(self, notification_id: str) -> Outcome:
        """Mark read if needed and hand back the link for the caller to follow."""
        notification = self._find(notification_id)
        if notification is None:
            return Outcome.failure(ValidationFailure(f"Unknown notification {notification_id}"))
        if not notification.read:
            outcome = await self.mark_read(notification_id)
            if not outcome.ok:
                return outcome
        return Outcome.success(notification.link)

    async def watch(self) -> Outcome:
        if self._subscription is not None and self._subscription.active:
            return Outcome.success()
        try:
            self._subscription = await self._bridge.subscribe(
                Scope.notifications(self.user_id),
                lambda record: record.get("user_id") == self.user_id,
                self.on_notification_event,
                on_error=self._on_feed_error,
            )
        except ConnectionFailure as exc:
            logger.warning("Could not watch notifications of %s: %s", self.user_id, exc)
            return Outcome.failure(exc)
        return Outcome.success()

    async def close(self) -> None:
        subscription, self._subscription = self._subscription, None
        await self._bridge.unsubscribe(subscription)

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self.items:
            if notification.id == notification_id:
                return notification
        return None

    def _on_feed_error(self, failure: ConnectionFailure) -> None:
        self.connection_error = failure
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
