import logging
from typing import Dict, List

from jobboard.services.dashboard_session import DashboardSession

logger = logging.getLogger(__name__)


class SessionManager:
    """Live dashboard sessions per user, so shutdown can release their subscriptions."""

    def __init__(self) -> None:
        self.active_sessions: Dict[str, List[DashboardSession]] = {}

    def connect(self, user_id: str, session: DashboardSession) -> None:
        if user_id not in self.active_sessions:
            self.active_sessions[user_id] = []
        self.active_sessions[user_id].append(session)

    async def disconnect(self, user_id: str, session: DashboardSession) -> None:
        if user_id in self.active_sessions:
            try:
                self.active_sessions[user_id].remove(session)
            except ValueError:
                pass
            if not self.active_sessions[user_id]:
                del self.active_sessions[user_id]
        await session.close()

    def count(self, user_id: str) -> int:
        return len(self.active_sessions.get(user_id, []))

    async def close_all(self) -> None:
        for user_id, sessions in list(self.active_sessions.items()):
            for session in list(sessions):
                await self.disconnect(user_id, session)
        logger.info("Closed all dashboard sessions")


manager = SessionManager()
