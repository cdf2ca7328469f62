import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from jobboard.config import get_settings
from jobboard.services.chat_service import ChatService
from jobboard.services.dashboard_session import DashboardSession
from jobboard.services.notification_service import NotificationService
from jobboard.utils.dependencies import bus_dependency, get_chat_service, get_notification_service
from jobboard.utils.realtime_bridge import RealtimeBridge
from jobboard.utils.websocket_manager import manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["chat"])


@router.websocket("/dashboard")
async def dashboard_socket(
    websocket: WebSocket,
    chat: ChatService = Depends(get_chat_service),
    notifications: NotificationService = Depends(get_notification_service),
    bus=Depends(bus_dependency),
):
    user_id = (websocket.query_params.get("user_id") or "").strip()
    if not user_id:
        await websocket.close(code=4401)
        return

    await websocket.accept()
    bridge = RealtimeBridge(bus)
    session = DashboardSession(
        user_id, chat, notifications, bridge, websocket.send_json,
        feed_limit=get_settings().notification_feed_limit,
    )
    manager.connect(user_id, session)
    try:
        await session.start()
        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except ValueError:
                frame = None
            if not isinstance(frame, dict):
                await websocket.send_json({"type": "result", "ok": False, "error": {"kind": "invalid_frame", "detail": "Expected a JSON object"}})
                continue
            await websocket.send_json(await session.handle(frame))
    except WebSocketDisconnect:
        logger.debug("Dashboard of %s disconnected", user_id)
    finally:
        await manager.disconnect(user_id, session)
        await bridge.close()
