from fastapi import APIRouter, Depends, HTTPException, Query, status

from jobboard.errors import JobBoardError
from jobboard.services.notification_service import NotificationService
from jobboard.utils.dependencies import get_current_user, get_notification_service, http_error


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(limit: int = Query(10, ge=1, le=50), current_user: str = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    try:
        items = await service.list_recent(current_user, limit=limit)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    return {"items": [n.model_dump(mode="json") for n in items], "unread": sum(1 for n in items if not n.read)}


@router.post("/{notification_id}/read")
async def mark_read(notification_id: str, current_user: str = Depends(get_current_user), service: NotificationService = Depends(get_notification_service)):
    try:
        ok = await service.mark_read(notification_id, current_user)
    except JobBoardError as exc:
        raise http_error(exc) from exc
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found.")
    return {"msg": "Marked as read"}
