from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.security import get_current_admin
from app.database import get_session
from app.models.user import User
from app.services.notifications import list_notifications, mark_read

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/")
def list_admin_notifications(
    unread_only: bool = False,
    limit: int = 50,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return list_notifications(session, unread_only=unread_only, limit=min(max(limit, 1), 200))


@router.patch("/{notification_id}/read")
def read_notification(
    notification_id: int,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return mark_read(session, notification_id)
