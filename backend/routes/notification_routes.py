from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_actor
from backend.database import get_db
from backend.routes.common import to_http_exception
from backend.scheduling.domain import Actor
from backend.scheduling.errors import SchedulingError
from backend.scheduling.store import SchedulingStore

router = APIRouter(tags=['notifications'])


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: str
    action_url: str | None = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


@router.get('', response_model=list[NotificationResponse])
def list_my_notifications(
    unread_only: bool = Query(default=False),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        return SchedulingStore(db).list_notifications(actor.id, unread_only=unread_only)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc


@router.post('/{notification_id}/read', response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db),
):
    try:
        return SchedulingStore(db).mark_notification_read(actor.id, notification_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
