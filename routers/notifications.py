from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from database import get_db
from models import Actor, NotificationType
from services.notification_service import NotificationService
from utils.auth_dependency import get_current_actor

router = APIRouter(prefix="/api/notifications", tags=["notifications"])

class NotificationResponse(BaseModel):
    id: int
    user_id: int
    role: str
    order_id: Optional[int]
    type: NotificationType
    title: str
    message: str
    extra_data: Optional[dict]
    is_read: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True

@router.get("/", response_model=List[NotificationResponse])
def get_notifications(
    unread_only: bool = False,
    limit: int = 50,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Get notifications for the current user"""
    return NotificationService.get_user_notifications(
        db,
        user_id=current_actor.user_id,
        unread_only=unread_only,
        limit=min(max(limit, 1), 200)
    )

@router.get("/unread-count")
def get_unread_count(
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return {"count": NotificationService.get_unread_count(db, current_actor.user_id)}

@router.patch("/{notification_id}/read")
def mark_notification_as_read(
    notification_id: int,
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Mark a specific notification as read"""
    success = NotificationService.mark_as_read(db, notification_id, current_actor.user_id)
    if not success:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "Notification marked as read"}
