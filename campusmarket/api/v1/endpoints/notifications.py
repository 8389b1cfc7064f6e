"""
Endpoints for notifications.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from uuid import UUID

from campusmarket.core.deps import get_db, get_current_active_user
from campusmarket.core.exceptions import ForbiddenException, NotFoundException
from campusmarket.crud.notification import notification as crud_notification
from campusmarket.schemas.common import Envelope, PaginatedEnvelope, MessageResponse, paginate, envelope
from campusmarket.schemas.notification import NotificationResponse, UnreadCountResponse
from campusmarket.models.user import User

router = APIRouter()


@router.get("", response_model=PaginatedEnvelope[NotificationResponse])
def get_notifications(
    unread_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    The caller's notifications, newest first.

    Pass unread_only=true to skip the ones already read.
    """
    rows, total = crud_notification.get_by_user(
        db, user_id=current_user.id, unread_only=unread_only, page=page, limit=limit
    )
    return paginate(rows, total, page, limit)


@router.get("/unread-count", response_model=Envelope[UnreadCountResponse])
def get_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    count = crud_notification.get_unread_count(db, user_id=current_user.id)
    return envelope({"unread_count": count})


@router.patch("/{notification_id}/read", response_model=Envelope[NotificationResponse])
def mark_notification_as_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Mark one notification read.

    Only the owner can mark it.
    """
    notification = crud_notification.get(db, id=notification_id)
    if not notification:
        raise NotFoundException("Notification not found")
    if notification.user_id != current_user.id:
        raise ForbiddenException("You can only mark your own notifications")

    notification = crud_notification.mark_as_read(db, db_obj=notification)
    return envelope(notification)


@router.post("/mark-all-read", response_model=MessageResponse)
def mark_all_as_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Mark every unread notification of the caller read."""
    updated = crud_notification.mark_all_as_read(db, user_id=current_user.id)
    return MessageResponse(message=f"{updated} notifications marked as read")
