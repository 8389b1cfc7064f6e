"""
Schemas for notifications.
"""
from pydantic import BaseModel
from typing import Optional, Dict, Any
from uuid import UUID
from datetime import datetime


class NotificationResponse(BaseModel):
    """Notification as returned by the API."""

    id: UUID
    user_id: UUID
    type: str
    title: str
    message: Optional[str] = None
    category: str
    priority: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class NotificationCreate(BaseModel):
    """Fields needed to persist a notification."""

    user_id: UUID
    type: str
    title: str
    message: Optional[str] = None
    category: str = "info"
    priority: str = "normal"
    data: Optional[Dict[str, Any]] = None


class UnreadCountResponse(BaseModel):
    unread_count: int
