"""
CRUD for notifications.
"""
from typing import List, Tuple
from sqlalchemy.orm import Session
from sqlalchemy import desc
from uuid import UUID
from campusmarket.core.time_utils import utcnow
from campusmarket.crud.base import CRUDBase
from campusmarket.models.notification import Notification
from campusmarket.schemas.notification import NotificationCreate
from pydantic import BaseModel


class CRUDNotification(CRUDBase[Notification, NotificationCreate, BaseModel]):
    """Notification-specific queries. Notifications are only marked read, never edited."""

    def get_by_user(
        self, db: Session, *, user_id: UUID, unread_only: bool = False, page: int = 1, limit: int = 50
    ) -> Tuple[List[Notification], int]:
        """
        Fetch a user's notifications, newest first.

        Args:
            db: Database session
            user_id: Owner
            unread_only: Skip read notifications
            page: Page number
            limit: Page size (default 50)

        Returns:
            Tuple (notifications, total)
        """
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        query = query.order_by(desc(Notification.created_at))
        return self.paginate(query, page=page, limit=limit)

    def get_unread_count(self, db: Session, *, user_id: UUID) -> int:
        """
        Count unread notifications.

        Args:
            db: Database session
            user_id: Owner

        Returns:
            Unread count
        """
        return (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .count()
        )

    def mark_as_read(self, db: Session, *, db_obj: Notification) -> Notification:
        """
        Mark one notification read.

        Args:
            db: Database session
            db_obj: Notification

        Returns:
            Updated notification
        """
        if not db_obj.is_read:
            db_obj.mark_as_read()
            db.commit()
            db.refresh(db_obj)
        return db_obj

    def mark_all_as_read(self, db: Session, *, user_id: UUID) -> int:
        """
        Mark every unread notification of a user as read.

        Returns:
            Number of notifications updated
        """
        updated = (
            db.query(Notification)
            .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
            .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        )
        db.commit()
        return updated


# Global CRUD instance
notification = CRUDNotification(Notification)
