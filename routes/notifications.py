from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.db import get_db
from models.notification import Notification
from models.user import User
from routes.auth import get_current_user, require_admin
from schemas.notification import NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _visible_to(user: User):
    # Admins also see broadcasts (user_id NULL)
    if user.is_admin:
        return or_(Notification.user_id == user.id, Notification.user_id.is_(None))
    return Notification.user_id == user.id


@router.get("", response_model=List[NotificationOut])
def list_notifications(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return (
        db.query(Notification)
        .filter(_visible_to(current_user))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .all()
    )


@router.put("/mark-all")
def mark_all_read(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = (
        db.query(Notification)
        .filter(_visible_to(current_user), Notification.read.is_(False))
        .update({Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return {"detail": "All notifications marked as read", "updated": updated}


@router.delete("/clear-all")
def clear_all(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    deleted = db.query(Notification).delete(synchronize_session=False)
    db.commit()
    return {"detail": "All notifications cleared", "deleted": deleted}


@router.put("/{notification_id}/read", response_model=NotificationOut)
def mark_read(notification_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, _visible_to(current_user))
        .one_or_none()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.read = True
    db.commit()
    db.refresh(notification)
    return notification


@router.delete("/{notification_id}")
def delete_notification(notification_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, _visible_to(current_user))
        .one_or_none()
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    db.delete(notification)
    db.commit()
    return {"detail": "Notification deleted"}
