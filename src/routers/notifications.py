# src/routers/notifications.py
# Входящие уведомления текущего пользователя: список, прочтение, удаление.
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Query, Response
from sqlalchemy.orm import Session
from starlette import status

from src.db import get_db
from src.models.user import User
from src.schemas.notification import NotificationOut, NotificationsAffectedOut
from src.services.errors import ServiceError
from src.services.notifications import (
    clear_all,
    delete_notification,
    list_notifications_for_user,
    mark_all_read,
    mark_read,
)
from src.utils.groups import http_error
from src.utils.telegram_dep import get_current_telegram_user

router = APIRouter()


@router.get("/", response_model=List[NotificationOut])
def list_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    unread_only: bool = Query(False),
):
    """Мои уведомления, свежие сверху."""
    return list_notifications_for_user(
        db, current_user.id, unread_only=unread_only, limit=limit, offset=offset
    )


@router.post("/read-all", response_model=NotificationsAffectedOut)
def read_all(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    return NotificationsAffectedOut(count=mark_all_read(db, current_user.id))


@router.delete("/clear-all", response_model=NotificationsAffectedOut)
def clear_all_notifications(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    return NotificationsAffectedOut(count=clear_all(db, current_user.id))


@router.post("/{notification_id}/read", response_model=NotificationOut)
def read_one(
    notification_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Отметить прочитанным. Чужое уведомление: 403."""
    try:
        return mark_read(db, notification_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_one(
    notification_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    try:
        delete_notification(db, notification_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
