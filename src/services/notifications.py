# src/services/notifications.py
# Уведомления: запись участникам группы и «входящие» получателя.
# Доставка (бот/push): вне этого сервиса.

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from src.models.notification import Notification
from src.services.errors import ForbiddenError, NotFoundError, unit_of_work
from src.services.group_membership import NOTIFICATION_CATEGORIES, get_group_members

log = logging.getLogger(__name__)


def wants(preferences: Optional[Dict[str, bool]], category: str) -> bool:
    """Категория не выключена явно: значит, уведомляем (по умолчанию всё включено)."""
    return bool((preferences or {}).get(category, True))


def build_group_notifications(
    db: Session,
    group_id: int,
    *,
    category: str,
    message: str,
    author_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
    recipient_ids: Optional[Iterable[int]] = None,
) -> List[Notification]:
    """
    Уведомления участникам группы с включённой категорией, без commit.
    Автору действия не пишем. recipient_ids сужает круг получателей.
    """
    if category not in NOTIFICATION_CATEGORIES:
        raise ValueError(f"unknown notification category: {category}")

    only = set(recipient_ids) if recipient_ids is not None else None
    out: List[Notification] = []
    for m in get_group_members(db, group_id):
        if m.user_id == author_id:
            continue
        if only is not None and m.user_id not in only:
            continue
        if not wants(m.notification_preferences, category):
            continue
        n = Notification(
            recipient_id=m.user_id,
            author_id=author_id,
            group_id=group_id,
            category=category,
            message=message,
            data=data or {},
            is_read=False,
        )
        db.add(n)
        out.append(n)
    return out


def notify_group_members(group_id: int, **kwargs: Any) -> None:
    """Fire-and-forget для BackgroundTasks: своя сессия, ошибки только логируются."""
    from src.db import SessionLocal

    db = SessionLocal()
    try:
        created = build_group_notifications(db, group_id, **kwargs)
        db.commit()
        log.info("group %s: %d notification(s) [%s]", group_id, len(created), kwargs.get("category"))
    except Exception:
        db.rollback()
        log.exception("failed to notify members of group %s", group_id)
    finally:
        db.close()


def notify_user(recipient_id: int, *, category: str, message: str, author_id: Optional[int] = None,
                group_id: Optional[int] = None, data: Optional[Dict[str, Any]] = None) -> None:
    """Одно уведомление конкретному пользователю (например, исключённому из группы)."""
    from src.db import SessionLocal

    db = SessionLocal()
    try:
        if category not in NOTIFICATION_CATEGORIES:
            raise ValueError(f"unknown notification category: {category}")
        db.add(Notification(
            recipient_id=recipient_id,
            author_id=author_id,
            group_id=group_id,
            category=category,
            message=message,
            data=data or {},
            is_read=False,
        ))
        db.commit()
    except Exception:
        db.rollback()
        log.exception("failed to notify user %s", recipient_id)
    finally:
        db.close()


# =========================
# ВХОДЯЩИЕ ПОЛУЧАТЕЛЯ
# =========================

def list_notifications_for_user(
    db: Session,
    user_id: int,
    *,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> List[Notification]:
    """Свежие сверху. Только уведомления, адресованные самому пользователю."""
    stmt = select(Notification).where(Notification.recipient_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit)
    return list(db.scalars(stmt))


def _own_notification(db: Session, notification_id: int, user_id: int) -> Notification:
    n = db.get(Notification, notification_id)
    if n is None:
        raise NotFoundError("notification_not_found", "Notification not found")
    if n.recipient_id != user_id:
        raise ForbiddenError("not_notification_recipient", "Not authorized")
    return n


def mark_read(db: Session, notification_id: int, user_id: int) -> Notification:
    with unit_of_work(db):
        n = _own_notification(db, notification_id, user_id)
        if not n.is_read:
            n.is_read = True
            db.commit()
    db.refresh(n)
    return n


def mark_all_read(db: Session, user_id: int) -> int:
    """Возвращает число отмеченных."""
    with unit_of_work(db):
        updated = db.execute(
            update(Notification)
            .where(Notification.recipient_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    return updated


def delete_notification(db: Session, notification_id: int, user_id: int) -> None:
    with unit_of_work(db):
        n = _own_notification(db, notification_id, user_id)
        db.delete(n)
        db.commit()


def clear_all(db: Session, user_id: int) -> int:
    with unit_of_work(db):
        removed = db.execute(
            delete(Notification)
            .where(Notification.recipient_id == user_id)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()
    log.info("user %s cleared %d notification(s)", user_id, removed)
    return removed
