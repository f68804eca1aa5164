# src/services/events.py
# Лента активности группы. Запись событий: побочный эффект:
# бизнес-операция уже зафиксирована, сбой записи события её не откатывает.
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from src.models.event import Event
from src.models.group_member import GroupMember

log = logging.getLogger(__name__)

# Типы событий (используй в роутерах)
GROUP_CREATED = "group_created"
GROUP_UPDATED = "group_updated"
GROUP_DELETED = "group_deleted"

MEMBER_JOINED = "member_joined"
MEMBER_ADDED = "member_added"
MEMBER_REMOVED = "member_removed"
MEMBER_LEFT = "member_left"
MEMBER_ROLE_CHANGED = "member_role_changed"

INVITE_CREATED = "invite_created"

CONTENT_DELETED = "content_deleted"

# Категория события кладётся в data["category"]
CATEGORY_GROUP = "GROUP"
CATEGORY_CONTENT = "CONTENT"
CATEGORY_INTERACTION = "INTERACTION"

_CATEGORY_BY_TYPE = {
    GROUP_CREATED: CATEGORY_GROUP,
    GROUP_UPDATED: CATEGORY_GROUP,
    GROUP_DELETED: CATEGORY_GROUP,
    MEMBER_JOINED: CATEGORY_INTERACTION,
    MEMBER_ADDED: CATEGORY_INTERACTION,
    MEMBER_REMOVED: CATEGORY_INTERACTION,
    MEMBER_LEFT: CATEGORY_INTERACTION,
    MEMBER_ROLE_CHANGED: CATEGORY_INTERACTION,
    INVITE_CREATED: CATEGORY_INTERACTION,
    CONTENT_DELETED: CATEGORY_CONTENT,
}


def _insert_for(db: Session):
    """INSERT ... ON CONFLICT есть и в Postgres, и в SQLite: но у каждого свой конструктор."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


def log_event(
    db: Session,
    *,
    type: str,
    actor_id: int,
    group_id: Optional[int] = None,
    target_user_id: Optional[int] = None,
    data: Optional[Dict[str, Any]] = None,
    idempotency_key: Optional[str] = None,
) -> Optional[Event]:
    """
    Единая точка записи событий. Не делает commit.
    Если задан idempotency_key: повтор не создаёт дубль (ON CONFLICT DO NOTHING),
    возвращается уже существующая запись.
    """
    payload = {
        "type": type,
        "actor_id": actor_id,
        "group_id": group_id,
        "target_user_id": target_user_id,
        "data": {"category": _CATEGORY_BY_TYPE.get(type, CATEGORY_GROUP), **(data or {})},
        "idempotency_key": idempotency_key,
    }

    if idempotency_key:
        stmt = (
            _insert_for(db)(Event.__table__)
            .values(**payload)
            .on_conflict_do_nothing(index_elements=["idempotency_key"])
        )
        db.execute(stmt)
        return db.scalar(select(Event).where(Event.idempotency_key == idempotency_key))

    ev = Event(**payload)
    db.add(ev)
    db.flush()
    return ev


def record_activity(**kwargs: Any) -> None:
    """
    Fire-and-forget обёртка над log_event для BackgroundTasks:
    своя сессия, свой commit; ошибки только логируются.
    """
    from src.db import SessionLocal

    db = SessionLocal()
    try:
        log_event(db, **kwargs)
        db.commit()
    except Exception:
        db.rollback()
        log.exception("failed to record activity %s", kwargs.get("type"))
    finally:
        db.close()


def list_events_for_user(
    db: Session,
    user_id: int,
    *,
    group_id: Optional[int] = None,
    types: Optional[List[str]] = None,
    limit: int = 20,
    offset: int = 0,
) -> List[Event]:
    """
    События, видимые пользователю:
      - actor == me или target == me;
      - ИЛИ событие группы, где я сейчас состою.
    """
    stmt = select(Event).where(
        or_(
            Event.actor_id == user_id,
            Event.target_user_id == user_id,
            and_(
                Event.group_id.isnot(None),
                exists(
                    select(1).where(
                        GroupMember.group_id == Event.group_id,
                        GroupMember.user_id == user_id,
                    )
                ),
            ),
        )
    )
    if group_id is not None:
        stmt = stmt.where(Event.group_id == group_id)

    tset = [t.strip().lower() for t in (types or []) if t and t.strip()]
    if tset:
        # чип "group"/"member"/"invite"/"content" = префикс типа, остальное: точный тип
        stmt = stmt.where(or_(*[Event.type.like(f"{t}_%") | (Event.type == t) for t in tset]))

    stmt = stmt.order_by(Event.created_at.desc(), Event.id.desc()).offset(offset).limit(limit)
    return list(db.scalars(stmt).all())
