# src/services/groups.py
# ГРУППА КАК ЦЕЛОЕ: создание, чтение, правка, удаление с каскадом.
# -----------------------------------------------------------------------------
# Каскад удаляет контент группы (элементы списков → списки → заметки → опросы),
# инвайты и состав, затем саму группу. Все удаления: bulk DELETE по условию,
# поэтому повторный прогон недоделанного каскада не падает на уже удалённых детях.

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from src.models.group import DEFAULT_COLOR, DEFAULT_ICON, Group
from src.models.group_invite import GroupInvite
from src.models.group_member import GroupMember
from src.models.note import Note
from src.models.poll import Poll
from src.models.shopping_list import ShoppingList
from src.models.shopping_list_item import ShoppingListItem
from src.services.errors import (
    NotFoundError,
    PartialDeletionError,
    ValidationError,
    unit_of_work,
)
from src.services.group_membership import (
    ensure_permission,
    get_group,
    get_group_members,
    insert_member,
    lock_group,
    utcnow,
)
from src.services.permissions import GroupAction, GroupRole

log = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "description", "icon", "color")
_FIELD_DEFAULTS = {"description": "", "icon": DEFAULT_ICON, "color": DEFAULT_COLOR}

# kind в URL → модель контента
CONTENT_MODELS = {
    "lists": ShoppingList,
    "notes": Note,
    "polls": Poll,
}


# =========================
# СОЗДАНИЕ / ЧТЕНИЕ
# =========================

def create_group(
    db: Session,
    creator_id: int,
    *,
    name: str,
    description: Optional[str] = None,
    icon: Optional[str] = None,
    color: Optional[str] = None,
) -> Group:
    """Группа + её создатель как единственный участник с ролью owner: одним commit."""
    with unit_of_work(db):
        now = utcnow()
        group = Group(
            name=name,
            description=description or "",
            author_id=creator_id,
            created_at=now,
            updated_at=now,
        )
        if icon:
            group.icon = icon
        if color:
            group.color = color
        db.add(group)
        db.flush()

        insert_member(db, group.id, creator_id, role=GroupRole.owner)
        db.commit()

    log.info("group %s created by %s", group.id, creator_id)
    db.refresh(group)
    return group


def get_group_for(db: Session, group_id: int, requester_id: int) -> Group:
    """Группа со составом: только для её участников."""
    group = get_group(db, group_id)
    ensure_permission(get_group_members(db, group_id), requester_id, GroupAction.CREATE_AND_VIEW)
    return group


def list_groups_for_user(db: Session, user_id: int) -> List[Group]:
    """Мои группы: сначала закреплённые, затем по свежести изменений."""
    stmt = (
        select(Group)
        .join(GroupMember, GroupMember.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(GroupMember.is_pinned.desc(), Group.updated_at.desc(), Group.id.desc())
    )
    return list(db.scalars(stmt).all())


# =========================
# ПРАВКА
# =========================

def update_group(db: Session, group_id: int, requester_id: int, fields: Dict[str, object]) -> Group:
    """
    Частичное обновление name/description/icon/color. Нужны права MANAGE_GROUP.
    Меняем только переданные поля.
    """
    unknown = sorted(set(fields) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError("unknown_fields", f"Fields cannot be updated: {', '.join(unknown)}")

    with unit_of_work(db):
        group = lock_group(db, group_id)
        ensure_permission(get_group_members(db, group_id), requester_id, GroupAction.MANAGE_GROUP)

        for key, value in fields.items():
            if key == "name" and not value:
                raise ValidationError("name_required", "Group name cannot be empty")
            if key in _FIELD_DEFAULTS and not value:
                # пустое значение = вернуть дефолт
                value = _FIELD_DEFAULTS[key]
            setattr(group, key, value)

        group.updated_at = utcnow()
        db.commit()

    log.info("group %s updated by %s: %s", group_id, requester_id, sorted(fields))
    db.refresh(group)
    return group


# =========================
# УДАЛЕНИЕ
# =========================

def delete_group_cascade(db: Session, group_id: int) -> Dict[str, int]:
    """
    Каскадное удаление в текущей транзакции, без commit.
    Возвращает счётчики удалённого по категориям. Если саму группу удалить
    не получилось (её уже нет), детей всё равно фиксируем и бросаем
    PartialDeletionError: это отдельный результат, не «успех».
    """
    list_ids = select(ShoppingList.id).where(ShoppingList.group_id == group_id)

    counts: Dict[str, int] = {}
    counts["items"] = db.execute(
        delete(ShoppingListItem)
        .where(ShoppingListItem.list_id.in_(list_ids))
        .execution_options(synchronize_session=False)
    ).rowcount
    counts["lists"] = db.execute(
        delete(ShoppingList).where(ShoppingList.group_id == group_id).execution_options(synchronize_session=False)
    ).rowcount
    counts["notes"] = db.execute(
        delete(Note).where(Note.group_id == group_id).execution_options(synchronize_session=False)
    ).rowcount
    counts["polls"] = db.execute(
        delete(Poll).where(Poll.group_id == group_id).execution_options(synchronize_session=False)
    ).rowcount
    counts["invites"] = db.execute(
        delete(GroupInvite).where(GroupInvite.group_id == group_id).execution_options(synchronize_session=False)
    ).rowcount
    counts["members"] = db.execute(
        delete(GroupMember).where(GroupMember.group_id == group_id).execution_options(synchronize_session=False)
    ).rowcount
    counts["group"] = db.execute(
        delete(Group).where(Group.id == group_id).execution_options(synchronize_session=False)
    ).rowcount

    if counts["group"] == 0:
        db.commit()
        log.error("group %s cascade incomplete: %s", group_id, counts)
        raise PartialDeletionError(counts)

    # объекты группы/участников в identity map больше не соответствуют БД
    db.expire_all()
    log.info("group %s deleted: %s", group_id, counts)
    return counts


def delete_group(db: Session, group_id: int, requester_id: int) -> Dict[str, int]:
    """Удаление группы целиком. Нужны права MANAGE_GROUP."""
    with unit_of_work(db, error_code="group_delete_failed"):
        lock_group(db, group_id)
        ensure_permission(get_group_members(db, group_id), requester_id, GroupAction.MANAGE_GROUP)
        counts = delete_group_cascade(db, group_id)
        db.commit()
    return counts


# =========================
# МОДЕРАЦИЯ КОНТЕНТА
# =========================

def delete_content(db: Session, group_id: int, requester_id: int, kind: str, content_id: int) -> Dict[str, int]:
    """
    Удаление списка/заметки/опроса группы.
    Автор удаляет своё (MODIFY_OWN_RESOURCE), moderator/owner: любое.
    Список удаляется вместе со своими элементами.
    """
    model = CONTENT_MODELS.get(kind)
    if model is None:
        raise ValidationError("unknown_content_kind", f"Unknown content kind: {kind}")

    with unit_of_work(db):
        get_group(db, group_id)
        members = get_group_members(db, group_id)
        # сначала членство: посторонний не должен различать «нет такого id» и «нет прав»
        ensure_permission(members, requester_id, GroupAction.CREATE_AND_VIEW)

        row = db.scalar(select(model).where(model.id == content_id, model.group_id == group_id))
        if row is None:
            raise NotFoundError("content_not_found", "Content not found")

        ensure_permission(
            members,
            requester_id,
            GroupAction.MODIFY_OWN_RESOURCE,
            resource_author_id=row.author_id,
        )

        counts: Dict[str, int] = {}
        if model is ShoppingList:
            counts["items"] = db.execute(
                delete(ShoppingListItem)
                .where(ShoppingListItem.list_id == content_id)
                .execution_options(synchronize_session=False)
            ).rowcount
        counts[kind] = db.execute(
            delete(model).where(model.id == content_id).execution_options(synchronize_session=False)
        ).rowcount
        db.commit()

    log.info("%s %s of group %s deleted by %s", kind, content_id, group_id, requester_id)
    return counts
