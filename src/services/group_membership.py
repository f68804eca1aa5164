# src/services/group_membership.py
# СОСТАВ ГРУППЫ: вступление, выход, кик, смена роли
# -----------------------------------------------------------------------------
# Каждая мутация: отдельная транзакция. Перед проверками берём блокировку
# строки группы (SELECT ... FOR UPDATE), поэтому проверка «кто в группе и с
# какой ролью» и последующая запись не разъезжаются при параллельных запросах.
# Сами записи дополнительно условные (WHERE role = ... / role != owner).

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.group import Group
from src.models.group_member import GroupMember
from src.models.user import User
from src.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    unit_of_work,
)
from src.services.permissions import (
    GroupAction,
    GroupRole,
    PermissionContext,
    check_permission,
    find_member,
    parse_role,
    role_rank,
)

log = logging.getLogger(__name__)

NOTIFICATION_CATEGORIES = ("ASSIGNMENT", "MENTION", "GROUP", "REMINDER", "POLL")


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo: так же хранится в колонках DateTime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def default_notification_preferences() -> Dict[str, bool]:
    return {category: True for category in NOTIFICATION_CATEGORIES}


@dataclass
class LeaveResult:
    group_id: int
    group_deleted: bool = False
    deleted: Dict[str, int] = field(default_factory=dict)


# =========================
# ЗАГРУЗКИ / ПРОВЕРКИ
# =========================

def get_group(db: Session, group_id: int) -> Group:
    group = db.get(Group, group_id)
    if group is None:
        raise NotFoundError("group_not_found", "Group not found")
    return group


def lock_group(db: Session, group_id: int) -> Group:
    """
    Группа под блокировкой строки до конца текущей транзакции.
    На SQLite FOR UPDATE не рендерится: там запись и так сериализована.
    """
    group = db.execute(
        select(Group).where(Group.id == group_id).with_for_update()
    ).scalar_one_or_none()
    if group is None:
        raise NotFoundError("group_not_found", "Group not found")
    return group


def get_group_members(db: Session, group_id: int) -> List[GroupMember]:
    return list(
        db.scalars(
            select(GroupMember)
            .where(GroupMember.group_id == group_id)
            .order_by(GroupMember.id.asc())
        ).all()
    )


def get_member(db: Session, group_id: int, user_id: int) -> Optional[GroupMember]:
    return db.scalar(
        select(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.user_id == user_id,
        )
    )


def is_member(db: Session, group_id: int, user_id: int) -> bool:
    return get_member(db, group_id, user_id) is not None


def count_members(db: Session, group_id: int) -> int:
    return db.scalar(
        select(func.count()).select_from(GroupMember).where(GroupMember.group_id == group_id)
    ) or 0


def ensure_permission(
    members: List[GroupMember],
    user_id: int,
    action: GroupAction,
    *,
    resource_author_id: Optional[int] = None,
) -> None:
    if not check_permission(members, user_id, PermissionContext(action, resource_author_id)):
        if find_member(members, user_id) is None:
            raise ForbiddenError("not_group_member", "User is not a group member")
        raise ForbiddenError("forbidden", "Not enough rights for this action")


# =========================
# ВСТУПЛЕНИЕ
# =========================

def insert_member(db: Session, group_id: int, user_id: int, *, role: GroupRole = GroupRole.member) -> GroupMember:
    """
    Добавляет запись участника и делает flush, без commit.
    Гонку по UNIQUE (group_id, user_id) отдаёт наверх как IntegrityError -
    вызывающий решает, что откатывать.
    """
    gm = GroupMember(
        group_id=group_id,
        user_id=user_id,
        role=role,
        joined_at=utcnow(),
        is_pinned=False,
        notification_preferences=default_notification_preferences(),
    )
    db.add(gm)
    db.flush()
    return gm


def join_group(db: Session, group_id: int, user_id: int) -> Tuple[Group, bool]:
    """
    Идемпотентное вступление.

    Возвращает (group, joined):
      joined=True : создана новая запись участника;
      joined=False: пользователь уже был в группе.
    """
    with unit_of_work(db):
        lock_group(db, group_id)
        if get_member(db, group_id, user_id) is None:
            try:
                insert_member(db, group_id, user_id)
                db.commit()
            except IntegrityError:
                # параллельный join успел раньше: считаем, что уже участник
                db.rollback()
                return get_group(db, group_id), False
            log.info("user %s joined group %s", user_id, group_id)
            return get_group(db, group_id), True

        db.rollback()
        return get_group(db, group_id), False


def add_member_by(db: Session, group_id: int, requester_id: int, user_id: int) -> Tuple[GroupMember, bool]:
    """
    Прямое добавление участника (без инвайта). Нужны права MANAGE_MEMBERS.
    Если пользователь уже в группе: возвращаем существующую запись.
    """
    with unit_of_work(db):
        lock_group(db, group_id)
        members = get_group_members(db, group_id)
        ensure_permission(members, requester_id, GroupAction.MANAGE_MEMBERS)

        if db.get(User, user_id) is None:
            raise NotFoundError("user_not_found", "User not found")

        if find_member(members, user_id) is not None:
            db.rollback()
            return get_member(db, group_id, user_id), False

        try:
            gm = insert_member(db, group_id, user_id)
            db.commit()
        except IntegrityError:
            db.rollback()
            return get_member(db, group_id, user_id), False

    log.info("user %s added to group %s by %s", user_id, group_id, requester_id)
    db.refresh(gm)
    return gm, True


# =========================
# ВЫХОД / КИК
# =========================

def _cascade_if_empty(db: Session, group_id: int) -> Optional[Dict[str, int]]:
    """Пустую группу не храним: если состав опустел: каскадное удаление в той же транзакции."""
    if count_members(db, group_id) > 0:
        return None
    from src.services.groups import delete_group_cascade
    return delete_group_cascade(db, group_id)


def leave_group(db: Session, group_id: int, user_id: int) -> LeaveResult:
    """
    Самовыход:
      • не участник → NotFound;
      • owner при наличии других участников → Conflict (передайте права или удалите группу);
      • единственный участник → Conflict (удалите группу);
      • иначе: удаляем запись; опустевшая группа удаляется каскадом.
    """
    with unit_of_work(db):
        lock_group(db, group_id)
        members = get_group_members(db, group_id)
        me = find_member(members, user_id)
        if me is None:
            raise NotFoundError("not_group_member", "You are not a member of this group")

        others = len(members) - 1
        if parse_role(me.role) is GroupRole.owner and others > 0:
            raise ConflictError(
                "owner_must_transfer",
                "Owner cannot leave the group: transfer ownership or delete the group",
            )
        if others == 0:
            raise ConflictError(
                "sole_member_cannot_leave",
                "You are the only member: delete the group instead",
            )

        db.execute(delete(GroupMember).where(GroupMember.id == me.id))
        result = LeaveResult(group_id=group_id)
        counts = _cascade_if_empty(db, group_id)
        if counts is not None:
            result.group_deleted = True
            result.deleted = counts
        db.commit()

    log.info("user %s left group %s (group_deleted=%s)", user_id, group_id, result.group_deleted)
    return result


def kick_member(db: Session, group_id: int, requester_id: int, target_user_id: int) -> Dict[str, object]:
    """
    Кик участника. Нужны права MANAGE_MEMBERS; владельца кикнуть нельзя никому.
    Возвращает снимок удалённой записи {user_id, role, group_deleted, deleted};
    если кик опустошил состав, группа удаляется каскадом, как при выходе.
    """
    with unit_of_work(db):
        lock_group(db, group_id)
        members = get_group_members(db, group_id)
        ensure_permission(members, requester_id, GroupAction.MANAGE_MEMBERS)

        target = find_member(members, target_user_id)
        if target is None:
            raise NotFoundError("member_not_found", "Group member not found")

        target_role = parse_role(target.role)
        if target_role is GroupRole.owner:
            raise ForbiddenError("cannot_kick_owner", "The group owner cannot be removed")

        res = db.execute(
            delete(GroupMember).where(
                GroupMember.id == target.id,
                GroupMember.role != GroupRole.owner,
            )
        )
        if res.rowcount == 0:
            raise ConflictError("member_changed", "Member was changed concurrently, retry")

        counts = _cascade_if_empty(db, group_id)
        db.commit()

    log.info(
        "user %s removed from group %s by %s (group_deleted=%s)",
        target_user_id, group_id, requester_id, counts is not None,
    )
    return {
        "user_id": target_user_id,
        "role": target_role.value if target_role else None,
        "group_deleted": counts is not None,
        "deleted": counts or {},
    }


# =========================
# РОЛИ
# =========================

def change_member_role(
    db: Session,
    group_id: int,
    requester_id: int,
    target_user_id: int,
    new_role: object,
) -> GroupMember:
    """
    Смена роли участника:
      • нужны права MANAGE_MEMBERS;
      • new_role: только owner|moderator|member;
      • нельзя трогать равного или старшего (rank(requester) <= rank(target));
      • нельзя выдать роль старше своей (rank(requester) < rank(new_role)).
    Запись условная: роль меняется, только если у цели всё ещё та роль,
    которую мы видели при проверке.
    """
    with unit_of_work(db):
        lock_group(db, group_id)
        members = get_group_members(db, group_id)
        ensure_permission(members, requester_id, GroupAction.MANAGE_MEMBERS)

        role = parse_role(new_role)
        if role is None:
            raise ValidationError("invalid_role", "Role must be one of: owner, moderator, member")

        requester = find_member(members, requester_id)
        target = find_member(members, target_user_id)
        if target is None:
            raise NotFoundError("member_not_found", "Group member not found")

        requester_rank = role_rank(requester.role)
        if requester_rank <= role_rank(target.role):
            raise ForbiddenError("cannot_manage_peer", "You cannot change the role of a peer or a superior")
        if requester_rank < role_rank(role):
            raise ForbiddenError("cannot_promote_above_self", "You cannot grant a role above your own")

        old_role = parse_role(target.role)
        res = db.execute(
            update(GroupMember)
            .where(GroupMember.id == target.id, GroupMember.role == old_role)
            .values(role=role)
        )
        if res.rowcount == 0:
            raise ConflictError("member_changed", "Member was changed concurrently, retry")
        db.commit()

    log.info(
        "role of user %s in group %s changed %s -> %s by %s",
        target_user_id, group_id, old_role.value, role.value, requester_id,
    )
    return get_member(db, group_id, target_user_id)


# =========================
# ЛИЧНЫЕ НАСТРОЙКИ УЧАСТНИКА
# =========================

def update_my_membership(
    db: Session,
    group_id: int,
    user_id: int,
    *,
    is_pinned: Optional[bool] = None,
    notification_preferences: Optional[Dict[str, bool]] = None,
) -> GroupMember:
    """Закрепление группы и категории уведомлений: только для своей записи."""
    if notification_preferences:
        unknown = sorted(set(notification_preferences) - set(NOTIFICATION_CATEGORIES))
        if unknown:
            raise ValidationError(
                "unknown_notification_category",
                f"Unknown notification categories: {', '.join(unknown)}",
            )

    with unit_of_work(db):
        get_group(db, group_id)
        member = get_member(db, group_id, user_id)
        if member is None:
            raise ForbiddenError("not_group_member", "User is not a group member")

        if is_pinned is not None:
            member.is_pinned = bool(is_pinned)
        if notification_preferences:
            # JSON-колонка не отслеживает мутации словаря: присваиваем новый объект
            merged = default_notification_preferences()
            merged.update(member.notification_preferences or {})
            merged.update({k: bool(v) for k, v in notification_preferences.items()})
            member.notification_preferences = merged

        db.commit()

    db.refresh(member)
    return member
