# src/services/permissions.py
# РОЛИ И МАТРИЦА ПРАВ ГРУППЫ
# -----------------------------------------------------------------------------
# Чистый модуль без зависимостей от БД и FastAPI: роли упорядочены по рангу,
# действия: закрытое перечисление. check_permission работает с любой
# read-only проекцией состава (нужны только user_id и role участника).

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Iterable, Optional


class GroupRole(enum.Enum):
    owner = "owner"
    moderator = "moderator"
    member = "member"


class GroupAction(enum.Enum):
    # удаление группы, смена названия/иконки/описания, передача
    MANAGE_GROUP = "MANAGE_GROUP"
    # кик участников, смена ролей
    MANAGE_MEMBERS = "MANAGE_MEMBERS"
    # удаление/правка ЧУЖОГО контента (списки, заметки, опросы)
    MODERATE_CONTENT = "MODERATE_CONTENT"
    # удаление/правка СВОЕГО контента
    MODIFY_OWN_RESOURCE = "MODIFY_OWN_RESOURCE"
    # базовый доступ участника: создавать контент, смотреть группу
    CREATE_AND_VIEW = "CREATE_AND_VIEW"


_ROLE_RANKS = {
    GroupRole.owner: 3,
    GroupRole.moderator: 2,
    GroupRole.member: 1,
}


def parse_role(value: Any) -> Optional[GroupRole]:
    """'moderator' / GroupRole.moderator → GroupRole; всё остальное (в т.ч. legacy 'admin') → None."""
    if isinstance(value, GroupRole):
        return value
    if isinstance(value, str):
        try:
            return GroupRole(value.strip().lower())
        except ValueError:
            return None
    return None


def role_rank(role: Any) -> int:
    """Ранг роли; неизвестная роль имеет ранг 0 и ничего не перевешивает."""
    parsed = parse_role(role)
    return _ROLE_RANKS[parsed] if parsed is not None else 0


@dataclass(frozen=True)
class PermissionContext:
    """Что именно пытаются сделать и (опционально) чей это ресурс."""
    action: GroupAction
    resource_author_id: Optional[int] = None


def find_member(members: Iterable[Any], user_id: int) -> Optional[Any]:
    for m in members:
        if m.user_id == user_id:
            return m
    return None


def check_permission(members: Iterable[Any], user_id: int, context: PermissionContext) -> bool:
    """
    Можно ли пользователю user_id выполнить context.action в группе с составом members.

    Никогда не бросает исключений и ничего не меняет:
      • не участник → False;
      • owner → True для любого действия;
      • остальные: по матрице ниже; неизвестное действие → False.
    """
    member = find_member(members, user_id)
    if member is None:
        return False

    role = parse_role(member.role)
    if role is GroupRole.owner:
        return True

    rank = role_rank(role)
    action = context.action

    if action is GroupAction.MANAGE_GROUP:
        return False

    if action in (GroupAction.MANAGE_MEMBERS, GroupAction.MODERATE_CONTENT):
        return rank >= _ROLE_RANKS[GroupRole.moderator]

    if action is GroupAction.MODIFY_OWN_RESOURCE:
        if rank >= _ROLE_RANKS[GroupRole.moderator]:
            return True
        return context.resource_author_id is not None and context.resource_author_id == user_id

    if action is GroupAction.CREATE_AND_VIEW:
        return True

    return False


def can(members: Iterable[Any], user_id: int, action: GroupAction, resource_author_id: Optional[int] = None) -> bool:
    """Короткая запись для check_permission(members, user_id, PermissionContext(...))."""
    return check_permission(members, user_id, PermissionContext(action, resource_author_id))
