# src/utils/groups.py
# ОБЩИЕ ХЕЛПЕРЫ РОУТЕРОВ ГРУПП: перевод ошибок сервисов в HTTP и готовые гарды.

from __future__ import annotations

from typing import List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ..models.group import Group
from ..models.group_member import GroupMember
from ..services.errors import ServiceError
from ..services.group_membership import ensure_permission, get_group, get_group_members
from ..services.permissions import GroupAction


def http_error(e: ServiceError) -> HTTPException:
    """
    ServiceError → HTTPException с телом
    {"detail": {"code": ..., "message": ..., "kind": ...}}.
    """
    return HTTPException(status_code=e.status_code, detail=e.as_detail())


# =========================
# ГАРДЫ
# =========================

def require_membership(db: Session, group_id: int, user_id: int) -> Group:
    """Группа существует и пользователь в ней состоит: иначе 404/403."""
    try:
        group = get_group(db, group_id)
        ensure_permission(get_group_members(db, group_id), user_id, GroupAction.CREATE_AND_VIEW)
    except ServiceError as e:
        raise http_error(e)
    return group


def members_page(members: List[GroupMember], offset: int, limit: Optional[int]) -> List[GroupMember]:
    if limit is None:
        return members[offset:]
    return members[offset:offset + limit]
