# src/routers/group_members.py
# РОУТЕР УЧАСТНИКОВ ГРУППЫ
# -----------------------------------------------------------------------------
# Состав, прямое добавление, самовыход, кик и смена ролей.
# Переходы состояний и проверки прав: в src.services.group_membership.

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response
from sqlalchemy.orm import Session
from starlette import status

from src.db import get_db
from src.models.user import User
from src.schemas.group_member import (
    GroupMemberCreate,
    GroupMemberOut,
    LeaveOut,
    MemberRoleUpdate,
)
from src.services import events
from src.services.errors import ServiceError
from src.services.group_membership import (
    add_member_by,
    change_member_role,
    get_group_members,
    kick_member,
    leave_group,
)
from src.services.notifications import notify_group_members, notify_user
from src.utils.groups import http_error, members_page, require_membership
from src.utils.telegram_dep import get_current_telegram_user

router = APIRouter()


@router.get("/group/{group_id}", response_model=List[GroupMemberOut])
def get_members_for_group(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
    offset: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, gt=0),
):
    """Состав группы в порядке вступления. Виден только участникам."""
    require_membership(db, group_id, current_user.id)
    return members_page(get_group_members(db, group_id), offset, limit)


@router.post("/", response_model=GroupMemberOut)
def add_group_member(
    member: GroupMemberCreate,
    background: BackgroundTasks,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """
    Добавить участника напрямую (без инвайта). Нужны права moderator/owner.
    Уже состоит в группе: 200 с существующей записью, новая запись: 201.
    """
    try:
        gm, created = add_member_by(db, member.group_id, current_user.id, member.user_id)
    except ServiceError as e:
        raise http_error(e)

    if created:
        response.status_code = status.HTTP_201_CREATED
        background.add_task(
            events.record_activity,
            type=events.MEMBER_ADDED,
            actor_id=current_user.id,
            group_id=member.group_id,
            target_user_id=member.user_id,
            data={"via": "direct_add"},
        )
        background.add_task(
            notify_group_members,
            member.group_id,
            category="GROUP",
            message="A new member joined the group",
            author_id=current_user.id,
            data={"user_id": member.user_id},
        )
    return gm


@router.post("/group/{group_id}/leave", response_model=LeaveOut)
def leave_group_endpoint(
    group_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """
    Самовыход. Owner при других участниках и единственный участник выйти не могут (409).
    Если группа опустела: она удаляется, в ответе group_deleted=true.
    """
    try:
        result = leave_group(db, group_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.GROUP_DELETED if result.group_deleted else events.MEMBER_LEFT,
        actor_id=current_user.id,
        group_id=group_id,
        target_user_id=current_user.id,
        data={"deleted": result.deleted} if result.group_deleted else {},
    )
    return LeaveOut(group_id=result.group_id, group_deleted=result.group_deleted, deleted=result.deleted)


@router.delete("/group/{group_id}/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def kick_group_member(
    group_id: int,
    user_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Кик участника (moderator/owner). Владельца удалить нельзя."""
    try:
        removed = kick_member(db, group_id, current_user.id, user_id)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.MEMBER_REMOVED,
        actor_id=current_user.id,
        group_id=group_id,
        target_user_id=user_id,
        data={"role": removed["role"]},
    )
    if removed["group_deleted"]:
        background.add_task(
            events.record_activity,
            type=events.GROUP_DELETED,
            actor_id=current_user.id,
            group_id=group_id,
            data={"deleted": removed["deleted"]},
        )
    background.add_task(
        notify_user,
        user_id,
        category="GROUP",
        message="You were removed from the group",
        author_id=current_user.id,
        group_id=group_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/group/{group_id}/{user_id}/role", response_model=GroupMemberOut)
def change_role(
    group_id: int,
    user_id: int,
    payload: MemberRoleUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Смена роли: только младшему по рангу и не выше собственной роли."""
    try:
        gm = change_member_role(db, group_id, current_user.id, user_id, payload.role)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.MEMBER_ROLE_CHANGED,
        actor_id=current_user.id,
        group_id=group_id,
        target_user_id=user_id,
        data={"role": gm.role.value},
    )
    background.add_task(
        notify_group_members,
        group_id,
        category="GROUP",
        message=f"Your role in the group is now {gm.role.value}",
        author_id=current_user.id,
        recipient_ids=[user_id],
    )
    return gm
