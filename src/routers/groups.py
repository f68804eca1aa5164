# src/routers/groups.py
# -----------------------------------------------------------------------------
# РОУТЕР: Группы
# -----------------------------------------------------------------------------
# Тонкий слой над src.services.groups: права, каскады и транзакции: в сервисах.
# События и уведомления пишутся фоном после успешного commit.

from __future__ import annotations

from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from starlette import status

from src.db import get_db
from src.models.user import User
from src.schemas.group import ContentDeleteOut, GroupCreate, GroupDeleteOut, GroupOut, GroupUpdate
from src.schemas.group_member import GroupMemberOut, MyMembershipUpdate
from src.services import events
from src.services.errors import ServiceError
from src.services.group_membership import update_my_membership
from src.services.groups import (
    create_group,
    delete_content,
    delete_group,
    get_group_for,
    list_groups_for_user,
    update_group,
)
from src.services.notifications import notify_group_members
from src.utils.groups import http_error
from src.utils.telegram_dep import get_current_telegram_user

router = APIRouter()


@router.post("/", response_model=GroupOut, status_code=status.HTTP_201_CREATED)
def create_group_endpoint(
    payload: GroupCreate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Создать группу. Создатель: единственный участник с ролью owner."""
    try:
        group = create_group(
            db,
            current_user.id,
            name=payload.name,
            description=payload.description,
            icon=payload.icon,
            color=payload.color,
        )
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.GROUP_CREATED,
        actor_id=current_user.id,
        group_id=group.id,
        data={"name": group.name},
    )
    return group


@router.get("/", response_model=List[GroupOut])
def list_my_groups(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Мои группы: закреплённые сверху, дальше: по свежести изменений."""
    return list_groups_for_user(db, current_user.id)


@router.get("/{group_id}", response_model=GroupOut)
def get_group_endpoint(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Группа с составом. Видна только участникам."""
    try:
        return get_group_for(db, group_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)


@router.patch("/{group_id}", response_model=GroupOut)
def update_group_endpoint(
    group_id: int,
    payload: GroupUpdate,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Частичное обновление name/description/icon/color. Только owner."""
    fields = payload.model_dump(exclude_unset=True)
    try:
        group = update_group(db, group_id, current_user.id, fields)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.GROUP_UPDATED,
        actor_id=current_user.id,
        group_id=group_id,
        data={"changed": sorted(fields)},
    )
    background.add_task(
        notify_group_members,
        group_id,
        category="GROUP",
        message=f"Group «{group.name}» was updated",
        author_id=current_user.id,
        data={"changed": sorted(fields)},
    )
    return group


@router.delete("/{group_id}", response_model=GroupDeleteOut)
def delete_group_endpoint(
    group_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Удалить группу вместе с контентом, инвайтами и составом. Только owner."""
    try:
        counts = delete_group(db, group_id, current_user.id)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.GROUP_DELETED,
        actor_id=current_user.id,
        group_id=group_id,
        data={"deleted": counts},
    )
    return GroupDeleteOut(group_id=group_id, group_deleted=True, deleted=counts)


@router.patch("/{group_id}/me", response_model=GroupMemberOut)
def update_my_membership_endpoint(
    group_id: int,
    payload: MyMembershipUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """Личные настройки участника: закрепление и категории уведомлений."""
    try:
        return update_my_membership(
            db,
            group_id,
            current_user.id,
            is_pinned=payload.is_pinned,
            notification_preferences=payload.notification_preferences,
        )
    except ServiceError as e:
        raise http_error(e)


@router.delete("/{group_id}/content/{kind}/{content_id}", response_model=ContentDeleteOut)
def delete_content_endpoint(
    group_id: int,
    kind: str,
    content_id: int,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """
    Удалить список/заметку/опрос (kind: lists|notes|polls).
    Автор: своё, moderator/owner: любое.
    """
    try:
        counts = delete_content(db, group_id, current_user.id, kind, content_id)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.CONTENT_DELETED,
        actor_id=current_user.id,
        group_id=group_id,
        data={"kind": kind, "content_id": content_id, "deleted": counts},
    )
    return ContentDeleteOut(kind=kind, content_id=content_id, deleted=counts)
