# src/routers/group_invites.py
# Инвайты в группу: выпуск, превью (без авторизации), вступление.

from __future__ import annotations

import os
from typing import Optional
from urllib.parse import parse_qsl, quote, unquote

from fastapi import APIRouter, BackgroundTasks, Depends, Path, Query, Request
from sqlalchemy.orm import Session
from starlette import status

from src.db import get_db
from src.models.user import User
from src.schemas.group import GroupOut
from src.schemas.group_invite import (
    GroupInviteAccept,
    GroupInviteAcceptOut,
    GroupInviteCreate,
    GroupInviteOut,
    InviteGroupSummary,
    InviteLookupOut,
)
from src.services import events
from src.services.errors import ServiceError
from src.services.group_invites import create_invite, lookup_invite, redeem_invite
from src.services.notifications import notify_group_members
from src.utils.groups import http_error
from src.utils.telegram_dep import get_current_telegram_user, get_current_telegram_user_or_create

router = APIRouter(tags=["Инвайты групп"])

BOT_USERNAME = (os.environ.get("TELEGRAM_BOT_USERNAME") or "").strip()

START_PARAM_KEYS = ("start_param", "start", "startapp", "tgWebAppStartParam")


# ---------------- helpers ----------------

def _extract_start_param_from_initdata(init_data: Optional[str]) -> Optional[str]:
    """
    initData: подписанная query-строка от Telegram.
    Мини-апп, открытый по ссылке t.me/<bot>?startapp=<token>, получает токен в start_param.
    """
    if not init_data:
        return None
    for k, v in parse_qsl(init_data, keep_blank_values=True):
        if k in START_PARAM_KEYS:
            v = unquote(v or "").strip()
            return v or None
    return None


def _token_from_request(request: Request, body_token: Optional[str]) -> Optional[str]:
    """
    Источники токена по приоритету:
      1) token из body,
      2) start_param из initData (заголовок x-telegram-initdata),
      3) query (?startapp|?tgWebAppStartParam|?start): открытие по веб-ссылке вне Telegram.
    """
    if body_token and body_token.strip():
        return body_token

    sp = _extract_start_param_from_initdata(request.headers.get("x-telegram-initdata"))
    if sp:
        return sp

    for key in ("startapp", "tgWebAppStartParam", "start"):
        qv = request.query_params.get(key)
        if qv and qv.strip():
            return qv
    return None


def _build_deep_link(token: str) -> Optional[str]:
    """Ссылка для шаринга: t.me/<bot>?startapp=<token> (если задан TELEGRAM_BOT_USERNAME)."""
    if not BOT_USERNAME:
        return None
    return f"https://t.me/{BOT_USERNAME}?startapp={quote(token)}"


# ---------------- endpoints ----------------

@router.post("/groups/{group_id}/invite", response_model=GroupInviteOut, status_code=status.HTTP_201_CREATED)
def create_group_invite(
    background: BackgroundTasks,
    group_id: int = Path(..., ge=1),
    payload: Optional[GroupInviteCreate] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
):
    """
    Выпустить инвайт: токен живёт GROUP_INVITE_TTL_HOURS (48ч) и
    max_uses использований (по умолчанию 1, -1: без лимита).
    Возвращает { token, expires_at, deep_link }.
    """
    max_uses = payload.max_uses if payload is not None else None
    try:
        invite = create_invite(db, group_id, current_user.id, max_uses=max_uses)
    except ServiceError as e:
        raise http_error(e)

    background.add_task(
        events.record_activity,
        type=events.INVITE_CREATED,
        actor_id=current_user.id,
        group_id=group_id,
        data={"max_uses": invite.max_uses, "expires_at": invite.expires_at.isoformat()},
    )
    return GroupInviteOut(token=invite.token, expires_at=invite.expires_at, deep_link=_build_deep_link(invite.token))


@router.get("/groups/invite/lookup", response_model=InviteLookupOut)
def lookup_group_invite(
    token: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Данные для экрана «Вступить в группу?»: какая группа, кто пригласил, жив ли инвайт.
    Без авторизации, ничего не меняет.
    """
    try:
        preview = lookup_invite(db, token)
    except ServiceError as e:
        raise http_error(e)

    return InviteLookupOut(
        status=preview.status,
        group=InviteGroupSummary(id=preview.group_id, name=preview.group_name, member_count=preview.member_count),
        inviter_username=preview.inviter_username,
        max_uses=preview.max_uses,
        uses_count=preview.uses_count,
        expires_at=preview.expires_at,
    )


@router.post("/groups/invite/accept", response_model=GroupInviteAcceptOut)
def accept_group_invite(
    request: Request,
    background: BackgroundTasks,
    payload: Optional[GroupInviteAccept] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user_or_create),
):
    """
    Вступить в группу по инвайту. Новичок регистрируется по initData.
    Повторный акцепт участником: успех с joined=false, использование не тратится.
    """
    token = _token_from_request(request, payload.token if payload is not None else None)
    try:
        result = redeem_invite(db, token, current_user.id)
    except ServiceError as e:
        raise http_error(e)

    if result.joined:
        background.add_task(
            events.record_activity,
            type=events.MEMBER_JOINED,
            actor_id=current_user.id,
            group_id=result.group.id,
            target_user_id=current_user.id,
            data={"via": "invite"},
        )
        background.add_task(
            notify_group_members,
            result.group.id,
            category="GROUP",
            message=f"{current_user.name or current_user.username or 'Someone'} joined the group",
            author_id=current_user.id,
        )
    return GroupInviteAcceptOut(joined=result.joined, group=GroupOut.model_validate(result.group))
