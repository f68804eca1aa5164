# src/services/group_invites.py
# ЖИЗНЕННЫЙ ЦИКЛ ИНВАЙТОВ В ГРУППУ
# -----------------------------------------------------------------------------
#   • create_invite : выпуск токена (TTL + лимит использований);
#   • lookup_invite : превью для экрана подтверждения, ничего не меняет;
#   • redeem_invite : вступление по токену.
#
# Счётчик использований увеличивается ОДНИМ условным UPDATE
# (uses_count < max_uses в том же операторе), а не «прочитали → записали»:
# два одновременных акцепта одноразового инвайта дают ровно одно вступление.
# Истечение срока проверяется лениво при lookup/redeem, фонового чистильщика нет.

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.models.group import Group
from src.models.group_invite import UNLIMITED_USES, GroupInvite
from src.models.user import User
from src.services.errors import (
    GoneError,
    InternalError,
    NotFoundError,
    ValidationError,
    unit_of_work,
)
from src.services.group_invite_token import generate_invite_token, normalize_token
from src.services.group_membership import (
    count_members,
    ensure_permission,
    get_group,
    get_group_members,
    insert_member,
    is_member,
    lock_group,
    utcnow,
)
from src.services.permissions import GroupAction, GroupRole, parse_role

log = logging.getLogger(__name__)

INVITE_TTL_HOURS = int(os.getenv("GROUP_INVITE_TTL_HOURS") or 48)
DEFAULT_MAX_USES = int(os.getenv("GROUP_INVITE_DEFAULT_MAX_USES") or 1)
# кто может выпускать инвайты: member (любой участник) | moderator | owner
INVITE_MIN_ROLE = parse_role(os.getenv("GROUP_INVITE_MIN_ROLE") or "member") or GroupRole.member

_INVITE_ACTION_BY_ROLE = {
    GroupRole.member: GroupAction.CREATE_AND_VIEW,
    GroupRole.moderator: GroupAction.MODERATE_CONTENT,
    GroupRole.owner: GroupAction.MANAGE_GROUP,
}

_TOKEN_ATTEMPTS = 3

STATUS_VALID = "valid"
STATUS_EXPIRED = "expired"
STATUS_EXHAUSTED = "exhausted"


@dataclass
class InvitePreview:
    status: str
    group_name: str
    member_count: int
    group_id: Optional[int] = None
    inviter_username: Optional[str] = None
    max_uses: Optional[int] = None
    uses_count: Optional[int] = None
    expires_at: Optional[datetime] = None


@dataclass
class RedeemResult:
    group: Group
    joined: bool


def _get_invite(db: Session, token: str) -> Optional[GroupInvite]:
    return db.scalar(select(GroupInvite).where(GroupInvite.token == token))


def _exhausted_clause():
    return and_(GroupInvite.max_uses != UNLIMITED_USES, GroupInvite.uses_count >= GroupInvite.max_uses)


def _delete_invite(db: Session, invite_id: int) -> None:
    db.execute(
        delete(GroupInvite).where(GroupInvite.id == invite_id).execution_options(synchronize_session=False)
    )


def _delete_if_exhausted(db: Session, invite_id: int) -> int:
    return db.execute(
        delete(GroupInvite)
        .where(GroupInvite.id == invite_id, _exhausted_clause())
        .execution_options(synchronize_session=False)
    ).rowcount


def claim_invite_use(db: Session, invite_id: int, now: datetime) -> bool:
    """
    Атомарно занимает одно использование инвайта.
    Условие (не истёк, не исчерпан) проверяется тем же UPDATE, что и инкремент;
    False: если занять не удалось (исчерпан/истёк/удалён параллельно).
    """
    res = db.execute(
        update(GroupInvite)
        .where(
            GroupInvite.id == invite_id,
            GroupInvite.expires_at > now,
            or_(
                GroupInvite.max_uses == UNLIMITED_USES,
                GroupInvite.uses_count < GroupInvite.max_uses,
            ),
        )
        .values(uses_count=GroupInvite.uses_count + 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


# =========================
# ВЫПУСК
# =========================

def create_invite(
    db: Session,
    group_id: int,
    requester_id: int,
    *,
    max_uses: Optional[int] = None,
    now: Optional[datetime] = None,
) -> GroupInvite:
    """
    Новый инвайт: expires_at = now + INVITE_TTL_HOURS, uses_count = 0.
    max_uses: None → DEFAULT_MAX_USES; -1 → без лимита; иначе >= 1.
    """
    if max_uses is None:
        max_uses = DEFAULT_MAX_USES
    if max_uses != UNLIMITED_USES and max_uses < 1:
        raise ValidationError("invalid_max_uses", "max_uses must be -1 (unlimited) or a positive number")

    now = now or utcnow()
    with unit_of_work(db):
        get_group(db, group_id)
        ensure_permission(get_group_members(db, group_id), requester_id, _INVITE_ACTION_BY_ROLE[INVITE_MIN_ROLE])

        for _ in range(_TOKEN_ATTEMPTS):
            invite = GroupInvite(
                token=generate_invite_token(),
                group_id=group_id,
                created_by=requester_id,
                created_at=now,
                expires_at=now + timedelta(hours=INVITE_TTL_HOURS),
                max_uses=max_uses,
                uses_count=0,
            )
            db.add(invite)
            try:
                db.commit()
                break
            except IntegrityError:
                # коллизия токена: практически невозможна, но UNIQUE её поймает
                db.rollback()
        else:
            raise InternalError("invite_token_collision", "Could not issue an invite, retry")

    log.info("invite %s issued for group %s by %s (max_uses=%s)", invite.id, group_id, requester_id, max_uses)
    db.refresh(invite)
    return invite


# =========================
# ПРЕВЬЮ
# =========================

def lookup_invite(db: Session, token: Optional[str], *, now: Optional[datetime] = None) -> InvitePreview:
    """
    Данные для экрана подтверждения. Ничего не меняет.
    Отсутствующий инвайт / группа / пригласивший: один и тот же NotFound,
    без уточнения причины.
    """
    if not token or not token.strip():
        raise ValidationError("token_required", "Invite token is required")

    invalid = NotFoundError("invite_invalid", "Invite link is invalid or expired")
    t = normalize_token(token)
    if t is None:
        raise invalid

    invite = _get_invite(db, t)
    if invite is None:
        raise invalid

    group = db.get(Group, invite.group_id)
    inviter = db.get(User, invite.created_by)
    if group is None or inviter is None:
        raise invalid

    now = now or utcnow()
    member_count = count_members(db, group.id)

    if invite.is_expired(now) or invite.is_exhausted:
        return InvitePreview(
            status=STATUS_EXPIRED if invite.is_expired(now) else STATUS_EXHAUSTED,
            group_name=group.name,
            member_count=member_count,
        )

    return InvitePreview(
        status=STATUS_VALID,
        group_id=group.id,
        group_name=group.name,
        member_count=member_count,
        inviter_username=inviter.username,
        max_uses=invite.max_uses,
        uses_count=invite.uses_count,
        expires_at=invite.expires_at,
    )


# =========================
# ВСТУПЛЕНИЕ ПО ИНВАЙТУ
# =========================

def redeem_invite(db: Session, token: Optional[str], user_id: int, *, now: Optional[datetime] = None) -> RedeemResult:
    """
    Вступить в группу по токену:
      1) нет инвайта → Gone;
      2) истёк → Gone (оставшиеся использования не важны);
      3) исчерпан → удаляем инвайт, Gone;
      4) группы нет → удаляем инвайт, NotFound;
      5) уже участник → успех без инкремента uses_count;
      6) иначе: атомарно занимаем использование, добавляем участника,
         на последнем использовании удаляем инвайт. Всё в одной транзакции.
    """
    if not token or not token.strip():
        raise ValidationError("token_required", "Invite token is required")

    t = normalize_token(token)
    if t is None:
        raise GoneError("invite_invalid", "Invite link is expired or invalid")

    now = now or utcnow()
    with unit_of_work(db):
        invite = _get_invite(db, t)
        if invite is None:
            raise GoneError("invite_invalid", "Invite link is expired or invalid")

        if invite.is_expired(now):
            raise GoneError("invite_expired", "Invite link has expired")

        if invite.is_exhausted:
            # уборка фиксируется, даже если запрос в итоге неуспешен
            _delete_invite(db, invite.id)
            db.commit()
            raise GoneError("invite_exhausted", "Invite link has reached its maximum usage limit")

        invite_id, group_id = invite.id, invite.group_id
        if db.get(Group, group_id) is None:
            _delete_invite(db, invite_id)
            db.commit()
            raise NotFoundError("group_not_found", "The linked group was not found")

        lock_group(db, group_id)
        if is_member(db, group_id, user_id):
            db.rollback()
            return RedeemResult(group=get_group(db, group_id), joined=False)

        if not claim_invite_use(db, invite_id, now):
            # последнее использование ушло параллельному запросу (или срок истёк только что)
            _delete_if_exhausted(db, invite_id)
            db.commit()
            log.warning("invite %s: use claim rejected for user %s", invite_id, user_id)
            raise GoneError("invite_exhausted", "Invite link has reached its maximum usage limit")

        try:
            insert_member(db, group_id, user_id)
        except IntegrityError:
            # параллельно уже вступил: откат вернёт и занятое использование
            db.rollback()
            return RedeemResult(group=get_group(db, group_id), joined=False)

        exhausted_now = _delete_if_exhausted(db, invite_id) > 0
        db.commit()

    log.info(
        "user %s joined group %s via invite %s%s",
        user_id, group_id, invite_id, " (invite exhausted)" if exhausted_now else "",
    )
    return RedeemResult(group=get_group(db, group_id), joined=True)
