import threading
from datetime import timedelta

import pytest

from src.db import SessionLocal
from src.models.group import Group
from src.models.group_invite import GroupInvite
from src.models.user import User
from src.services import group_invites
from src.services.errors import ForbiddenError, GoneError, NotFoundError, ValidationError
from src.services.group_invite_token import generate_invite_token, normalize_token
from src.services.group_invites import (
    claim_invite_use,
    create_invite,
    lookup_invite,
    redeem_invite,
)
from src.services.group_membership import count_members, is_member, utcnow
from src.services.groups import create_group
from src.services.permissions import GroupRole


@pytest.fixture
def group_and_owner(db, make_user):
    owner = make_user("owner")
    group = create_group(db, owner.id, name="Kitchen")
    return group, owner


def _invite(db, token):
    db.expire_all()
    return db.query(GroupInvite).filter(GroupInvite.token == token).first()


# ---------- токен ----------

def test_generated_tokens_are_unique_and_urlsafe():
    tokens = {generate_invite_token() for _ in range(50)}
    assert len(tokens) == 50
    for t in tokens:
        assert normalize_token(t) == t


def test_normalize_token_strips_deep_link_wrappers():
    t = generate_invite_token()
    assert normalize_token(f"  join:{t} ") == t
    assert normalize_token(f"g:{t}") == t
    assert normalize_token(f"token={t}") == t
    assert normalize_token("short") is None
    assert normalize_token("has spaces inside the token value") is None
    assert normalize_token(None) is None


# ---------- выпуск ----------

def test_create_invite_defaults(db, group_and_owner):
    group, owner = group_and_owner
    now = utcnow()
    invite = create_invite(db, group.id, owner.id, now=now)

    assert invite.max_uses == 1
    assert invite.uses_count == 0
    assert invite.expires_at == now + timedelta(hours=48)
    assert invite.created_by == owner.id


@pytest.mark.parametrize("bad", [0, -2, -100])
def test_create_invite_rejects_bad_max_uses(db, group_and_owner, bad):
    group, owner = group_and_owner
    with pytest.raises(ValidationError):
        create_invite(db, group.id, owner.id, max_uses=bad)


def test_create_invite_requires_membership(db, group_and_owner, make_user):
    group, _ = group_and_owner
    with pytest.raises(ForbiddenError):
        create_invite(db, group.id, make_user().id)


def test_create_invite_missing_group(db, make_user):
    with pytest.raises(NotFoundError):
        create_invite(db, 4242, make_user().id)


def test_minimum_role_for_invites_is_configurable(db, group_and_owner, make_user, monkeypatch):
    group, owner = group_and_owner
    member = make_user()
    redeem_invite(db, create_invite(db, group.id, owner.id).token, member.id)

    monkeypatch.setattr(group_invites, "INVITE_MIN_ROLE", GroupRole.moderator)
    with pytest.raises(ForbiddenError):
        create_invite(db, group.id, member.id)
    assert create_invite(db, group.id, owner.id).token


# ---------- вступление ----------

def test_single_use_invite_admits_exactly_one(db, group_and_owner, make_user):
    group, owner = group_and_owner
    u2, u3 = make_user("u2"), make_user("u3")
    token = create_invite(db, group.id, owner.id, max_uses=1).token

    result = redeem_invite(db, token, u2.id)
    assert result.joined is True
    assert result.group.id == group.id
    assert count_members(db, group.id) == 2
    assert _invite(db, token) is None

    with pytest.raises(GoneError):
        redeem_invite(db, token, u3.id)
    assert not is_member(db, group.id, u3.id)


def test_redeem_by_existing_member_does_not_consume(db, group_and_owner, make_user):
    group, owner = group_and_owner
    u2 = make_user()
    token = create_invite(db, group.id, owner.id, max_uses=-1).token

    assert redeem_invite(db, token, u2.id).joined is True
    assert _invite(db, token).uses_count == 1

    again = redeem_invite(db, token, u2.id)
    assert again.joined is False
    assert _invite(db, token).uses_count == 1

    # owner по своей же ссылке: тоже без списания
    assert redeem_invite(db, token, owner.id).joined is False
    assert _invite(db, token).uses_count == 1


def test_unlimited_invite_is_never_deleted(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id, max_uses=-1).token
    for _ in range(5):
        redeem_invite(db, token, make_user().id)

    invite = _invite(db, token)
    assert invite is not None and invite.uses_count == 5
    assert count_members(db, group.id) == 6


def test_multi_use_invite_deleted_on_last_use(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id, max_uses=2).token

    redeem_invite(db, token, make_user().id)
    assert _invite(db, token).uses_count == 1
    redeem_invite(db, token, make_user().id)
    assert _invite(db, token) is None


def test_expired_invite_is_gone_regardless_of_uses(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id, max_uses=-1, now=utcnow() - timedelta(hours=49)).token

    with pytest.raises(GoneError) as exc:
        redeem_invite(db, token, make_user().id)
    assert exc.value.code == "invite_expired"
    assert count_members(db, group.id) == 1


def test_exhausted_invite_is_deleted_on_access(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id, max_uses=3).token
    invite = _invite(db, token)
    invite.uses_count = 3
    db.commit()

    with pytest.raises(GoneError) as exc:
        redeem_invite(db, token, make_user().id)
    assert exc.value.code == "invite_exhausted"
    assert _invite(db, token) is None


def test_invite_for_vanished_group(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id).token
    db.query(Group).filter(Group.id == group.id).delete()
    db.commit()

    with pytest.raises(NotFoundError):
        redeem_invite(db, token, make_user().id)
    assert _invite(db, token) is None


def test_redeem_requires_token(db, make_user):
    with pytest.raises(ValidationError) as exc:
        redeem_invite(db, "  ", make_user().id)
    assert exc.value.code == "token_required"


def test_redeem_unknown_token(db, make_user):
    with pytest.raises(GoneError):
        redeem_invite(db, generate_invite_token(), make_user().id)


def test_redeem_accepts_wrapped_token(db, group_and_owner, make_user):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id).token
    assert redeem_invite(db, f"join:{token}", make_user().id).joined is True


# ---------- гонки ----------

def test_claim_is_conditional(db, group_and_owner):
    group, owner = group_and_owner
    invite = create_invite(db, group.id, owner.id, max_uses=2)
    now = utcnow()

    assert claim_invite_use(db, invite.id, now) is True
    assert claim_invite_use(db, invite.id, now) is True
    assert claim_invite_use(db, invite.id, now) is False
    db.commit()
    assert _invite(db, invite.token).uses_count == 2

    # просроченный инвайт занять нельзя
    assert claim_invite_use(db, invite.id, invite.expires_at) is False


def test_concurrent_redeem_of_single_use_invite(db, group_and_owner, make_user):
    """
    Второй запрос прочитал инвайт до того, как первый его израсходовал:
    условный UPDATE не даёт ему занять уже ушедшее использование.
    """
    group, owner = group_and_owner
    u2, u3 = make_user("u2"), make_user("u3")
    invite = create_invite(db, group.id, owner.id, max_uses=1)
    invite_id, token = invite.id, invite.token

    other = SessionLocal()
    try:
        stale = other.get(GroupInvite, invite_id)
        assert stale.uses_count == 0 and not stale.is_exhausted

        assert redeem_invite(db, token, u2.id).joined is True

        # со «своей» точки зрения второй сессии инвайт ещё свободен
        assert stale.uses_count == 0
        assert claim_invite_use(other, invite_id, utcnow()) is False
        other.rollback()

        with pytest.raises(GoneError):
            redeem_invite(other, token, u3.id)
    finally:
        other.close()

    assert count_members(db, group.id) == 2
    assert is_member(db, group.id, u2.id)
    assert not is_member(db, group.id, u3.id)


def test_parallel_redeemers_of_single_use_invite(db, group_and_owner, make_user):
    group, owner = group_and_owner
    users = [make_user(f"racer{i}") for i in range(6)]
    token = create_invite(db, group.id, owner.id, max_uses=1).token
    barrier = threading.Barrier(len(users))
    results = []
    lock = threading.Lock()

    def redeem(user_id):
        session = SessionLocal()
        try:
            barrier.wait()
            outcome = ("ok", redeem_invite(session, token, user_id).joined)
        except GoneError as e:
            outcome = ("Gone", e.code)
        finally:
            session.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=redeem, args=(u.id,)) for u in users]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert len(results) == len(users)
    assert results.count(("ok", True)) == 1
    assert all(kind == "Gone" for kind, _ in results if kind != "ok")
    assert count_members(db, group.id) == 2
    assert _invite(db, token) is None


# ---------- превью ----------

def test_lookup_valid_invite(db, group_and_owner):
    group, owner = group_and_owner
    invite = create_invite(db, group.id, owner.id, max_uses=5)

    preview = lookup_invite(db, invite.token)
    assert preview.status == "valid"
    assert preview.group_id == group.id
    assert preview.group_name == "Kitchen"
    assert preview.member_count == 1
    assert preview.inviter_username == "owner"
    assert (preview.max_uses, preview.uses_count) == (5, 0)


def test_lookup_does_not_mutate(db, group_and_owner):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id).token
    lookup_invite(db, token)
    lookup_invite(db, token)
    assert _invite(db, token).uses_count == 0


def test_lookup_expired_and_exhausted(db, group_and_owner):
    group, owner = group_and_owner
    expired = create_invite(db, group.id, owner.id, now=utcnow() - timedelta(days=3)).token
    exhausted = create_invite(db, group.id, owner.id).token
    _invite(db, exhausted).uses_count = 1
    db.commit()

    p1 = lookup_invite(db, expired)
    assert p1.status == "expired"
    assert p1.group_name == "Kitchen" and p1.inviter_username is None

    p2 = lookup_invite(db, exhausted)
    assert p2.status == "exhausted"
    # lookup не убирает исчерпанный инвайт
    assert _invite(db, exhausted) is not None


def test_lookup_missing_pieces_are_indistinguishable(db, group_and_owner):
    group, owner = group_and_owner
    token = create_invite(db, group.id, owner.id).token

    with pytest.raises(NotFoundError) as missing:
        lookup_invite(db, generate_invite_token())

    db.query(User).filter(User.id == owner.id).delete()
    db.commit()
    with pytest.raises(NotFoundError) as no_inviter:
        lookup_invite(db, token)

    assert missing.value.code == no_inviter.value.code == "invite_invalid"


def test_lookup_requires_token(db):
    with pytest.raises(ValidationError):
        lookup_invite(db, None)
