import pytest

from src.models.group import Group
from src.models.group_member import GroupMember
from src.services.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from src.services.group_membership import (
    NOTIFICATION_CATEGORIES,
    add_member_by,
    change_member_role,
    count_members,
    get_member,
    join_group,
    kick_member,
    leave_group,
    update_my_membership,
)
from src.services.groups import create_group
from src.services.permissions import GroupRole


@pytest.fixture
def trio(db, make_user):
    """Группа: u1: owner, u2 и u3: member."""
    u1, u2, u3 = make_user("owner"), make_user("bob"), make_user("carol")
    group = create_group(db, u1.id, name="Flat")
    join_group(db, group.id, u2.id)
    join_group(db, group.id, u3.id)
    return group, u1, u2, u3


def _role(db, group_id, user_id):
    db.expire_all()
    return get_member(db, group_id, user_id).role


def test_create_group_makes_creator_sole_owner(db, make_user):
    u1 = make_user()
    group = create_group(db, u1.id, name="Trip")

    assert count_members(db, group.id) == 1
    owner = get_member(db, group.id, u1.id)
    assert owner.role is GroupRole.owner
    assert owner.notification_preferences == {c: True for c in NOTIFICATION_CATEGORIES}
    assert group.icon == "default-icon"
    assert group.color == "white"


def test_join_is_idempotent(db, trio):
    group, _, u2, _ = trio
    _, joined = join_group(db, group.id, u2.id)
    assert joined is False
    assert count_members(db, group.id) == 3


def test_join_missing_group(db, make_user):
    with pytest.raises(NotFoundError):
        join_group(db, 12345, make_user().id)


def test_add_member_requires_manage_members(db, trio, make_user):
    group, u1, u2, _ = trio
    newbie = make_user("dave")

    with pytest.raises(ForbiddenError):
        add_member_by(db, group.id, u2.id, newbie.id)

    gm, created = add_member_by(db, group.id, u1.id, newbie.id)
    assert created and gm.role is GroupRole.member

    _, created = add_member_by(db, group.id, u1.id, newbie.id)
    assert created is False


def test_add_member_unknown_user(db, trio):
    group, u1, _, _ = trio
    with pytest.raises(NotFoundError) as exc:
        add_member_by(db, group.id, u1.id, 999)
    assert exc.value.code == "user_not_found"


def test_owner_cannot_leave_with_other_members(db, trio):
    group, u1, _, _ = trio
    with pytest.raises(ConflictError) as exc:
        leave_group(db, group.id, u1.id)
    assert exc.value.code == "owner_must_transfer"
    assert count_members(db, group.id) == 3


def test_sole_member_cannot_leave(db, make_user):
    u1 = make_user()
    group = create_group(db, u1.id, name="Solo")

    with pytest.raises(ConflictError) as exc:
        leave_group(db, group.id, u1.id)
    assert exc.value.code == "sole_member_cannot_leave"
    assert db.get(Group, group.id) is not None
    assert count_members(db, group.id) == 1


def test_member_leaves(db, trio):
    group, _, u2, _ = trio
    result = leave_group(db, group.id, u2.id)
    assert result.group_deleted is False
    assert get_member(db, group.id, u2.id) is None
    assert count_members(db, group.id) == 2


def test_leave_by_non_member(db, trio, make_user):
    group, _, _, _ = trio
    with pytest.raises(NotFoundError):
        leave_group(db, group.id, make_user().id)


def test_last_remaining_member_cannot_leave_even_without_owner(db, make_user):
    # owner пропал из состава в обход сервисов
    u1, u2 = make_user(), make_user()
    group = create_group(db, u1.id, name="Ghost")
    join_group(db, group.id, u2.id)
    db.query(GroupMember).filter(GroupMember.user_id == u1.id).delete()
    db.commit()

    with pytest.raises(ConflictError) as exc:
        leave_group(db, group.id, u2.id)
    assert exc.value.code == "sole_member_cannot_leave"
    assert db.get(Group, group.id) is not None


def test_kick_owner_always_forbidden(db, trio):
    group, u1, u2, _ = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")

    with pytest.raises(ForbiddenError) as exc:
        kick_member(db, group.id, u2.id, u1.id)
    assert exc.value.code == "cannot_kick_owner"

    # owner не может кикнуть и самого себя
    with pytest.raises(ForbiddenError):
        kick_member(db, group.id, u1.id, u1.id)


def test_member_cannot_kick(db, trio):
    group, _, u2, u3 = trio
    with pytest.raises(ForbiddenError) as exc:
        kick_member(db, group.id, u2.id, u3.id)
    assert exc.value.code == "forbidden"


def test_moderator_kicks_member(db, trio):
    group, u1, u2, u3 = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")

    removed = kick_member(db, group.id, u2.id, u3.id)
    assert removed == {"user_id": u3.id, "role": "member", "group_deleted": False, "deleted": {}}
    assert get_member(db, group.id, u3.id) is None


def test_kick_unknown_member(db, trio, make_user):
    group, u1, _, _ = trio
    with pytest.raises(NotFoundError):
        kick_member(db, group.id, u1.id, make_user().id)


def test_moderator_cannot_promote_self_to_owner(db, trio):
    group, u1, u2, _ = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")

    with pytest.raises(ForbiddenError):
        change_member_role(db, group.id, u2.id, u2.id, "owner")
    assert _role(db, group.id, u2.id) is GroupRole.moderator


def test_moderator_cannot_touch_peer(db, trio):
    group, u1, u2, u3 = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")
    change_member_role(db, group.id, u1.id, u3.id, "moderator")

    with pytest.raises(ForbiddenError) as exc:
        change_member_role(db, group.id, u2.id, u3.id, "member")
    assert exc.value.code == "cannot_manage_peer"


def test_moderator_cannot_grant_above_self(db, trio, make_user):
    group, u1, u2, u3 = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")

    with pytest.raises(ForbiddenError) as exc:
        change_member_role(db, group.id, u2.id, u3.id, "owner")
    assert exc.value.code == "cannot_promote_above_self"

    updated = change_member_role(db, group.id, u2.id, u3.id, "moderator")
    assert updated.role is GroupRole.moderator


def test_owner_can_demote_moderator(db, trio):
    group, u1, u2, _ = trio
    change_member_role(db, group.id, u1.id, u2.id, "moderator")
    change_member_role(db, group.id, u1.id, u2.id, "member")
    assert _role(db, group.id, u2.id) is GroupRole.member


def test_role_change_rejects_unknown_role(db, trio):
    group, u1, u2, _ = trio
    with pytest.raises(ValidationError):
        change_member_role(db, group.id, u1.id, u2.id, "admin")


def test_member_cannot_change_roles(db, trio):
    group, _, u2, u3 = trio
    with pytest.raises(ForbiddenError):
        change_member_role(db, group.id, u2.id, u3.id, "moderator")


def test_update_my_membership(db, trio):
    group, _, u2, _ = trio
    member = update_my_membership(db, group.id, u2.id, is_pinned=True, notification_preferences={"POLL": False})
    assert member.is_pinned is True
    assert member.notification_preferences["POLL"] is False
    assert member.notification_preferences["GROUP"] is True

    with pytest.raises(ValidationError):
        update_my_membership(db, group.id, u2.id, notification_preferences={"SPAM": True})


def test_update_my_membership_requires_membership(db, trio, make_user):
    group, _, _, _ = trio
    with pytest.raises(ForbiddenError):
        update_my_membership(db, group.id, make_user().id, is_pinned=True)


def test_kick_that_empties_roster_reports_group_deletion(db, make_user):
    # owner пропал из состава в обход сервисов, остался один moderator
    u1, u2 = make_user(), make_user()
    group = create_group(db, u1.id, name="Ghost")
    group_id = group.id
    join_group(db, group_id, u2.id)
    change_member_role(db, group_id, u1.id, u2.id, "moderator")
    db.query(GroupMember).filter(GroupMember.user_id == u1.id).delete()
    db.commit()

    removed = kick_member(db, group_id, u2.id, u2.id)
    assert removed["group_deleted"] is True
    assert removed["deleted"]["members"] == 0
    assert removed["deleted"]["group"] == 1
    assert db.get(Group, group_id) is None
