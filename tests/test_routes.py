from starlette import status

from src.models.event import Event
from src.models.notification import Notification
from src.services.events import GROUP_CREATED, MEMBER_JOINED


def _create_group(client, headers, name="Flat"):
    r = client.post("/api/groups/", json={"name": name}, headers=headers)
    assert r.status_code == status.HTTP_201_CREATED, r.text
    return r.json()


def _invite(client, headers, group_id, **body):
    r = client.post(f"/api/groups/{group_id}/invite", json=body or None, headers=headers)
    assert r.status_code == status.HTTP_201_CREATED, r.text
    return r.json()["token"]


def test_requires_identity(client):
    r = client.get("/api/groups/")
    assert r.status_code == status.HTTP_401_UNAUTHORIZED


def test_create_and_get_group(client, make_user, as_user):
    u1 = make_user("alice")
    group = _create_group(client, as_user(u1))

    assert group["icon"] == "default-icon"
    assert len(group["members"]) == 1
    assert group["members"][0]["role"] == "owner"
    assert group["members"][0]["user"]["username"] == "alice"

    r = client.get(f"/api/groups/{group['id']}", headers=as_user(u1))
    assert r.status_code == 200
    assert r.json()["name"] == "Flat"


def test_error_body_shape(client, make_user, as_user):
    u1, stranger = make_user(), make_user()
    group = _create_group(client, as_user(u1))

    r = client.get(f"/api/groups/{group['id']}", headers=as_user(stranger))
    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert r.json() == {
        "detail": {"code": "not_group_member", "message": "User is not a group member", "kind": "Forbidden"}
    }

    r = client.get("/api/groups/9999", headers=as_user(u1))
    assert r.status_code == status.HTTP_404_NOT_FOUND
    assert r.json()["detail"]["kind"] == "NotFound"


def test_invite_flow_single_use(client, make_user, as_user):
    u1, u2, u3 = make_user("owner"), make_user("u2"), make_user("u3")
    group = _create_group(client, as_user(u1))
    token = _invite(client, as_user(u1), group["id"], max_uses=1)

    r = client.get("/api/groups/invite/lookup", params={"token": token})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "valid"
    assert body["group"] == {"id": group["id"], "name": "Flat", "member_count": 1}
    assert body["inviter_username"] == "owner"

    r = client.post("/api/groups/invite/accept", json={"token": token}, headers=as_user(u2))
    assert r.status_code == 200, r.text
    assert r.json()["joined"] is True
    assert len(r.json()["group"]["members"]) == 2

    r = client.post("/api/groups/invite/accept", json={"token": token}, headers=as_user(u3))
    assert r.status_code == status.HTTP_410_GONE
    assert r.json()["detail"]["kind"] == "Gone"

    r = client.get("/api/groups/invite/lookup", params={"token": token})
    assert r.status_code == status.HTTP_404_NOT_FOUND


def test_invite_accept_token_from_query(client, make_user, as_user):
    u1, u2 = make_user(), make_user()
    group = _create_group(client, as_user(u1))
    token = _invite(client, as_user(u1), group["id"])

    r = client.post(f"/api/groups/invite/accept?startapp=join:{token}", headers=as_user(u2))
    assert r.status_code == 200, r.text
    assert r.json()["joined"] is True


def test_invite_accept_without_token(client, make_user, as_user):
    r = client.post("/api/groups/invite/accept", json={}, headers=as_user(make_user()))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "token_required"


def test_invite_rejects_zero_max_uses(client, make_user, as_user):
    u1 = make_user()
    group = _create_group(client, as_user(u1))
    r = client.post(f"/api/groups/{group['id']}/invite", json={"max_uses": 0}, headers=as_user(u1))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "invalid_max_uses"


def test_members_roles_and_kick(client, make_user, as_user):
    u1, u2, u3 = make_user("owner"), make_user("mod"), make_user("member")
    group = _create_group(client, as_user(u1))
    gid = group["id"]
    for u in (u2, u3):
        r = client.post("/api/group-members/", json={"group_id": gid, "user_id": u.id}, headers=as_user(u1))
        assert r.status_code == status.HTTP_201_CREATED, r.text

    r = client.patch(f"/api/group-members/group/{gid}/{u2.id}/role", json={"role": "moderator"}, headers=as_user(u1))
    assert r.status_code == 200
    assert r.json()["role"] == "moderator"

    # moderator → owner самому себе: ранг 2 < 3
    r = client.patch(f"/api/group-members/group/{gid}/{u2.id}/role", json={"role": "owner"}, headers=as_user(u2))
    assert r.status_code == status.HTTP_403_FORBIDDEN

    r = client.patch(f"/api/group-members/group/{gid}/{u3.id}/role", json={"role": "admin"}, headers=as_user(u1))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "invalid_role"

    r = client.delete(f"/api/group-members/group/{gid}/{u1.id}", headers=as_user(u2))
    assert r.status_code == status.HTTP_403_FORBIDDEN
    assert r.json()["detail"]["code"] == "cannot_kick_owner"

    r = client.delete(f"/api/group-members/group/{gid}/{u3.id}", headers=as_user(u2))
    assert r.status_code == status.HTTP_204_NO_CONTENT

    r = client.get(f"/api/group-members/group/{gid}", headers=as_user(u1))
    assert [m["user_id"] for m in r.json()] == [u1.id, u2.id]


def test_leave_rules(client, make_user, as_user):
    u1, u2, u3 = make_user(), make_user(), make_user()
    gid = _create_group(client, as_user(u1))["id"]

    r = client.post(f"/api/group-members/group/{gid}/leave", headers=as_user(u1))
    assert r.status_code == status.HTTP_409_CONFLICT
    assert r.json()["detail"]["code"] == "sole_member_cannot_leave"

    for u in (u2, u3):
        token = _invite(client, as_user(u1), gid)
        client.post("/api/groups/invite/accept", json={"token": token}, headers=as_user(u))

    r = client.post(f"/api/group-members/group/{gid}/leave", headers=as_user(u1))
    assert r.status_code == status.HTTP_409_CONFLICT
    assert r.json()["detail"]["code"] == "owner_must_transfer"

    r = client.post(f"/api/group-members/group/{gid}/leave", headers=as_user(u3))
    assert r.status_code == 200
    assert r.json() == {"group_id": gid, "group_deleted": False, "deleted": {}}


def test_update_and_delete_group(client, make_user, as_user):
    u1, u2 = make_user(), make_user()
    gid = _create_group(client, as_user(u1))["id"]
    client.post("/api/group-members/", json={"group_id": gid, "user_id": u2.id}, headers=as_user(u1))

    r = client.patch(f"/api/groups/{gid}", json={"name": "Renamed"}, headers=as_user(u2))
    assert r.status_code == status.HTTP_403_FORBIDDEN

    r = client.patch(f"/api/groups/{gid}", json={"name": "Renamed", "color": "green"}, headers=as_user(u1))
    assert r.status_code == 200
    assert (r.json()["name"], r.json()["color"]) == ("Renamed", "green")

    r = client.delete(f"/api/groups/{gid}", headers=as_user(u1))
    assert r.status_code == 200
    assert r.json()["deleted"]["members"] == 2
    assert client.get(f"/api/groups/{gid}", headers=as_user(u1)).status_code == 404


def test_my_membership_settings(client, make_user, as_user):
    u1 = make_user()
    gid = _create_group(client, as_user(u1))["id"]

    r = client.patch(
        f"/api/groups/{gid}/me",
        json={"is_pinned": True, "notification_preferences": {"REMINDER": False}},
        headers=as_user(u1),
    )
    assert r.status_code == 200
    assert r.json()["is_pinned"] is True
    assert r.json()["notification_preferences"]["REMINDER"] is False


def test_side_effects_are_recorded(client, db, make_user, as_user):
    u1, u2 = make_user("owner"), make_user("joiner")
    gid = _create_group(client, as_user(u1))["id"]
    token = _invite(client, as_user(u1), gid)
    client.post("/api/groups/invite/accept", json={"token": token}, headers=as_user(u2))

    types = {e.type for e in db.query(Event).filter(Event.group_id == gid)}
    assert {GROUP_CREATED, MEMBER_JOINED} <= types

    # owner получает уведомление о новом участнике, сам вступивший: нет
    recipients = {n.recipient_id for n in db.query(Notification).filter(Notification.group_id == gid)}
    assert recipients == {u1.id}

    r = client.get("/api/events/", params={"group_id": gid}, headers=as_user(u2))
    assert r.status_code == 200
    assert {e["type"] for e in r.json()} >= {GROUP_CREATED, MEMBER_JOINED}


def test_notification_preferences_are_honoured(client, db, make_user, as_user):
    u1, u2 = make_user(), make_user()
    gid = _create_group(client, as_user(u1))["id"]
    client.patch(f"/api/groups/{gid}/me", json={"notification_preferences": {"GROUP": False}}, headers=as_user(u1))

    token = _invite(client, as_user(u1), gid)
    client.post("/api/groups/invite/accept", json={"token": token}, headers=as_user(u2))

    assert db.query(Notification).filter(Notification.group_id == gid).count() == 0


def test_users_me(client, make_user, as_user):
    u1 = make_user("me")
    r = client.get("/api/users/me", headers=as_user(u1))
    assert r.status_code == 200
    assert r.json()["username"] == "me"
