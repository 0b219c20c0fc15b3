from datetime import datetime, timedelta

import pytest

from gamification import notify
from models import Notification, NotificationType


@pytest.fixture
def inbox(db, make_user):
    user = make_user()
    for i in range(3):
        notify(db, user["id"], NotificationType.SYSTEM, title=f"Hello {i}", message="Welcome aboard")
    expired = notify(db, user["id"], NotificationType.SYSTEM, title="Old news", message="Gone")
    db.commit()
    expired.expires_at = datetime.utcnow() - timedelta(minutes=1)
    db.commit()
    return user


def test_list_skips_expired(client, inbox):
    body = client.get("/api/notifications", headers=inbox["headers"]).json()

    titles = [n["title"] for n in body["data"]]
    assert "Old news" not in titles
    assert body["pagination"]["total"] == 3
    assert body["data"][0]["metadata"] is None


def test_mark_one_and_all_read(client, inbox):
    headers = inbox["headers"]
    first = client.get("/api/notifications", headers=headers).json()["data"][0]

    marked = client.put(f"/api/notifications/{first['id']}/read", headers=headers).json()["data"]
    assert marked["read"] is True
    assert marked["readAt"] is not None
    assert client.get("/api/notifications/unread-count", headers=headers).json()["data"]["count"] == 2

    unread = client.get("/api/notifications?unreadOnly=true", headers=headers).json()["data"]
    assert first["id"] not in [n["id"] for n in unread]

    client.put("/api/notifications/read-all", headers=headers)
    assert client.get("/api/notifications/unread-count", headers=headers).json()["data"]["count"] == 0


def test_delete_and_ownership(client, inbox, make_user, db):
    other = make_user("other")
    target = client.get("/api/notifications", headers=inbox["headers"]).json()["data"][0]

    assert client.delete(f"/api/notifications/{target['id']}", headers=other["headers"]).status_code == 404
    assert client.delete(f"/api/notifications/{target['id']}", headers=inbox["headers"]).status_code == 200
    assert db.query(Notification).filter(Notification.id == target["id"]).first() is None
