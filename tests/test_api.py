import base64
import json
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from svix.webhooks import Webhook

from models import db, Swipe
from services import identity

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"pathtoforever-test-webhook-key!!").decode()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_missing_token(client):
    response = client.get("/users/me")
    assert response.status_code == 401
    assert response.get_json()["success"] is False


def test_unknown_subject(client, auth):
    stranger = SimpleNamespace(external_id="user_unprovisioned")
    response = client.get("/users/me", headers=auth(stranger))
    assert response.status_code == 403


def test_current_user(client, auth, make_admin):
    moderator = make_admin('moderator')
    response = client.get("/users/me", headers=auth(moderator))

    assert response.status_code == 200
    data = response.get_json()["data"]
    assert data["id"] == str(moderator.id)
    assert data["role"] == "moderator"
    assert data["capabilities"] == ["can_manage_reports"]
    assert data["unread_count"] == 0


def test_reciprocal_swipes_match(client, auth, make_user):
    a, b = make_user("A"), make_user("B")

    first = client.post("/swipes", json={"target_user_id": str(b.id), "direction": "like"}, headers=auth(a))
    assert first.status_code == 201
    assert first.get_json()["data"]["match"] is None

    second = client.post("/swipes", json={"target_user_id": str(a.id), "direction": "like"}, headers=auth(b))
    assert second.status_code == 201
    body = second.get_json()
    assert body["message"] == "It's a match!"
    match = body["data"]["match"]
    assert match["is_active"] is True
    assert {match["u1"], match["u2"]} == {str(a.id), str(b.id)}

    listed = client.get("/matches", headers=auth(a)).get_json()["data"]
    assert listed["count"] == 1
    assert listed["matches"][0]["other_user_id"] == str(b.id)


def test_swipe_validation_envelope(client, auth, make_user):
    a, b = make_user(), make_user()
    response = client.post("/swipes", json={"target_user_id": str(b.id), "direction": "maybe"}, headers=auth(a))

    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["code"] == 400
    assert error["details"]["kind"] == "invalid_argument"


def test_missing_fields(client, auth, make_user):
    a = make_user()
    response = client.post("/swipes", json={"direction": "like"}, headers=auth(a))
    assert response.status_code == 400
    assert response.get_json()["error"]["details"]["fields"] == ["target_user_id"]


def test_idempotent_swipe_replay(client, auth, make_user):
    a, b = make_user(), make_user()
    headers = auth(a, **{"Idempotency-Key": "swipe-1"})
    payload = {"target_user_id": str(b.id), "direction": "like"}

    first = client.post("/swipes", json=payload, headers=headers)
    second = client.post("/swipes", json=payload, headers=headers)

    assert first.status_code == second.status_code == 201
    assert second.headers["Idempotent-Replayed"] == "true"
    assert second.get_json()["data"]["swipe_id"] == first.get_json()["data"]["swipe_id"]
    assert Swipe.query.count() == 1


def test_idempotency_key_bound_to_operation(client, auth, make_user, make_match):
    a, b = make_user(), make_user()
    match = make_match(a, b)
    headers = auth(a, **{"Idempotency-Key": "shared"})
    client.post("/swipes", json={"target_user_id": str(make_user().id), "direction": "pass"}, headers=headers)

    response = client.post(
        f"/matches/{match.id}/messages", json={"type": "text", "content": "hi"}, headers=headers,
    )
    assert response.status_code == 409
    assert response.get_json()["error"]["details"]["code"] == "idempotency_key_reused"


def test_rate_limit_sets_retry_after(app, client, auth, make_user):
    app.config['SWIPES_PER_HOUR'] = 1
    a, b, c = make_user(), make_user(), make_user()
    client.post("/swipes", json={"target_user_id": str(b.id), "direction": "pass"}, headers=auth(a))

    response = client.post("/swipes", json={"target_user_id": str(c.id), "direction": "pass"}, headers=auth(a))

    assert response.status_code == 429
    assert response.headers["Retry-After"] == "3600"
    assert response.get_json()["error"]["details"]["retry_after"] == 3600


def test_match_not_found_and_forbidden(client, auth, make_user, make_match):
    a, b, c = make_user(), make_user(), make_user()
    match = make_match(a, b)

    assert client.get(f"/matches/{uuid.uuid4()}", headers=auth(a)).status_code == 404
    response = client.get(f"/matches/{match.id}", headers=auth(c))
    assert response.status_code == 403
    assert response.get_json()["error"]["details"]["kind"] == "forbidden"


def test_messages_roundtrip(client, auth, make_user, make_match):
    a, b = make_user(), make_user()
    match = make_match(a, b)

    sent = client.post(f"/matches/{match.id}/messages", json={"type": "text", "content": "Hello there"},
                       headers=auth(a))
    assert sent.status_code == 201
    assert sent.get_json()["data"]["seq"] == 1

    unread = client.get("/messages/unread", headers=auth(b)).get_json()["data"]
    assert unread["unread_count"] == 1

    listed = client.get(f"/matches/{match.id}/messages", headers=auth(b)).get_json()["data"]
    assert [m["content"] for m in listed["messages"]] == [{"text": "Hello there"}]

    conversation_id = listed["messages"][0]["conversation_id"]
    marked = client.post(f"/conversations/{conversation_id}/read", headers=auth(b))
    assert marked.get_json()["data"]["marked_count"] == 1


def test_rejected_message_content(client, auth, make_user, make_match):
    a, b = make_user(), make_user()
    match = make_match(a, b)
    response = client.post(f"/matches/{match.id}/messages",
                           json={"type": "text", "content": "mail me at ana@example.com"}, headers=auth(a))
    assert response.status_code == 422


def test_block_endpoints(client, auth, make_user):
    a, b = make_user(), make_user()

    created = client.post("/blocks", json={"user_id": str(b.id), "reason": "spam"}, headers=auth(a))
    assert created.status_code == 201
    assert client.get("/blocks", headers=auth(a)).get_json()["data"]["count"] == 1

    swipe = client.post("/swipes", json={"target_user_id": str(a.id), "direction": "like"}, headers=auth(b))
    assert swipe.status_code == 403
    assert swipe.get_json()["error"]["details"]["code"] == "blocked"

    assert client.delete(f"/blocks/{b.id}", headers=auth(a)).status_code == 200
    assert client.delete(f"/blocks/{b.id}", headers=auth(a)).status_code == 404


def test_report_queue_requires_capability(client, auth, make_user, make_admin):
    reporter, target = make_user(), make_user()
    moderator = make_admin('moderator')

    created = client.post("/reports", json={"reported_user_id": str(target.id), "reason": "spam"},
                          headers=auth(reporter))
    assert created.status_code == 201

    denied = client.get("/reports", headers=auth(reporter))
    assert denied.status_code == 403
    assert denied.get_json()["error"]["details"]["capability"] == "can_manage_reports"

    queue = client.get("/reports?status=pending", headers=auth(moderator)).get_json()
    assert queue["pagination"]["total"] == 1
    assert queue["data"][0]["reason"] == "spam"


def test_review_with_sanction_over_http(client, auth, make_user, make_admin):
    reporter, target = make_user(), make_user()
    moderator = make_admin('moderator')
    report_id = client.post("/reports", json={"reported_user_id": str(target.id), "reason": "harassment"},
                            headers=auth(reporter)).get_json()["data"]["id"]

    response = client.post(
        f"/reports/{report_id}/review",
        json={"action": "resolve", "reason": "verified", "sanction": {"kind": "ban", "duration": "7d"}},
        headers=auth(moderator),
    )

    assert response.status_code == 200
    db.session.expire_all()
    assert identity.get_user(target.id).banned
    sanctions = client.get(f"/users/{target.id}/sanctions", headers=auth(moderator)).get_json()["data"]
    assert sanctions["sanctions"][0]["duration"] == "7d"


def _signed(payload):
    body = json.dumps(payload)
    msg_id = f"msg_{uuid.uuid4().hex}"
    now = datetime.now(timezone.utc)
    signature = Webhook(WEBHOOK_SECRET).sign(msg_id, now, body)
    headers = {
        "svix-id": msg_id,
        "svix-timestamp": str(int(now.timestamp())),
        "svix-signature": signature,
    }
    return body, headers


@pytest.fixture()
def webhook_secret(app):
    app.config['CLERK_WEBHOOK_SECRET'] = WEBHOOK_SECRET


def test_webhook_creates_user(client, webhook_secret):
    body, headers = _signed({
        "type": "user.created",
        "data": {
            "id": "user_clerk_1",
            "first_name": "Ana",
            "last_name": "Silva",
            "email_addresses": [{"id": "e1", "email_address": "ana@example.com"}],
            "primary_email_address_id": "e1",
        },
    })

    response = client.post("/webhooks/clerk", data=body, headers=headers, content_type="application/json")

    assert response.status_code == 200
    user = identity.resolve_external("user_clerk_1")
    assert user.email == "ana@example.com"
    assert user.reputation == 100

    replay = client.post("/webhooks/clerk", data=body, headers=headers, content_type="application/json")
    assert replay.get_json()["data"]["status"] == "exists"


def test_webhook_rejects_bad_signature(client, webhook_secret):
    body, headers = _signed({"type": "user.created", "data": {"id": "user_clerk_2"}})
    headers["svix-signature"] = "v1,bm90IGEgc2lnbmF0dXJl"

    response = client.post("/webhooks/clerk", data=body, headers=headers, content_type="application/json")

    assert response.status_code == 400
    assert identity.resolve_external("user_clerk_2") is None


def test_webhook_deletes_user(client, webhook_secret, make_user):
    user = make_user()
    body, headers = _signed({"type": "user.deleted", "data": {"id": user.external_id, "deleted": True}})

    response = client.post("/webhooks/clerk", data=body, headers=headers, content_type="application/json")

    assert response.status_code == 200
    db.session.refresh(user)
    assert not user.is_active
    assert user.external_id is None


def test_webhook_ignores_other_events(client, webhook_secret):
    body, headers = _signed({"type": "session.created", "data": {"id": "sess_1"}})

    response = client.post("/webhooks/clerk", data=body, headers=headers, content_type="application/json")

    assert response.status_code == 200
    assert response.get_json()["data"]["status"] == "ignored"


def test_message_cursor_over_http(client, auth, make_user, make_match):
    a, b = make_user(), make_user()
    match = make_match(a, b)
    for text in ("one", "two", "three"):
        client.post(f"/matches/{match.id}/messages", json={"type": "text", "content": text}, headers=auth(a))

    first = client.get(f"/matches/{match.id}/messages?limit=2", headers=auth(b)).get_json()["data"]["messages"]
    boundary = first[-1]
    rest = client.get(
        f"/matches/{match.id}/messages",
        query_string={"before": boundary["created_at"], "before_seq": boundary["seq"], "limit": 2},
        headers=auth(b),
    ).get_json()["data"]["messages"]

    assert [m["seq"] for m in first] == [3, 2]
    assert [m["content"]["text"] for m in rest] == ["one"]
