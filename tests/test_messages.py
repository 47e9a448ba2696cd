from datetime import timedelta

from conftest import auth, make_property, make_user

from database import utcnow


def send(client, sender, receiver, content="Hello there", **extra):
    return client.post("/api/messages/send", json={"receiverId": str(receiver["_id"]), "content": content, **extra},
                       headers=auth(sender))


def test_send_threads_into_one_conversation_and_notifies(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    tenant = make_user(db)
    prop = make_property(db, owner)

    res = send(client, tenant, owner, "  Is parking included?  ", propertyId=str(prop["_id"]))
    assert res.status_code == 201
    assert res.json()["data"]["content"] == "Is parking included?"
    send(client, owner, tenant, "Yes", propertyId=str(prop["_id"]))

    conversations = list(db["conversation"].find({}))
    assert len(conversations) == 1
    conv = conversations[0]
    assert conv["metadata"]["messageCount"] == 2
    assert conv["context"]["type"] == "property-inquiry"
    roles = {p["user"]: p["role"] for p in conv["participants"]}
    assert roles[owner["_id"]] == "landlord"

    note = db["notification"].find_one({"userEmail": "owner@bashalagbe.com"})
    assert note["type"] == "message_received"


def test_send_validation(client, db):
    tenant = make_user(db)
    owner = make_user(db, email="owner@bashalagbe.com")
    assert send(client, tenant, owner, "   ").status_code == 400
    assert send(client, tenant, owner, "x" * 2001).status_code == 400
    assert send(client, tenant, tenant).status_code == 400
    res = client.post("/api/messages/send", json={"receiverId": "65a1b2c3d4e5f6a7b8c9d0e1", "content": "hi"},
                      headers=auth(tenant))
    assert res.status_code == 404


def test_conversation_is_oldest_first_and_marks_read(client, db):
    a = make_user(db, email="a@bashalagbe.com")
    b = make_user(db, email="b@bashalagbe.com")
    send(client, a, b, "first")
    send(client, b, a, "second")
    send(client, a, b, "third")
    db["message"].update_one({"content": "first"}, {"$set": {"createdAt": utcnow() - timedelta(minutes=3)}})
    db["message"].update_one({"content": "second"}, {"$set": {"createdAt": utcnow() - timedelta(minutes=2)}})

    assert client.get("/api/messages/unread/count", headers=auth(b)).json()["unreadCount"] == 2
    res = client.get(f"/api/messages/conversation/{a['_id']}", headers=auth(b))
    assert [m["content"] for m in res.json()["messages"]] == ["first", "second", "third"]
    assert client.get("/api/messages/unread/count", headers=auth(b)).json()["unreadCount"] == 0


def test_conversation_list_has_one_entry_per_partner(client, db):
    me = make_user(db, email="me@bashalagbe.com")
    x = make_user(db, email="x@bashalagbe.com")
    y = make_user(db, email="y@bashalagbe.com")
    send(client, x, me, "from x")
    send(client, x, me, "again from x")
    send(client, me, y, "to y")

    res = client.get("/api/messages/conversations", headers=auth(me))
    entries = {c["partner"]["email"]: c for c in res.json()["conversations"]}
    assert set(entries) == {"x@bashalagbe.com", "y@bashalagbe.com"}
    assert entries["x@bashalagbe.com"]["unreadCount"] == 2
    assert entries["y@bashalagbe.com"]["unreadCount"] == 0

    conv_id = entries["y@bashalagbe.com"]["conversationId"]
    assert client.put(f"/api/messages/conversations/{conv_id}/archive", headers=auth(x)).status_code == 403
    assert client.put(f"/api/messages/conversations/{conv_id}/archive", headers=auth(me)).status_code == 200
    res = client.get("/api/messages/conversations", headers=auth(me))
    assert [c["partner"]["email"] for c in res.json()["conversations"]] == ["x@bashalagbe.com"]


def test_read_edit_delete_permissions(client, db):
    a = make_user(db, email="a@bashalagbe.com")
    b = make_user(db, email="b@bashalagbe.com")
    msg_id = send(client, a, b, "hello").json()["data"]["id"]

    assert client.put(f"/api/messages/{msg_id}/read", headers=auth(a)).status_code == 403
    assert client.put(f"/api/messages/{msg_id}/read", headers=auth(b)).json()["data"]["isRead"] is True

    assert client.put(f"/api/messages/{msg_id}/edit", json={"content": "hi"}, headers=auth(b)).status_code == 403
    res = client.put(f"/api/messages/{msg_id}/edit", json={"content": "hello!"}, headers=auth(a))
    assert res.json()["data"]["content"] == "hello!"
    assert res.json()["data"]["metadata"]["isEdited"] is True

    db["message"].update_one({}, {"$set": {"createdAt": utcnow() - timedelta(minutes=16)}})
    assert client.put(f"/api/messages/{msg_id}/edit", json={"content": "late"}, headers=auth(a)).status_code == 400

    assert client.delete(f"/api/messages/{msg_id}", headers=auth(b)).status_code == 403
    assert client.delete(f"/api/messages/{msg_id}", headers=auth(a)).status_code == 200
    assert db["message"].find_one({})["metadata"]["isDeleted"] is True
    res = client.get(f"/api/messages/conversation/{b['_id']}", headers=auth(a))
    assert res.json()["messages"] == []


def test_read_all(client, db):
    a = make_user(db, email="a@bashalagbe.com")
    b = make_user(db, email="b@bashalagbe.com")
    send(client, a, b, "one")
    send(client, a, b, "two")
    res = client.post(f"/api/messages/conversation/{a['_id']}/read-all", headers=auth(b))
    assert res.json()["modified"] == 2
