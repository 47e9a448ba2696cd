from conftest import auth, make_legacy_property, make_property, make_user
from fastapi.testclient import TestClient

import config
import database
from main import app


def test_admin_routes_require_admin(client, db):
    user = make_user(db)
    assert client.get("/api/admin/stats").status_code == 401
    res = client.get("/api/admin/stats", headers=auth(user))
    assert res.status_code == 403
    assert res.json()["message"] == "Admin access required"


def test_stats_and_user_listing(client, db):
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner)
    make_property(db, owner, status="pending")

    stats = client.get("/api/admin/stats", headers=auth(admin)).json()["stats"]
    assert stats["totalUsers"] == 2
    assert stats["admins"] == 1
    assert stats["pendingProperties"] == 1

    res = client.get("/api/admin/users", params={"search": "owner"}, headers=auth(admin))
    users = res.json()["users"]
    assert [u["email"] for u in users] == ["owner@bashalagbe.com"]
    assert "password" not in users[0]


def test_property_listing_by_status(client, db):
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner)
    make_legacy_property(db, owner, status="pending")
    res = client.get("/api/admin/properties", params={"status": "pending"}, headers=auth(admin))
    assert res.json()["pagination"]["total"] == 1
    assert len(client.get("/api/admin/properties/pending", headers=auth(admin)).json()["properties"]) == 1
    assert client.get("/api/admin/properties", headers=auth(admin)).json()["pagination"]["total"] == 2


def test_moderate_legacy_listing(client, db):
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    owner = make_user(db, email="owner@bashalagbe.com")
    prop = make_legacy_property(db, owner, status="pending")
    url = f"/api/admin/properties/{prop['_id']}/moderate"

    assert client.post(url, json={"action": "maybe"}, headers=auth(admin)).status_code == 400
    assert client.post(url, json={"action": "reject"}, headers=auth(admin)).status_code == 400

    res = client.post(url, json={"action": "approve"}, headers=auth(admin))
    assert res.status_code == 200
    stored = db["property"].find_one({"_id": prop["_id"]})
    assert stored["verificationStatus"] == "approved"
    assert stored["basicInfo"]["status"] == "approved"
    assert db["notification"].find_one({"userEmail": "owner@bashalagbe.com"})["type"] == "property_approved"
    assert client.get(f"/api/listing/get/{prop['_id']}").status_code == 200


def test_user_status_and_delete(client, db):
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    user = make_user(db)
    make_property(db, user)

    assert client.patch(f"/api/admin/users/{admin['_id']}/status", json={"isActive": False},
                        headers=auth(admin)).status_code == 400
    res = client.patch(f"/api/admin/users/{user['_id']}/status", json={"isActive": False}, headers=auth(admin))
    assert res.json()["user"]["isActive"] is False
    assert client.get("/api/auth/verify", headers=auth(user)).status_code == 403

    assert client.delete(f"/api/admin/users/{admin['_id']}", headers=auth(admin)).status_code == 400
    assert client.delete(f"/api/admin/users/{user['_id']}", headers=auth(admin)).status_code == 200
    assert db["property"].count_documents({}) == 0
    assert client.delete(f"/api/admin/users/{user['_id']}", headers=auth(admin)).status_code == 404


def test_bootstrap_creates_first_admin_once(client, db):
    res = client.post("/api/init/bootstrap")
    assert res.status_code == 200
    admin = db["user"].find_one({"email": config.ADMIN_EMAIL})
    assert admin["role"] == "admin"
    assert client.post("/api/init/bootstrap").status_code == 400


def test_public_stats(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner)
    make_legacy_property(db, owner)
    make_property(db, owner, status="pending")
    db["application"].insert_many([{"status": "approved"}, {"status": "pending"}])

    stats = client.get("/api/stats/").json()["stats"]
    assert stats == {"totalProperties": 3, "activeListings": 2, "totalUsers": 1, "completedTransactions": 1}


def test_service_routes(client):
    assert client.get("/").status_code == 200
    assert client.get("/api/test").json()["backend"] == "ok"


def test_indexes_are_created_on_startup(db, monkeypatch):
    monkeypatch.setattr(database, "db", db)
    with TestClient(app):
        pass
    assert db["user"].index_information()["email_1"]["unique"] is True
    assert "propertyId_1_reviewer_1" in db["review"].index_information()
