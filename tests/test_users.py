import io
import json

from conftest import PASSWORD, auth, make_property, make_user
from PIL import Image

from security import verify_password


def test_profile_hides_secrets_and_has_stats(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner)
    make_property(db, owner, status="pending")
    res = client.get(f"/api/user/profile/{owner['_id']}", headers=auth(owner))
    body = res.json()
    assert "password" not in body["user"]
    assert body["stats"]["totalListings"] == 2
    assert body["stats"]["approvedListings"] == 1


def test_update_only_own_account(client, db):
    me = make_user(db)
    other = make_user(db, email="other@bashalagbe.com")
    res = client.post(f"/api/user/update/{other['_id']}", json={"fullName": "Nope"}, headers=auth(me))
    assert res.status_code == 401

    res = client.post(f"/api/user/update/{me['_id']}", json={"fullName": " New Name ", "age": 30},
                      headers=auth(me))
    assert res.json()["user"]["fullName"] == "New Name"
    assert res.json()["user"]["age"] == 30
    assert client.post(f"/api/user/update/{me['_id']}", json={"age": 12}, headers=auth(me)).status_code == 400


def test_clearing_mobile_removes_it(client, db):
    me = make_user(db, mobileNumber="01712345678")
    other = make_user(db, email="other@bashalagbe.com")
    make_user(db, email="third@bashalagbe.com")

    res = client.post(f"/api/user/update/{me['_id']}", json={"mobileNumber": ""}, headers=auth(me))
    assert res.status_code == 200
    assert "mobileNumber" not in db["user"].find_one({"_id": me["_id"]})

    res = client.post(f"/api/user/update/{other['_id']}", json={"mobileNumber": "  "}, headers=auth(other))
    assert res.status_code == 200
    assert "mobileNumber" not in db["user"].find_one({"_id": other["_id"]})


def test_mobile_taken_by_someone_else(client, db):
    make_user(db, email="other@bashalagbe.com", mobileNumber="01712345678")
    me = make_user(db)
    res = client.post(f"/api/user/update/{me['_id']}", json={"mobileNumber": "01712345678"}, headers=auth(me))
    assert res.status_code == 409
    res = client.post(f"/api/user/update/{me['_id']}", json={"mobileNumber": "01812345678"}, headers=auth(me))
    assert res.json()["user"]["mobileNumber"] == "01812345678"


def test_change_email(client, db):
    me = make_user(db)
    make_user(db, email="taken@bashalagbe.com")
    url = f"/api/user/change-email/{me['_id']}"
    assert client.post(url, json={"newEmail": "taken@bashalagbe.com", "password": PASSWORD},
                       headers=auth(me)).status_code == 409
    assert client.post(url, json={"newEmail": "new@bashalagbe.com", "password": "wrongpass"},
                       headers=auth(me)).status_code == 401
    res = client.post(url, json={"newEmail": "New@BashaLagbe.com", "password": PASSWORD}, headers=auth(me))
    assert res.json()["user"]["email"] == "new@bashalagbe.com"


def test_changed_email_follows_listings_applications_and_notifications(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    tenant = make_user(db)
    prop = make_property(db, owner)
    data = {"applicationData": json.dumps({
        "propertyId": str(prop["_id"]),
        "personalInfo": {"fullName": "Tenant", "phone": "01912345678", "email": "tenant@bashalagbe.com"},
    })}
    assert client.post("/api/applications/submit", data=data, headers=auth(tenant)).status_code == 201

    res = client.post(f"/api/user/change-email/{owner['_id']}",
                      json={"newEmail": "landlord@bashalagbe.com", "password": PASSWORD}, headers=auth(owner))
    assert res.status_code == 200
    assert db["property"].find_one({"_id": prop["_id"]})["owner"]["email"] == "landlord@bashalagbe.com"

    assert client.post("/api/applications/submit", data=data, headers=auth(tenant)).status_code == 201
    received = client.get("/api/applications/received", headers=auth(owner)).json()["applications"]
    assert len(received) == 2
    notes = client.get("/api/notifications/my", headers=auth(owner)).json()["notifications"]
    assert len(notes) == 2
    assert db["application"].count_documents({"landlordEmail": "owner@bashalagbe.com"}) == 0


def test_change_password(client, db):
    me = make_user(db)
    url = f"/api/user/change-password/{me['_id']}"
    body = {"currentPassword": PASSWORD, "newPassword": "another1", "confirmPassword": "another2"}
    assert client.post(url, json=body, headers=auth(me)).status_code == 400
    body["confirmPassword"] = "another1"
    assert client.post(url, json={**body, "currentPassword": "wrongpass"}, headers=auth(me)).status_code == 401
    assert client.post(url, json=body, headers=auth(me)).status_code == 200
    assert verify_password("another1", db["user"].find_one({"_id": me["_id"]})["password"])


def test_two_factor_toggle(client, db):
    me = make_user(db)
    res = client.post("/api/user/two-factor", json={"enabled": True}, headers=auth(me))
    assert res.json()["twoFactorEnabled"] is True
    assert db["user"].find_one({"_id": me["_id"]})["twoFactorEnabled"] is True


def test_upload_avatar(client, db):
    me = make_user(db)
    buf = io.BytesIO()
    Image.new("RGB", (800, 600), "green").save(buf, "JPEG")
    res = client.post("/api/user/upload-avatar", files={"avatar": ("me.jpg", buf.getvalue(), "image/jpeg")},
                      headers=auth(me))
    assert res.status_code == 200
    assert res.json()["avatar"].startswith("/uploads/avatars/")
    assert db["user"].find_one({"_id": me["_id"]})["avatar"] == res.json()["avatar"]

    res = client.post("/api/user/upload-avatar", files={"avatar": ("me.txt", b"text", "text/plain")},
                      headers=auth(me))
    assert res.status_code == 400


def test_delete_account_cascades(client, db):
    me = make_user(db)
    other = make_user(db, email="other@bashalagbe.com")
    make_property(db, me)
    theirs = make_property(db, other)
    client.post("/api/review/create", json={"propertyId": str(theirs["_id"]), "rating": 5, "comment": "Nice"},
                headers=auth(me))

    assert client.delete(f"/api/user/delete/{other['_id']}", headers=auth(me)).status_code == 401
    assert client.delete(f"/api/user/delete/{me['_id']}", headers=auth(me)).status_code == 200
    assert db["user"].find_one({"_id": me["_id"]}) is None
    assert db["property"].count_documents({}) == 1
    assert db["review"].count_documents({}) == 0
