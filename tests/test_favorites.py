from conftest import auth, make_property, make_user


def test_add_check_list_remove(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    tenant = make_user(db)
    prop = make_property(db, owner)
    pending = make_property(db, owner, status="pending", title="Pending")

    assert client.post(f"/api/favorites/add/{prop['_id']}", headers=auth(tenant)).status_code == 200
    res = client.post(f"/api/favorites/add/{prop['_id']}", headers=auth(tenant))
    assert res.status_code == 400
    assert res.json()["message"] == "Property already in favorites"
    client.post(f"/api/favorites/add/{pending['_id']}", headers=auth(tenant))
    assert db["property"].find_one({"_id": prop["_id"]})["performance"]["favorites"] == 1

    assert client.get(f"/api/favorites/check/{prop['_id']}", headers=auth(tenant)).json()["isFavorite"] is True
    res = client.get("/api/favorites/", headers=auth(tenant))
    assert [p["title"] for p in res.json()["favorites"]] == ["Sunny flat in Dhanmondi"]

    assert client.delete(f"/api/favorites/remove/{prop['_id']}", headers=auth(tenant)).status_code == 200
    assert client.delete(f"/api/favorites/remove/{prop['_id']}", headers=auth(tenant)).status_code == 400
    assert db["property"].find_one({"_id": prop["_id"]})["performance"]["favorites"] == 0
    assert client.get(f"/api/favorites/check/{prop['_id']}", headers=auth(tenant)).json()["isFavorite"] is False


def test_add_missing_property(client, db):
    tenant = make_user(db)
    res = client.post("/api/favorites/add/65a1b2c3d4e5f6a7b8c9d0e1", headers=auth(tenant))
    assert res.status_code == 404
