import io
import os

from conftest import auth, make_legacy_property, make_nested_property, make_property, make_user
from PIL import Image

import config

FORM = {
    "title": "Family flat in Uttara",
    "description": "Three bedrooms with a south facing balcony",
    "rentPrice": "25000",
    "bedrooms": "3",
    "bathrooms": "2",
    "propertyType": "Apartment",
    "address": "Sector 7, Road 3",
    "area": "Uttara",
    "district": "Dhaka",
    "elevator": "true",
    "furnished": "false",
}


def png_bytes(size=(1600, 1200), color="skyblue"):
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, "PNG")
    return buf.getvalue()


def test_create_listing_writes_both_layouts(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_user(db, email="boss@bashalagbe.com", role="admin")
    res = client.post("/api/listing/create", data=FORM, headers=auth(owner))
    assert res.status_code == 201
    prop = db["property"].find_one({})

    assert prop["basicInfo"]["title"] == prop["title"] == FORM["title"]
    assert prop["basicInfo"]["status"] == prop["verificationStatus"] == "pending"
    assert prop["basicInfo"]["propertyType"] == "apartment"
    assert prop["pricing"]["rent"]["monthly"] == prop["rentPrice"] == 25000
    assert prop["pricing"]["deposit"]["amount"] == 50000
    assert prop["details"]["bedrooms"] == prop["bedrooms"] == 3
    assert prop["amenities"]["building"]["elevator"] is True and prop["hasLift"] is True
    assert prop["details"]["furnishing"] == "unfurnished" and prop["isFurnished"] is False
    assert prop["location"]["address"]["area"] == "Uttara"
    assert prop["owner"]["userId"] == prop["postedBy"] == owner["_id"]
    assert prop["images"] == ["/images/placeholder-property.jpg"]

    notes = list(db["notification"].find({"type": "property_submitted"}))
    assert {n["userEmail"] for n in notes} == {"boss@bashalagbe.com", "root@bashalagbe.com"}


def test_create_listing_processes_images(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    files = [("images", ("one.png", png_bytes(), "image/png")),
             ("images", ("two.png", png_bytes(color="red"), "image/png"))]
    res = client.post("/api/listing/create", data=FORM, files=files, headers=auth(owner))
    assert res.status_code == 201

    prop = db["property"].find_one({})
    assert len(prop["images"]) == 2
    first = prop["media"]["images"][0]
    assert first["isPrimary"] is True
    assert first["url"].endswith(".webp")

    path = os.path.join(config.UPLOAD_DIR, "properties", os.path.basename(first["url"]))
    with Image.open(path) as img:
        assert img.format == "WEBP"
        assert img.size[0] <= 1200 and img.size[1] <= 800
    thumb = os.path.join(config.UPLOAD_DIR, "properties", os.path.basename(first["thumbnail"]))
    with Image.open(thumb) as img:
        assert img.size == (400, 300)


def test_create_listing_rejects_non_images(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    files = [("images", ("notes.txt", b"hello", "text/plain"))]
    res = client.post("/api/listing/create", data=FORM, files=files, headers=auth(owner))
    assert res.status_code == 400
    assert db["property"].count_documents({}) == 0


def test_create_listing_accepts_json_with_location_object(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    body = {k: v for k, v in FORM.items() if k not in ("address", "area", "district")}
    body["location"] = {"address": "Road 2", "area": "Banani", "district": "Dhaka"}
    body["imageUrls"] = ["https://img.bashalagbe.com/a.jpg"]
    res = client.post("/api/listing/create", json=body, headers=auth(owner))
    assert res.status_code == 201
    prop = db["property"].find_one({})
    assert prop["location"]["address"]["area"] == "Banani"
    assert prop["images"] == ["https://img.bashalagbe.com/a.jpg"]


def test_create_listing_validation(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    res = client.post("/api/listing/create", data={"title": "x"}, headers=auth(owner))
    assert res.status_code == 400
    assert res.json()["message"] == "Please provide all required fields"

    res = client.post("/api/listing/create", data={**FORM, "area": ""}, headers=auth(owner))
    assert res.status_code == 400
    assert res.json()["message"] == "Please provide complete location details"

    assert client.post("/api/listing/create", data=FORM).status_code == 401


def test_browse_counts_views_and_paginates(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    for i in range(3):
        make_property(db, owner, title=f"Flat {i}")
    make_legacy_property(db, owner, title="Legacy flat")

    res = client.get("/api/listing/get", params={"limit": 2, "page": 1})
    body = res.json()
    assert res.status_code == 200
    assert len(body["properties"]) == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 4, "hasNext": True, "hasPrev": False}

    before = db["property"].find_one({"title": "Legacy flat"})["views"]
    res = client.get("/api/listing/all", params={"maxPrice": 13000})
    assert [p["title"] for p in res.json()["properties"]] == ["Legacy flat"]
    assert db["property"].find_one({"title": "Legacy flat"})["views"] == before + 1


def test_browse_boolean_filters(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner, title="With lift", elevator="true")
    make_property(db, owner, title="No lift")
    res = client.get("/api/listing/get", params={"hasLift": "true"})
    assert [p["title"] for p in res.json()["properties"]] == ["With lift"]


def test_search_route(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner, title="Cheap", rentPrice=9000)
    make_nested_property(db, owner, title="Pricey", rent=30000)
    res = client.get("/api/listing/search", params={"sortBy": "price-high"})
    titles = [p.get("title") or p["basicInfo"]["title"] for p in res.json()["properties"]]
    assert titles == ["Pricey", "Cheap"]


def test_price_sort_interleaves_layouts(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_legacy_property(db, owner, title="Legacy 50k", rent=50000)
    make_nested_property(db, owner, title="Nested 10k", rent=10000)
    make_legacy_property(db, owner, title="Legacy 5k", rent=5000)

    res = client.get("/api/listing/search", params={"sortBy": "price-low"})
    titles = [p.get("title") or p["basicInfo"]["title"] for p in res.json()["properties"]]
    assert titles == ["Legacy 5k", "Nested 10k", "Legacy 50k"]
    assert all("sortPrice" not in p for p in res.json()["properties"])

    res = client.get("/api/listing/get", params={"sortBy": "price", "sortOrder": "desc"})
    titles = [p.get("title") or p["basicInfo"]["title"] for p in res.json()["properties"]]
    assert titles == ["Legacy 50k", "Nested 10k", "Legacy 5k"]


def test_unapproved_listing_visible_only_to_owner_and_admin(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    other = make_user(db, email="other@bashalagbe.com")
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    prop = make_property(db, owner, status="pending")
    url = f"/api/listing/get/{prop['_id']}"

    assert client.get(url).status_code == 404
    assert client.get(url, headers=auth(other)).status_code == 404
    assert client.get(url, headers=auth(owner)).status_code == 200
    assert client.get(url, headers=auth(admin)).status_code == 200


def test_get_listing_increments_views(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    prop = make_property(db, owner)
    client.get(f"/api/listing/get/{prop['_id']}")
    client.get(f"/api/listing/get/{prop['_id']}")
    stored = db["property"].find_one({"_id": prop["_id"]})
    assert stored["performance"]["views"] == 2
    assert stored["views"] == 2


def test_get_listing_bad_and_missing_ids(client, db):
    assert client.get("/api/listing/get/not-an-id").status_code == 400
    assert client.get("/api/listing/get/65a1b2c3d4e5f6a7b8c9d0e1").status_code == 404


def test_mine_lists_both_ownership_fields(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    make_property(db, owner, status="pending")
    make_legacy_property(db, owner)
    make_nested_property(db, owner)
    make_property(db, make_user(db, email="other@bashalagbe.com"))
    res = client.get("/api/listing/mine", headers=auth(owner))
    assert len(res.json()["properties"]) == 3


def test_update_only_by_owner_and_rejected_goes_back_to_pending(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    other = make_user(db, email="other@bashalagbe.com")
    prop = make_property(db, owner, status="rejected")
    db["property"].update_one({"_id": prop["_id"]}, {"$set": {"rejectionReason": "Blurry photos"}})
    url = f"/api/listing/update/{prop['_id']}"

    assert client.put(url, json={"title": "Hack"}, headers=auth(other)).status_code == 403

    res = client.put(url, json={"title": "Better photos", "rentPrice": "18000", "hasParking": True},
                     headers=auth(owner))
    assert res.status_code == 200
    stored = db["property"].find_one({"_id": prop["_id"]})
    assert stored["basicInfo"]["title"] == stored["title"] == "Better photos"
    assert stored["pricing"]["rent"]["monthly"] == stored["rentPrice"] == 18000
    assert stored["amenities"]["building"]["parking"] is True and stored["hasParking"] is True
    assert stored["basicInfo"]["status"] == stored["verificationStatus"] == "pending"
    assert "rejectionReason" not in stored


def test_update_checks_property_type(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    prop = make_property(db, owner)
    url = f"/api/listing/update/{prop['_id']}"

    res = client.put(url, json={"propertyType": "castle"}, headers=auth(owner))
    assert res.status_code == 400
    assert db["property"].find_one({"_id": prop["_id"]})["basicInfo"]["propertyType"] == "apartment"

    assert client.put(url, json={"propertyType": "Studio"}, headers=auth(owner)).status_code == 200
    stored = db["property"].find_one({"_id": prop["_id"]})
    assert stored["basicInfo"]["propertyType"] == "studio"
    assert stored["apartmentType"] == "Studio"


def test_create_rejects_unknown_property_type(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    res = client.post("/api/listing/create", data={**FORM, "propertyType": "castle"}, headers=auth(owner))
    assert res.status_code == 400
    assert db["property"].count_documents({}) == 0


def test_delete_only_by_owner(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    other = make_user(db, email="other@bashalagbe.com")
    prop = make_property(db, owner)
    url = f"/api/listing/delete/{prop['_id']}"
    assert client.delete(url, headers=auth(other)).status_code == 403
    assert client.delete(url, headers=auth(owner)).status_code == 200
    assert db["property"].count_documents({}) == 0


def test_admin_approve_and_reject(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    first = make_property(db, owner, status="pending", title="First")
    second = make_property(db, owner, status="pending", title="Second")

    assert client.get("/api/listing/admin/pending", headers=auth(owner)).status_code == 403
    res = client.get("/api/listing/admin/pending", headers=auth(admin))
    assert res.json()["pagination"]["total"] == 2

    res = client.post(f"/api/listing/admin/approve/{first['_id']}", headers=auth(admin))
    assert res.status_code == 200
    stored = db["property"].find_one({"_id": first["_id"]})
    assert stored["basicInfo"]["status"] == stored["verificationStatus"] == "approved"
    assert stored["isVerified"] is True
    assert stored["moderation"]["moderatedBy"] == admin["_id"]

    res = client.post(f"/api/listing/admin/reject/{second['_id']}", json={}, headers=auth(admin))
    assert res.status_code == 400
    res = client.post(f"/api/listing/admin/reject/{second['_id']}",
                      json={"rejectionReason": "Missing photos"}, headers=auth(admin))
    assert res.status_code == 200
    stored = db["property"].find_one({"_id": second["_id"]})
    assert stored["verificationStatus"] == "rejected"
    assert stored["moderation"]["rejectionReason"] == stored["rejectionReason"] == "Missing photos"

    kinds = sorted(n["type"] for n in db["notification"].find({"userEmail": "owner@bashalagbe.com"}))
    assert kinds == ["property_approved", "property_rejected"]


def test_admin_listing_stats(client, db):
    owner = make_user(db, email="owner@bashalagbe.com")
    admin = make_user(db, email="boss@bashalagbe.com", role="admin")
    make_property(db, owner, rentPrice=10000)
    make_legacy_property(db, owner, rent=20000, views=5)
    make_property(db, owner, status="pending")

    stats = client.get("/api/listing/admin/stats", headers=auth(admin)).json()["stats"]
    assert stats["totalProperties"] == 3
    assert stats["approvedProperties"] == 2
    assert stats["pendingProperties"] == 1
    assert stats["averagePrice"] == 15000
    assert stats["totalViews"] == 5
