import os
import tempfile

# Settings are read at import time, so set them before the app is imported
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="basha-uploads-")
os.environ["ADMIN_EMAIL"] = "root@bashalagbe.com"
os.environ["ADMIN_PASSWORD"] = "rootpass123"
os.environ["SMTP_HOST"] = ""

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, get_db
from main import app
from routers.listings import build_property
from schemas import User as UserSchema
from security import hash_password, token_for_user

PASSWORD = "secret123"


@pytest.fixture
def db():
    return mongomock.MongoClient()["basha_lagbe_test"]


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email="tenant@bashalagbe.com", role="user", password=PASSWORD, **extra):
    return create_document(db, "user", UserSchema(
        fullName=extra.pop("fullName", email.split("@")[0].title()),
        email=email,
        password=hash_password(password),
        role=role,
        isEmailVerified=True,
        **extra,
    ))


def auth(user):
    return {"Authorization": f"Bearer {token_for_user(user)}"}


def make_property(db, owner, status="approved", **fields):
    """A listing in both layouts, as the create route stores it."""
    data = {
        "title": "Sunny flat in Dhanmondi",
        "description": "Two bedroom flat near the lake",
        "rentPrice": 15000,
        "bedrooms": 2,
        "bathrooms": 2,
        "propertyType": "apartment",
        "address": "House 12, Road 5",
        "area": "Dhanmondi",
        "district": "Dhaka",
    }
    data.update(fields)
    doc = build_property(data, [], owner).model_dump(exclude_none=True)
    doc["basicInfo"]["status"] = status
    doc["verificationStatus"] = status if status in ("pending", "approved", "rejected") else "pending"
    return create_document(db, "property", doc)


def make_legacy_property(db, owner, title="Old listing", rent=12000, status="approved", **fields):
    """A listing stored only in the flat layout."""
    doc = {
        "title": title,
        "description": "Listed before the nested layout existed",
        "rentPrice": rent,
        "address": "Mirpur 10",
        "bedrooms": 2,
        "bathrooms": 1,
        "apartmentType": "Apartment",
        "isAvailable": True,
        "verificationStatus": status,
        "postedBy": owner["_id"],
        "ownerEmail": owner["email"],
        "views": 0,
    }
    doc.update(fields)
    return create_document(db, "property", doc)


def make_nested_property(db, owner, title="New listing", rent=20000, status="approved", **fields):
    """A listing stored only in the nested layout."""
    doc = {
        "basicInfo": {"title": title, "description": "Nested only", "propertyType": "apartment", "status": status},
        "owner": {"userId": owner["_id"], "email": owner["email"]},
        "location": {"address": {"street": "Road 1", "area": "Gulshan", "district": "Dhaka"}},
        "details": {"bedrooms": 3, "bathrooms": 2, "furnishing": "unfurnished"},
        "pricing": {"rent": {"monthly": rent}},
        "availability": {"isAvailable": True},
        "amenities": {"building": {"elevator": False, "parking": False}, "unit": {"wifi": False}},
        "performance": {"views": 0},
    }
    doc.update(fields)
    return create_document(db, "property", doc)


def latest_code(db, email, type_):
    record = db["emailverification"].find_one({"email": email, "type": type_, "isUsed": False})
    return record["verificationCode"] if record else None
