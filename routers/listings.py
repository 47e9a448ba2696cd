import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple, get_args

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import config
from database import create_document, get_db, paginate, sanitize, to_obj_id, utcnow
from emails import send_moderation_email
from images import save_property_images
from routers.notifications import create_notification
from schemas import (
    Address, Amenities, Area, Availability, BasicInfo, BuildingAmenities, Deposit, Details, Floor, Location,
    Media, Owner, Pricing, Property, PropertyImage, PropertyType, Rent, UnitAmenities,
)
from search import (
    build_listing_filter, build_search_query, listing_sort, owned_by, parse_bool, search_sort, sorted_page_pipeline,
    status_is,
)
from security import get_current_user, get_optional_user, is_admin, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listing", tags=["listing"])

PLACEHOLDER_IMAGE = "/images/placeholder-property.jpg"
PROPERTY_TYPES = get_args(PropertyType)
REQUIRED_FIELDS = ("title", "description", "rentPrice", "bedrooms", "bathrooms", "propertyType")
LOCATION_FIELDS = ("address", "area", "district")


class RejectRequest(BaseModel):
    rejectionReason: Optional[str] = None


# Accessors that read either layout

def property_title(prop: Dict) -> str:
    return (prop.get("basicInfo") or {}).get("title") or prop.get("title") or "Untitled property"


def property_owner_id(prop: Dict) -> Any:
    return (prop.get("owner") or {}).get("userId") or prop.get("postedBy")


def property_owner_email(prop: Dict) -> Optional[str]:
    return (prop.get("owner") or {}).get("email") or prop.get("ownerEmail")


def property_status(prop: Dict) -> Optional[str]:
    return (prop.get("basicInfo") or {}).get("status") or prop.get("verificationStatus")


def is_owner(prop: Dict, user: Optional[Dict]) -> bool:
    return bool(user) and str(property_owner_id(prop)) == str(user["_id"])


def get_property_or_404(db: Database, property_id: str) -> Dict:
    prop = db["property"].find_one({"_id": to_obj_id(property_id)})
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    return prop


# Request parsing

def _to_int(fields: Dict, name: str, default: Optional[int] = None) -> Optional[int]:
    value = fields.get(name)
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} must be a number")


def _flag(fields: Dict, *names: str) -> bool:
    return any(parse_bool(fields.get(n)) for n in names)


async def _read_listing_body(request: Request) -> Tuple[Dict[str, Any], List]:
    """Listing fields and uploaded files from a multipart form or a JSON body."""
    if request.headers.get("content-type", "").startswith("application/json"):
        fields = await request.json()
        if not isinstance(fields, dict):
            raise HTTPException(status_code=400, detail="Invalid request body")
        return fields, []

    form = await request.form()
    fields: Dict[str, Any] = {}
    files = []
    for key, value in form.multi_items():
        if hasattr(value, "filename"):
            if value.filename:
                files.append(value)
        elif key in ("imageUrls", "images"):
            fields.setdefault("imageUrls", []).append(value)
        else:
            fields[key] = value
    return fields, files


def _property_type(fields: Dict) -> str:
    property_type = str(fields["propertyType"]).strip()
    if property_type.lower() not in PROPERTY_TYPES:
        raise HTTPException(status_code=400,
                            detail=f"Invalid property type. Must be one of: {', '.join(PROPERTY_TYPES)}")
    return property_type


def _flatten_location(fields: Dict) -> Dict:
    location = fields.get("location")
    if isinstance(location, str) and location.strip():
        try:
            location = json.loads(location)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid location")
    if isinstance(location, dict):
        for key in ("address", "area", "district", "division", "postalCode", "landmark", "coordinates"):
            if location.get(key) is not None and not fields.get(key):
                fields[key] = location[key]
    return fields


def _image_urls(fields: Dict) -> List[str]:
    urls = fields.get("imageUrls") or []
    if isinstance(urls, str):
        urls = [u.strip() for u in urls.split(",")]
    return [u for u in urls if u]


def _parse_date(value: Any) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid availableFrom date")
    return utcnow()


def build_property(fields: Dict, images: List[Dict[str, str]], user: Dict) -> Property:
    """A new pending listing written in both the nested and the legacy layout."""
    title = str(fields["title"]).strip()
    description = str(fields["description"]).strip()
    rent = _to_int(fields, "rentPrice")
    bedrooms = _to_int(fields, "bedrooms")
    bathrooms = _to_int(fields, "bathrooms")
    square_feet = _to_int(fields, "squareFeet", 800)
    floor = _to_int(fields, "floor", 1)
    total_floors = _to_int(fields, "totalFloors", 5)
    if rent < 0 or bedrooms < 0 or bathrooms < 0:
        raise HTTPException(status_code=400, detail="Rent, bedrooms and bathrooms cannot be negative")

    property_type = _property_type(fields)
    furnished = _flag(fields, "furnished", "isFurnished")
    elevator = _flag(fields, "elevator", "hasLift")
    parking = _flag(fields, "parking", "hasParking")
    wifi = _flag(fields, "wifi", "hasWifi")
    gas = _flag(fields, "gas", "hasGas")
    available_from = _parse_date(fields.get("availableFrom"))
    phone = fields.get("contactPhone") or user.get("mobileNumber")

    if not images:
        images = [{"url": url} for url in _image_urls(fields)] or [{"url": PLACEHOLDER_IMAGE}]

    coordinates = fields.get("coordinates")
    location = Location(address=Address(
        street=str(fields["address"]).strip() or "Not specified",
        area=str(fields["area"]).strip(),
        district=str(fields["district"]).strip(),
        division=fields.get("division") or "Dhaka",
        postalCode=fields.get("postalCode"),
        landmark=fields.get("landmark"),
    ))
    if isinstance(coordinates, list) and len(coordinates) == 2:
        location.coordinates.coordinates = [float(c) for c in coordinates]

    return Property(
        basicInfo=BasicInfo(title=title, description=description, propertyType=property_type.lower()),
        owner=Owner(userId=user["_id"], name=user.get("fullName"), email=user["email"], phone=phone),
        location=location,
        details=Details(
            bedrooms=bedrooms,
            bathrooms=bathrooms,
            area=Area(total=square_feet),
            floor=Floor(current=floor, total=total_floors),
            furnishing="fully-furnished" if furnished else "unfurnished",
        ),
        pricing=Pricing(rent=Rent(monthly=rent), deposit=Deposit(amount=rent * 2, months=2)),
        media=Media(images=[
            PropertyImage(
                url=img["url"],
                thumbnail=img.get("thumbnail"),
                caption=f"{title} - Image {i + 1}",
                category="exterior" if i == 0 else "interior",
                isPrimary=i == 0,
            )
            for i, img in enumerate(images)
        ]),
        amenities=Amenities(
            building=BuildingAmenities(
                elevator=elevator,
                generator=_flag(fields, "generator"),
                security=_flag(fields, "security"),
                parking=parking,
            ),
            unit=UnitAmenities(wifi=wifi, gas=gas),
        ),
        availability=Availability(availableFrom=available_from),
        title=title,
        description=description,
        rentPrice=rent,
        address=str(fields["address"]).strip(),
        images=[img["url"] for img in images],
        apartmentType=property_type,
        totalRooms=bedrooms + bathrooms + 1,
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        washrooms=bathrooms,
        squareFeet=square_feet,
        floor=floor,
        totalFloors=total_floors,
        hasLift=elevator,
        hasParking=parking,
        isFurnished=furnished,
        hasGas=gas,
        hasWifi=wifi,
        availableFrom=available_from,
        ownerName=user.get("fullName"),
        ownerPhone=phone,
        ownerEmail=user["email"],
        postedBy=user["_id"],
    )


# Field name -> document paths that hold it, in both layouts
UPDATE_PATHS = {
    "title": ("basicInfo.title", "title"),
    "description": ("basicInfo.description", "description"),
    "rentPrice": ("pricing.rent.monthly", "rentPrice"),
    "bedrooms": ("details.bedrooms", "bedrooms"),
    "bathrooms": ("details.bathrooms", "bathrooms", "washrooms"),
    "squareFeet": ("details.area.total", "squareFeet"),
    "floor": ("details.floor.current", "floor"),
    "totalFloors": ("details.floor.total", "totalFloors"),
    "address": ("location.address.street", "address"),
    "area": ("location.address.area",),
    "district": ("location.address.district",),
    "elevator": ("amenities.building.elevator", "hasLift"),
    "hasLift": ("amenities.building.elevator", "hasLift"),
    "parking": ("amenities.building.parking", "hasParking"),
    "hasParking": ("amenities.building.parking", "hasParking"),
    "generator": ("amenities.building.generator",),
    "security": ("amenities.building.security",),
    "wifi": ("amenities.unit.wifi", "hasWifi"),
    "hasWifi": ("amenities.unit.wifi", "hasWifi"),
    "gas": ("amenities.unit.gas", "hasGas"),
    "hasGas": ("amenities.unit.gas", "hasGas"),
    "isAvailable": ("availability.isAvailable", "isAvailable"),
    "contactPhone": ("owner.phone", "ownerPhone"),
}
INT_FIELDS = {"rentPrice", "bedrooms", "bathrooms", "squareFeet", "floor", "totalFloors"}
BOOL_FIELDS = {"elevator", "hasLift", "parking", "hasParking", "generator", "security", "wifi", "hasWifi",
               "gas", "hasGas", "isAvailable"}


def build_update(fields: Dict) -> Dict[str, Any]:
    fields = _flatten_location(dict(fields))
    update: Dict[str, Any] = {}
    for name, paths in UPDATE_PATHS.items():
        if name not in fields or fields[name] is None:
            continue
        value = fields[name]
        if name in INT_FIELDS:
            value = _to_int(fields, name)
        elif name in BOOL_FIELDS:
            value = bool(parse_bool(value))
        elif isinstance(value, str):
            value = value.strip()
        for path in paths:
            update[path] = value

    if fields.get("propertyType"):
        property_type = _property_type(fields)
        update["basicInfo.propertyType"] = property_type.lower()
        update["apartmentType"] = property_type
    for name in ("furnished", "isFurnished"):
        if fields.get(name) is not None:
            furnished = bool(parse_bool(fields[name]))
            update["details.furnishing"] = "fully-furnished" if furnished else "unfurnished"
            update["isFurnished"] = furnished
    if fields.get("availableFrom"):
        update["availability.availableFrom"] = update["availableFrom"] = _parse_date(fields["availableFrom"])
    urls = _image_urls(fields)
    if urls:
        update["images"] = urls
        update["media.images"] = [
            PropertyImage(url=u, isPrimary=i == 0, category="exterior" if i == 0 else "interior").model_dump(
                exclude_none=True)
            for i, u in enumerate(urls)
        ]
    return update


def moderate_property(db: Database, property_id: str, approve: bool, admin: Dict,
                      reason: Optional[str] = None) -> Dict:
    """Approve or reject a listing under both layouts, then tell the owner."""
    prop = get_property_or_404(db, property_id)
    status = "approved" if approve else "rejected"
    now = utcnow()
    update: Dict[str, Any] = {
        "$set": {
            "basicInfo.status": status,
            "verificationStatus": status,
            "isVerified": approve,
            "moderation.moderatedBy": admin["_id"],
            "moderation.moderatedAt": now,
            "verifiedBy": admin["_id"],
            "verifiedAt": now,
            "updatedAt": now,
        },
    }
    if approve:
        update["$unset"] = {"moderation.rejectionReason": "", "rejectionReason": ""}
    else:
        update["$set"]["moderation.rejectionReason"] = reason
        update["$set"]["rejectionReason"] = reason

    updated = db["property"].find_one_and_update({"_id": prop["_id"]}, update, return_document=ReturnDocument.AFTER)
    title = property_title(updated)
    logger.info("Property %s %s by %s", prop["_id"], status, admin["email"])

    owner_email = property_owner_email(updated)
    if owner_email:
        send_moderation_email(owner_email, title, approve, reason)
        if approve:
            create_notification(db, owner_email, "property_approved", "Property Approved",
                                f'Your property "{title}" has been approved and is now live',
                                {"propertyId": prop["_id"]})
        else:
            create_notification(db, owner_email, "property_rejected", "Property Rejected",
                                f'Your property "{title}" was rejected: {reason}',
                                {"propertyId": prop["_id"], "reason": reason})
    return updated


def notify_admins(db: Database, type_: str, title: str, message: str, data: Dict) -> None:
    emails = {u["email"] for u in db["user"].find({"role": "admin"}, {"email": 1})}
    if config.ADMIN_EMAIL:
        emails.add(config.ADMIN_EMAIL)
    for email in emails:
        create_notification(db, email, type_, title, message, data)


def _count_views(db: Database, ids: List) -> None:
    if ids:
        db["property"].update_many(
            {"_id": {"$in": ids}},
            {"$inc": {"performance.views": 1, "views": 1}, "$set": {"performance.lastViewedAt": utcnow()}},
        )


def store_listing(db: Database, fields: Dict, images: List[Dict[str, str]], user: Dict) -> Dict:
    prop = create_document(db, "property", build_property(fields, images, user))
    logger.info("Property %s submitted by %s", prop["_id"], user["email"])
    notify_admins(db, "property_submitted", "New Property Submitted",
                  f'Property "{prop["title"]}" has been submitted for review', {"propertyId": prop["_id"]})
    return prop


def apply_listing_update(db: Database, prop: Dict, changes: Dict[str, Any], images: List[Dict[str, str]]) -> Dict:
    update = {"$set": changes}
    if images:
        update["$set"]["images"] = [img["url"] for img in images]
        update["$set"]["media.images"] = [
            PropertyImage(url=img["url"], thumbnail=img["thumbnail"], isPrimary=i == 0).model_dump(exclude_none=True)
            for i, img in enumerate(images)
        ]
    # editing a rejected listing sends it back for review
    if property_status(prop) == "rejected":
        update["$set"].update({"basicInfo.status": "pending", "verificationStatus": "pending", "isVerified": False})
        update["$unset"] = {"moderation.rejectionReason": "", "rejectionReason": ""}
    update["$set"]["updatedAt"] = utcnow()
    return db["property"].find_one_and_update({"_id": prop["_id"]}, update, return_document=ReturnDocument.AFTER)


def _page(db: Database, q: Dict, sort: List, page: int, limit: int) -> Tuple[List[Dict], Dict]:
    total = db["property"].count_documents(q)
    items = list(db["property"].aggregate(sorted_page_pipeline(q, sort, (page - 1) * limit, limit)))
    return items, paginate(page, limit, total)


# Routes

@router.post("/create", status_code=201)
async def create_listing(request: Request, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    fields, files = await _read_listing_body(request)
    fields = _flatten_location(fields)
    if any(fields.get(f) in (None, "") for f in REQUIRED_FIELDS):
        raise HTTPException(status_code=400, detail="Please provide all required fields")
    if any(not str(fields.get(f) or "").strip() for f in LOCATION_FIELDS):
        raise HTTPException(status_code=400, detail="Please provide complete location details")
    _property_type(fields)

    images = await save_property_images(files) if files else []
    prop = await run_in_threadpool(store_listing, db, fields, images, current_user)
    return {"success": True, "message": "Property submitted for admin approval", "property": sanitize(prop)}


@router.get("/get")
@router.get("/all")
def list_properties(
    search: Optional[str] = None,
    area: Optional[str] = None,
    district: Optional[str] = None,
    minPrice: Optional[int] = None,
    maxPrice: Optional[int] = None,
    apartmentType: Optional[str] = None,
    bedrooms: Optional[int] = None,
    bathrooms: Optional[int] = None,
    hasLift: Optional[str] = None,
    hasParking: Optional[str] = None,
    isFurnished: Optional[str] = None,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Database = Depends(get_db),
):
    q = build_listing_filter(
        search=search, area=area, district=district, min_price=minPrice, max_price=maxPrice,
        apartment_type=apartmentType, bedrooms=bedrooms, bathrooms=bathrooms,
        has_lift=parse_bool(hasLift), has_parking=parse_bool(hasParking), is_furnished=parse_bool(isFurnished),
    )
    items, pagination = _page(db, q, listing_sort(sortBy, sortOrder), page, limit)
    _count_views(db, [p["_id"] for p in items])
    return {"success": True, "properties": [sanitize(p) for p in items], "pagination": pagination}


@router.get("/search")
def search_properties(
    q: Optional[str] = None,
    location: Optional[str] = None,
    propertyType: Optional[str] = None,
    minPrice: Optional[int] = None,
    maxPrice: Optional[int] = None,
    bedrooms: Optional[int] = None,
    bathrooms: Optional[int] = None,
    amenities: Optional[str] = None,
    sortBy: str = "relevance",
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    db: Database = Depends(get_db),
):
    query = build_search_query(
        q=q, location=location, property_type=propertyType, min_price=minPrice, max_price=maxPrice,
        bedrooms=bedrooms, bathrooms=bathrooms, amenities=amenities,
    )
    items, pagination = _page(db, query, search_sort(sortBy), page, limit)
    return {"success": True, "properties": [sanitize(p) for p in items], "pagination": pagination}


@router.get("/mine")
def my_listings(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = db["property"].find(owned_by(current_user["_id"])).sort("createdAt", -1)
    return {"success": True, "properties": [sanitize(p) for p in items]}


@router.get("/get/{property_id}")
def get_listing(property_id: str, current_user=Depends(get_optional_user), db: Database = Depends(get_db)):
    prop = get_property_or_404(db, property_id)
    if property_status(prop) != "approved" and not (is_owner(prop, current_user) or (current_user and is_admin(current_user))):
        raise HTTPException(status_code=404, detail="Property not found")
    _count_views(db, [prop["_id"]])
    return {"success": True, "property": sanitize(prop)}


@router.put("/update/{property_id}")
async def update_listing(property_id: str, request: Request, current_user=Depends(get_current_user),
                         db: Database = Depends(get_db)):
    prop = await run_in_threadpool(get_property_or_404, db, property_id)
    if not is_owner(prop, current_user):
        raise HTTPException(status_code=403, detail="You can only update your own properties")

    fields, files = await _read_listing_body(request)
    changes = build_update(fields)
    images = await save_property_images(files) if files else []
    updated = await run_in_threadpool(apply_listing_update, db, prop, changes, images)
    return {"success": True, "message": "Property updated successfully", "property": sanitize(updated)}


@router.delete("/delete/{property_id}")
def delete_listing(property_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    prop = get_property_or_404(db, property_id)
    if not is_owner(prop, current_user):
        raise HTTPException(status_code=403, detail="You can only delete your own properties")
    db["property"].delete_one({"_id": prop["_id"]})
    db["review"].delete_many({"propertyId": prop["_id"]})
    return {"success": True, "message": "Property has been deleted"}


@router.get("/admin/pending")
def pending_listings(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    items, pagination = _page(db, status_is("pending"), [("createdAt", -1)], page, limit)
    return {"success": True, "properties": [sanitize(p) for p in items], "pagination": pagination}


@router.post("/admin/approve/{property_id}")
def approve_listing(property_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    prop = moderate_property(db, property_id, True, admin)
    return {"success": True, "message": "Property approved successfully", "property": sanitize(prop)}


@router.post("/admin/reject/{property_id}")
def reject_listing(property_id: str, payload: RejectRequest, admin=Depends(require_admin),
                   db: Database = Depends(get_db)):
    reason = (payload.rejectionReason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required")
    prop = moderate_property(db, property_id, False, admin, reason)
    return {"success": True, "message": "Property rejected", "property": sanitize(prop)}


def property_stats(db: Database) -> Dict[str, int]:
    total_views = 0
    approved_prices = []
    for p in db["property"].find({}, {"performance": 1, "views": 1, "pricing": 1, "rentPrice": 1,
                                       "basicInfo": 1, "verificationStatus": 1}):
        total_views += (p.get("performance") or {}).get("views") or p.get("views") or 0
        if property_status(p) == "approved" or p.get("verificationStatus") == "approved":
            price = ((p.get("pricing") or {}).get("rent") or {}).get("monthly") or p.get("rentPrice") or 0
            approved_prices.append(price)
    return {
        "totalProperties": db["property"].count_documents({}),
        "approvedProperties": db["property"].count_documents(status_is("approved")),
        "pendingProperties": db["property"].count_documents(status_is("pending")),
        "rejectedProperties": db["property"].count_documents(status_is("rejected")),
        "totalViews": total_views,
        "averagePrice": round(sum(approved_prices) / len(approved_prices)) if approved_prices else 0,
    }


@router.get("/admin/stats")
def listing_stats(admin=Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "stats": property_stats(db)}
