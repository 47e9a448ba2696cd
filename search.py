"""
MongoDB filter building for property listings.

Listings exist in two overlapping layouts: the nested one (``basicInfo``,
``pricing.rent.monthly``, ``details.bedrooms`` ...) and the legacy flat one
(``title``, ``rentPrice``, ``bedrooms`` ...). Every criterion is therefore an
``$or`` over both spellings of the field, and criteria are combined under a
single ``$and`` so that no clause replaces another.
"""

import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId

# nested field -> legacy field
STATUS = ("basicInfo.status", "verificationStatus")
AVAILABLE = ("availability.isAvailable", "isAvailable")
PRICE = ("pricing.rent.monthly", "rentPrice")
BEDROOMS = ("details.bedrooms", "bedrooms")
BATHROOMS = ("details.bathrooms", "bathrooms")
PROPERTY_TYPE = ("basicInfo.propertyType", "apartmentType")
TITLE = ("basicInfo.title", "title")
DESCRIPTION = ("basicInfo.description", "description")
AREA = ("location.address.area", "location.area")
DISTRICT = ("location.address.district", "location.district")
ELEVATOR = ("amenities.building.elevator", "hasLift")
PARKING = ("amenities.building.parking", "hasParking")
WIFI = ("amenities.unit.wifi", "hasWifi")
VIEWS = ("performance.views", "views")

AMENITY_FIELDS = {
    "lift": ELEVATOR,
    "elevator": ELEVATOR,
    "parking": PARKING,
    "wifi": WIFI,
}

# Computed sort keys: the nested value, else the legacy one
SORT_KEYS = {
    "sortPrice": {"$ifNull": ["$" + PRICE[0], "$" + PRICE[1]]},
    "sortViews": {"$ifNull": ["$" + VIEWS[0], "$" + VIEWS[1]]},
    "sortTitle": {"$ifNull": ["$" + TITLE[0], "$" + TITLE[1]]},
}

LISTING_SORT_FIELDS = {
    "createdAt": "createdAt",
    "updatedAt": "updatedAt",
    "price": "sortPrice",
    "rentPrice": "sortPrice",
    "views": "sortViews",
    "title": "sortTitle",
}

SEARCH_SORTS = {
    "price-low": [("sortPrice", 1)],
    "price-high": [("sortPrice", -1)],
    "newest": [("createdAt", -1)],
    "oldest": [("createdAt", 1)],
    "popular": [("sortViews", -1)],
}


def either(fields: Tuple[str, str], condition: Any) -> Dict:
    nested, legacy = fields
    return {"$or": [{nested: condition}, {legacy: condition}]}


def icontains(term: str) -> Dict:
    return {"$regex": re.escape(term.strip()), "$options": "i"}


def parse_bool(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def price_range(min_price: Optional[int], max_price: Optional[int]) -> Optional[Dict]:
    cond = {}
    if min_price is not None:
        cond["$gte"] = int(min_price)
    if max_price is not None:
        cond["$lte"] = int(max_price)
    return cond or None


def status_is(status: str) -> Dict:
    return either(STATUS, status)


def approved() -> Dict:
    return status_is("approved")


def available() -> Dict:
    return either(AVAILABLE, True)


def owned_by(user_id: ObjectId) -> Dict:
    return {"$or": [{"owner.userId": user_id}, {"postedBy": user_id}]}


def furnished_clause(furnished: bool) -> Dict:
    if furnished:
        nested = {"details.furnishing": {"$exists": True, "$ne": "unfurnished"}}
    else:
        nested = {"details.furnishing": "unfurnished"}
    return {"$or": [nested, {"isFurnished": furnished}]}


def text_clause(term: str, fields: List[str]) -> Dict:
    return {"$or": [{f: icontains(term)} for f in fields]}


def build_listing_filter(search: Optional[str] = None, area: Optional[str] = None,
                         district: Optional[str] = None, min_price: Optional[int] = None,
                         max_price: Optional[int] = None, apartment_type: Optional[str] = None,
                         bedrooms: Optional[int] = None, bathrooms: Optional[int] = None,
                         has_lift: Optional[bool] = None, has_parking: Optional[bool] = None,
                         is_furnished: Optional[bool] = None) -> Dict:
    """Filter for the public browse page: approved, available, exact room counts."""
    clauses: List[Dict] = [approved(), available()]

    if search:
        clauses.append(text_clause(search, [*TITLE, *DESCRIPTION]))
    if area:
        clauses.append(either(AREA, icontains(area)))
    if district:
        clauses.append(either(DISTRICT, icontains(district)))

    price = price_range(min_price, max_price)
    if price:
        clauses.append(either(PRICE, price))

    if apartment_type and apartment_type != "all":
        clauses.append({"$or": [
            {PROPERTY_TYPE[0]: apartment_type.lower()},
            {PROPERTY_TYPE[1]: icontains(apartment_type)},
        ]})

    if bedrooms is not None:
        clauses.append(either(BEDROOMS, int(bedrooms)))
    if bathrooms is not None:
        clauses.append(either(BATHROOMS, int(bathrooms)))

    if has_lift is not None:
        clauses.append(either(ELEVATOR, has_lift))
    if has_parking is not None:
        clauses.append(either(PARKING, has_parking))
    if is_furnished is not None:
        clauses.append(furnished_clause(is_furnished))

    return {"$and": clauses}


def build_search_query(q: Optional[str] = None, location: Optional[str] = None,
                       property_type: Optional[str] = None, min_price: Optional[int] = None,
                       max_price: Optional[int] = None, bedrooms: Optional[int] = None,
                       bathrooms: Optional[int] = None, amenities: Optional[str] = None) -> Dict:
    """Filter for advanced search: free text, minimum room counts, any-of amenities."""
    clauses: List[Dict] = [approved(), available()]

    if q:
        clauses.append(text_clause(q, [*TITLE, *DESCRIPTION, AREA[0], DISTRICT[0]]))
    if location:
        clauses.append(text_clause(location, [AREA[0], DISTRICT[0], "address"]))

    if property_type and property_type != "all":
        clauses.append({"$or": [
            {PROPERTY_TYPE[0]: property_type.lower()},
            {PROPERTY_TYPE[1]: icontains(property_type)},
        ]})

    price = price_range(min_price, max_price)
    if price:
        clauses.append(either(PRICE, price))

    if bedrooms is not None:
        clauses.append(either(BEDROOMS, {"$gte": int(bedrooms)}))
    if bathrooms is not None:
        clauses.append(either(BATHROOMS, {"$gte": int(bathrooms)}))

    if amenities:
        any_of: List[Dict] = []
        for name in amenities.split(","):
            name = name.strip().lower()
            if name == "furnished":
                any_of.extend(furnished_clause(True)["$or"])
            elif name in AMENITY_FIELDS:
                any_of.extend(either(AMENITY_FIELDS[name], True)["$or"])
        if any_of:
            clauses.append({"$or": any_of})

    return {"$and": clauses}


def listing_sort(sort_by: str = "createdAt", sort_order: str = "desc") -> List[Tuple[str, int]]:
    direction = 1 if sort_order == "asc" else -1
    return [(LISTING_SORT_FIELDS.get(sort_by, "createdAt"), direction)]


def search_sort(sort_by: str = "relevance") -> List[Tuple[str, int]]:
    return SEARCH_SORTS.get(sort_by, SEARCH_SORTS["newest"])


def sorted_page_pipeline(q: Dict, sort: List[Tuple[str, int]], skip: int, limit: int) -> List[Dict]:
    """Filter, sort and page. Sort keys spanning both layouts are resolved per document first."""
    computed = {key: SORT_KEYS[key] for key, _ in sort if key in SORT_KEYS}
    pipeline: List[Dict] = [{"$match": q}]
    if computed:
        pipeline.append({"$addFields": computed})
    pipeline += [{"$sort": dict(sort)}, {"$skip": skip}, {"$limit": limit}]
    if computed:
        pipeline.append({"$project": {key: 0 for key in computed}})
    return pipeline
