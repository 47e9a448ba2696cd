from fastapi import APIRouter, Depends, HTTPException, Query
from pymongo.database import Database

from database import get_db, paginate, sanitize, to_obj_id, utcnow
from search import approved
from security import get_current_user

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


@router.post("/add/{property_id}")
def add_favorite(property_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pid = to_obj_id(property_id)
    if not db["property"].find_one({"_id": pid}):
        raise HTTPException(status_code=404, detail="Property not found")
    if pid in current_user.get("favorites", []):
        raise HTTPException(status_code=400, detail="Property already in favorites")

    db["user"].update_one({"_id": current_user["_id"]}, {"$addToSet": {"favorites": pid}, "$set": {"updatedAt": utcnow()}})
    db["property"].update_one({"_id": pid}, {"$inc": {"performance.favorites": 1}})
    favorites = current_user.get("favorites", []) + [pid]
    return {"success": True, "message": "Property added to favorites", "favorites": sanitize(favorites)}


@router.delete("/remove/{property_id}")
def remove_favorite(property_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    pid = to_obj_id(property_id)
    if pid not in current_user.get("favorites", []):
        raise HTTPException(status_code=400, detail="Property not in favorites")

    db["user"].update_one({"_id": current_user["_id"]}, {"$pull": {"favorites": pid}, "$set": {"updatedAt": utcnow()}})
    db["property"].update_one({"_id": pid, "performance.favorites": {"$gt": 0}}, {"$inc": {"performance.favorites": -1}})
    favorites = [f for f in current_user.get("favorites", []) if f != pid]
    return {"success": True, "message": "Property removed from favorites", "favorites": sanitize(favorites)}


@router.get("/")
def list_favorites(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    ids = current_user.get("favorites", [])
    q = {"$and": [{"_id": {"$in": ids}}, approved()]}
    total = db["property"].count_documents(q) if ids else 0
    items = db["property"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit) if ids else []
    return {
        "success": True,
        "favorites": [sanitize(p) for p in items],
        "totalFavorites": total,
        "pagination": paginate(page, limit, total),
    }


@router.get("/check/{property_id}")
def check_favorite(property_id: str, current_user=Depends(get_current_user)):
    return {"success": True, "isFavorite": to_obj_id(property_id) in current_user.get("favorites", [])}
