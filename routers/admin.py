import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo.database import Database

from database import get_db, paginate, sanitize, to_obj_id, utcnow
from routers.listings import moderate_property, property_stats
from routers.users import delete_user_cascade
from search import icontains, status_is
from security import public_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class UserStatusRequest(BaseModel):
    isActive: bool


class ModerateRequest(BaseModel):
    action: Optional[str] = None
    rejectionReason: Optional[str] = None


@router.get("/stats")
def admin_stats(admin=Depends(require_admin), db: Database = Depends(get_db)):
    recent = db["user"].find({}).sort("createdAt", -1).limit(5)
    return {
        "success": True,
        "stats": {
            "totalUsers": db["user"].count_documents({}),
            "activeUsers": db["user"].count_documents({"isActive": {"$ne": False}}),
            "admins": db["user"].count_documents({"role": "admin"}),
            "totalReviews": db["review"].count_documents({}),
            "totalInquiries": db["inquiry"].count_documents({}),
            "totalApplications": db["application"].count_documents({}),
            **property_stats(db),
        },
        "recentUsers": [public_user(u) for u in recent],
    }


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if search:
        q["$or"] = [{"fullName": icontains(search)}, {"email": icontains(search)}]
    if role:
        q["role"] = role
    total = db["user"].count_documents(q)
    users = db["user"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    return {"success": True, "users": [public_user(u) for u in users], "pagination": paginate(page, limit, total)}


@router.get("/properties")
def list_properties(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    admin=Depends(require_admin),
    db: Database = Depends(get_db),
):
    q = status_is(status) if status and status != "all" else {}
    total = db["property"].count_documents(q)
    items = db["property"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    return {"success": True, "properties": [sanitize(p) for p in items], "pagination": paginate(page, limit, total)}


@router.get("/properties/pending")
def pending_properties(admin=Depends(require_admin), db: Database = Depends(get_db)):
    items = db["property"].find(status_is("pending")).sort("createdAt", -1)
    return {"success": True, "properties": [sanitize(p) for p in items]}


@router.patch("/users/{user_id}/status")
def set_user_status(user_id: str, payload: UserStatusRequest, admin=Depends(require_admin),
                    db: Database = Depends(get_db)):
    uid = to_obj_id(user_id)
    if uid == admin["_id"] and not payload.isActive:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    res = db["user"].update_one({"_id": uid}, {"$set": {"isActive": payload.isActive, "updatedAt": utcnow()}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("User %s %s by %s", user_id, "activated" if payload.isActive else "deactivated", admin["email"])
    return {"success": True, "message": f"User {'activated' if payload.isActive else 'deactivated'} successfully",
            "user": public_user(db["user"].find_one({"_id": uid}))}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin), db: Database = Depends(get_db)):
    uid = to_obj_id(user_id)
    if uid == admin["_id"]:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    user = db["user"].find_one({"_id": uid})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    delete_user_cascade(db, user)
    return {"success": True, "message": "User and related data deleted successfully"}


@router.post("/properties/{property_id}/moderate")
def moderate(property_id: str, payload: ModerateRequest, admin=Depends(require_admin), db: Database = Depends(get_db)):
    if payload.action not in ("approve", "reject"):
        raise HTTPException(status_code=400, detail='Invalid action. Must be "approve" or "reject"')
    reason = (payload.rejectionReason or "").strip()
    if payload.action == "reject" and not reason:
        raise HTTPException(status_code=400, detail="Rejection reason is required when rejecting a property")
    prop = moderate_property(db, property_id, payload.action == "approve", admin, reason or None)
    return {"success": True, "message": f"Property {payload.action}d successfully", "property": sanitize(prop)}
