import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import create_document, get_db, paginate, sanitize, to_obj_id, utcnow
from schemas import Notification
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def create_notification(db: Database, user_email: str, type_: str, title: str, message: str,
                        data: Optional[Dict[str, Any]] = None) -> Optional[Dict]:
    """Store an in-app notification. Failures are logged, never raised."""
    if not user_email:
        return None
    try:
        return create_document(db, "notification", Notification(
            userEmail=user_email.lower(),
            type=type_,
            title=title,
            message=message,
            data={k: str(v) for k, v in (data or {}).items() if v is not None},
        ))
    except (PyMongoError, ValidationError) as e:
        logger.error("Failed to create %s notification for %s: %s", type_, user_email, e)
        return None


@router.get("/my")
def my_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread: bool = False,
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {"userEmail": current_user["email"]}
    if unread:
        q["read"] = False
    total = db["notification"].count_documents(q)
    items = db["notification"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit)
    unread_count = db["notification"].count_documents({"userEmail": current_user["email"], "read": False})
    return {
        "success": True,
        "notifications": [sanitize(n) for n in items],
        "unreadCount": unread_count,
        "pagination": paginate(page, limit, total),
    }


@router.put("/mark-all-read")
def mark_all_read(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    now = utcnow()
    res = db["notification"].update_many(
        {"userEmail": current_user["email"], "read": False},
        {"$set": {"read": True, "readAt": now, "updatedAt": now}},
    )
    return {"success": True, "message": "All notifications marked as read", "modified": res.modified_count}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    now = utcnow()
    q = {"_id": to_obj_id(notification_id), "userEmail": current_user["email"]}
    res = db["notification"].update_one(q, {"$set": {"read": True, "readAt": now, "updatedAt": now}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "notification": sanitize(db["notification"].find_one(q))}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, current_user=Depends(get_current_user),
                        db: Database = Depends(get_db)):
    res = db["notification"].delete_one({"_id": to_obj_id(notification_id), "userEmail": current_user["email"]})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True, "message": "Notification deleted"}
