import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, get_db, paginate, sanitize, to_obj_id, utcnow
from emails import send_inquiry_email
from routers.listings import get_property_or_404, property_owner_id, property_title
from routers.notifications import create_notification
from schemas import INQUIRY_PRIORITIES, INQUIRY_STATUSES, Inquiry
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inquiries", tags=["inquiries"])

DUPLICATE_WINDOW = timedelta(hours=24)
HISTORY_LIMIT = 5


class InquiryRequest(BaseModel):
    listingId: Optional[str] = None
    landlordId: Optional[str] = None
    subject: Optional[str] = Field(None, max_length=200)
    message: Optional[str] = Field(None, max_length=2000)
    contactMethod: str = "email"
    phoneNumber: Optional[str] = None
    preferredTime: Optional[str] = None
    moveInDate: Optional[datetime] = None
    budgetRange: Optional[str] = None
    questions: List[str] = []


class ReplyRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=2000)


class StatusRequest(BaseModel):
    status: Optional[str] = None
    priority: Optional[str] = None
    notes: Optional[str] = None


def _get_inquiry_or_404(db: Database, inquiry_id: str) -> Dict:
    inquiry = db["inquiry"].find_one({"_id": to_obj_id(inquiry_id)})
    if not inquiry:
        raise HTTPException(status_code=404, detail="Inquiry not found")
    return inquiry


def _is_party(inquiry: Dict, user: Dict) -> bool:
    return user["_id"] in (inquiry["inquirer"], inquiry["landlord"])


def populate(db: Database, inquiries: List[Dict]) -> List[Dict]:
    user_ids = {i["inquirer"] for i in inquiries} | {i["landlord"] for i in inquiries}
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": list(user_ids)}},
                                                   {"fullName": 1, "email": 1, "avatar": 1})} if user_ids else {}
    listing_ids = list({i["listing"] for i in inquiries})
    listings = {p["_id"]: p for p in db["property"].find({"_id": {"$in": listing_ids}})} if listing_ids else {}

    out = []
    for inquiry in inquiries:
        item = sanitize(inquiry)
        for key in ("inquirer", "landlord"):
            user = users.get(inquiry[key]) or {}
            item[f"{key}Info"] = {"id": str(inquiry[key]), "fullName": user.get("fullName", ""),
                                  "email": user.get("email", ""), "avatar": user.get("avatar", "")}
        prop = listings.get(inquiry["listing"])
        if prop:
            item["listingInfo"] = {
                "id": str(prop["_id"]),
                "title": property_title(prop),
                "address": prop.get("address") or ((prop.get("location") or {}).get("address") or {}).get("street"),
                "images": prop.get("images", []),
                "rentPrice": prop.get("rentPrice"),
            }
        out.append(item)
    return out


@router.post("/", status_code=201)
@router.post("/submit", status_code=201)
def create_inquiry(payload: InquiryRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not payload.listingId or not payload.subject or not payload.message:
        raise HTTPException(status_code=400, detail="Missing required fields")
    prop = get_property_or_404(db, payload.listingId)

    landlord_id = property_owner_id(prop)
    if payload.landlordId and (not landlord_id or to_obj_id(payload.landlordId) != to_obj_id(landlord_id)):
        raise HTTPException(status_code=400, detail="Landlord does not match the property owner")
    landlord = db["user"].find_one({"_id": to_obj_id(landlord_id)}) if landlord_id else None
    if not landlord:
        raise HTTPException(status_code=404, detail="Landlord not found")
    if landlord["_id"] == current_user["_id"]:
        raise HTTPException(status_code=400, detail="You cannot send an inquiry about your own property")

    recent = db["inquiry"].find_one({
        "listing": prop["_id"],
        "inquirer": current_user["_id"],
        "createdAt": {"$gte": utcnow() - DUPLICATE_WINDOW},
    })
    if recent:
        raise HTTPException(
            status_code=429,
            detail="You have already sent an inquiry for this property recently. Please wait before sending another.",
        )

    inquiry = create_document(db, "inquiry", Inquiry(
        listing=prop["_id"],
        inquirer=current_user["_id"],
        landlord=landlord["_id"],
        subject=payload.subject.strip(),
        message=payload.message.strip(),
        contactMethod=payload.contactMethod,
        phoneNumber=payload.phoneNumber,
        preferredTime=payload.preferredTime,
        moveInDate=payload.moveInDate,
        budgetRange=payload.budgetRange,
        questions=payload.questions,
        lastActivity=utcnow(),
    ))
    db["property"].update_one({"_id": prop["_id"]}, {"$inc": {"performance.inquiries": 1}})

    title = property_title(prop)
    create_notification(db, landlord["email"], "inquiry_received", "New Property Inquiry",
                        f'{current_user.get("fullName", "A tenant")} sent an inquiry about "{title}"',
                        {"inquiryId": inquiry["_id"], "propertyId": prop["_id"]})
    send_inquiry_email(landlord["email"], current_user.get("fullName", ""), title, inquiry["message"])
    return {"success": True, "message": "Inquiry sent successfully", "inquiry": populate(db, [inquiry])[0]}


@router.get("/landlord")
@router.get("/received")
def landlord_inquiries(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {"landlord": current_user["_id"], "archived": False}
    if status and status != "all":
        q["status"] = status
    if priority and priority != "all":
        q["priority"] = priority
    total = db["inquiry"].count_documents(q)
    items = list(db["inquiry"].find(q).sort("lastActivity", -1).skip((page - 1) * limit).limit(limit))

    stats = {s: db["inquiry"].count_documents({"landlord": current_user["_id"], "status": s}) for s in INQUIRY_STATUSES}
    stats["total"] = db["inquiry"].count_documents({"landlord": current_user["_id"]})
    return {"success": True, "inquiries": populate(db, items), "stats": stats, "pagination": paginate(page, limit, total)}


@router.get("/my")
@router.get("/tenant")
def tenant_inquiries(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    q = {"inquirer": current_user["_id"]}
    total = db["inquiry"].count_documents(q)
    items = list(db["inquiry"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return {"success": True, "inquiries": populate(db, items), "pagination": paginate(page, limit, total)}


@router.get("/property/{property_id}/history")
@router.get("/contact/{property_id}")
def contact_history(property_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["inquiry"].find({"listing": to_obj_id(property_id), "inquirer": current_user["_id"]})
                 .sort("createdAt", -1).limit(HISTORY_LIMIT))
    return {"success": True, "inquiries": populate(db, items)}


@router.get("/{inquiry_id}")
def get_inquiry(inquiry_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    inquiry = _get_inquiry_or_404(db, inquiry_id)
    if not _is_party(inquiry, current_user):
        raise HTTPException(status_code=403, detail="You do not have permission to view this inquiry")

    if inquiry["landlord"] == current_user["_id"] and inquiry.get("status") == "pending":
        now = utcnow()
        inquiry = db["inquiry"].find_one_and_update(
            {"_id": inquiry["_id"]},
            {"$set": {"status": "read", "readAt": now, "updatedAt": now}},
            return_document=ReturnDocument.AFTER,
        )
    return {"success": True, "inquiry": populate(db, [inquiry])[0]}


@router.post("/{inquiry_id}/reply")
@router.post("/{inquiry_id}/respond")
def reply_to_inquiry(inquiry_id: str, payload: ReplyRequest, current_user=Depends(get_current_user),
                     db: Database = Depends(get_db)):
    if not payload.message or not payload.message.strip():
        raise HTTPException(status_code=400, detail="Reply message is required")
    inquiry = _get_inquiry_or_404(db, inquiry_id)
    if not _is_party(inquiry, current_user):
        raise HTTPException(status_code=403, detail="You do not have permission to reply to this inquiry")

    now = utcnow()
    from_landlord = inquiry["landlord"] == current_user["_id"]
    update: Dict[str, Any] = {
        "$push": {"replies": {"sender": current_user["_id"], "message": payload.message.strip(), "createdAt": now}},
        "$set": {"lastActivity": now, "updatedAt": now},
    }
    if from_landlord:
        update["$set"]["status"] = "replied"
    updated = db["inquiry"].find_one_and_update({"_id": inquiry["_id"]}, update, return_document=ReturnDocument.AFTER)

    other = db["user"].find_one({"_id": inquiry["inquirer"] if from_landlord else inquiry["landlord"]})
    if other:
        prop = db["property"].find_one({"_id": inquiry["listing"]}) or {}
        title = property_title(prop)
        if from_landlord:
            create_notification(db, other["email"], "inquiry_responded", "Inquiry Response",
                                f'The landlord replied to your inquiry about "{title}"', {"inquiryId": inquiry["_id"]})
        else:
            create_notification(db, other["email"], "inquiry_received", "New Inquiry Reply",
                                f'{current_user.get("fullName", "A tenant")} replied about "{title}"',
                                {"inquiryId": inquiry["_id"]})
        send_inquiry_email(other["email"], current_user.get("fullName", ""), title, payload.message.strip(), reply=True)
    return {"success": True, "message": "Reply sent successfully", "inquiry": populate(db, [updated])[0]}


@router.put("/{inquiry_id}/status")
def update_inquiry_status(inquiry_id: str, payload: StatusRequest, current_user=Depends(get_current_user),
                          db: Database = Depends(get_db)):
    inquiry = _get_inquiry_or_404(db, inquiry_id)
    if inquiry["landlord"] != current_user["_id"]:
        raise HTTPException(status_code=403, detail="Only the landlord can update inquiry status")

    now = utcnow()
    update: Dict[str, Any] = {"$set": {"lastActivity": now, "updatedAt": now}}
    if payload.status:
        if payload.status not in INQUIRY_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        update["$set"]["status"] = payload.status
        if payload.status == "read" and not inquiry.get("readAt"):
            update["$set"]["readAt"] = now
    if payload.priority:
        if payload.priority not in INQUIRY_PRIORITIES:
            raise HTTPException(status_code=400, detail="Invalid priority")
        update["$set"]["priority"] = payload.priority
    if payload.notes and payload.notes.strip():
        update["$push"] = {"notes": {"author": current_user["_id"], "content": payload.notes.strip(),
                                     "private": True, "createdAt": now}}

    updated = db["inquiry"].find_one_and_update({"_id": inquiry["_id"]}, update, return_document=ReturnDocument.AFTER)
    return {"success": True, "message": "Inquiry updated successfully", "inquiry": populate(db, [updated])[0]}


@router.put("/{inquiry_id}/archive")
def archive_inquiry(inquiry_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    inquiry = _get_inquiry_or_404(db, inquiry_id)
    if not _is_party(inquiry, current_user):
        raise HTTPException(status_code=403, detail="You do not have permission to archive this inquiry")
    now = utcnow()
    db["inquiry"].update_one({"_id": inquiry["_id"]}, {"$set": {
        "archived": True, "archivedAt": now, "status": "archived", "updatedAt": now,
    }})
    return {"success": True, "message": "Inquiry archived successfully"}
