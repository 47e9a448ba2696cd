import json
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

from database import create_document, get_db, sanitize, to_obj_id, utcnow
from images import save_document
from routers.listings import get_property_or_404, property_owner_email, property_title
from routers.notifications import create_notification
from schemas import APPLICATION_STATUSES, Application
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/applications", tags=["applications"])

WITHDRAWABLE = ("pending", "under_review")


class StatusRequest(BaseModel):
    status: Optional[str] = None
    notes: Optional[str] = None


def _get_application_or_404(db: Database, application_id: str) -> Dict:
    application = db["application"].find_one({"_id": to_obj_id(application_id)})
    if not application:
        raise HTTPException(status_code=404, detail="Application not found")
    return application


def with_property(db: Database, applications: List[Dict]) -> List[Dict]:
    ids = list({a["propertyId"] for a in applications})
    props = {p["_id"]: p for p in db["property"].find({"_id": {"$in": ids}})} if ids else {}
    out = []
    for a in applications:
        item = sanitize(a)
        prop = props.get(a["propertyId"])
        if prop:
            item["property"] = {
                "id": str(prop["_id"]),
                "title": property_title(prop),
                "address": prop.get("address"),
                "rentPrice": prop.get("rentPrice"),
                "images": prop.get("images", []),
            }
        out.append(item)
    return out


def store_application(db: Database, prop: Dict, fields: Dict, documents: Dict[str, str], applicant: Dict,
                      landlord_email: str) -> Dict:
    application = create_document(db, "application", Application(
        propertyId=prop["_id"],
        applicantEmail=applicant["email"],
        landlordEmail=landlord_email.lower(),
        documents=documents,
        **fields,
    ))
    logger.info("Application %s submitted by %s", application["_id"], applicant["email"])

    create_notification(db, application["landlordEmail"], "application_received", "New Rental Application",
                        f"You have received a new application for {property_title(prop)}",
                        {"applicationId": application["_id"], "propertyId": prop["_id"]})
    return with_property(db, [application])[0]


@router.post("/submit", status_code=201)
async def submit_application(
    applicationData: str = Form(...),
    idCard: Optional[UploadFile] = File(None),
    incomeProof: Optional[UploadFile] = File(None),
    bankStatement: Optional[UploadFile] = File(None),
    employmentLetter: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    try:
        data = json.loads(applicationData)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid application data")
    if not isinstance(data, dict) or not data.get("propertyId") or not data.get("personalInfo"):
        raise HTTPException(status_code=400, detail="Property and personal information are required")

    prop = await run_in_threadpool(get_property_or_404, db, data["propertyId"])
    landlord_email = property_owner_email(prop) or data.get("landlordEmail")
    if not landlord_email:
        raise HTTPException(status_code=400, detail="Landlord email is required")
    if landlord_email.lower() == current_user["email"]:
        raise HTTPException(status_code=400, detail="You cannot apply to your own property")

    documents = {}
    for name, upload in (("idCard", idCard), ("incomeProof", incomeProof),
                         ("bankStatement", bankStatement), ("employmentLetter", employmentLetter)):
        if upload is not None and upload.filename:
            documents[name] = await save_document(upload)

    fields = {k: v for k, v in data.items()
              if k in ("personalInfo", "rentalHistory", "references", "preferences", "coverLetter")}
    application = await run_in_threadpool(store_application, db, prop, fields, documents, current_user, landlord_email)
    return {"success": True, "message": "Application submitted successfully", "application": application}


@router.get("/my")
def my_applications(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["application"].find({"applicantEmail": current_user["email"]}).sort("createdAt", -1))
    return {"success": True, "applications": with_property(db, items)}


@router.get("/received")
def received_applications(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["application"].find({"landlordEmail": current_user["email"]}).sort("createdAt", -1))
    return {"success": True, "applications": with_property(db, items)}


@router.put("/{application_id}/status")
def update_status(application_id: str, payload: StatusRequest, current_user=Depends(get_current_user),
                  db: Database = Depends(get_db)):
    if payload.status not in APPLICATION_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")
    application = _get_application_or_404(db, application_id)
    if application["landlordEmail"] != current_user["email"]:
        raise HTTPException(status_code=403, detail="Only the landlord can update this application")

    now = utcnow()
    updated = db["application"].find_one_and_update(
        {"_id": application["_id"]},
        {"$set": {
            "status": payload.status,
            "landlordNotes": payload.notes,
            "reviewedAt": now,
            "reviewedBy": current_user["email"],
            "updatedAt": now,
        }},
        return_document=ReturnDocument.AFTER,
    )

    prop = db["property"].find_one({"_id": application["propertyId"]}) or {}
    label = payload.status.replace("_", " ")
    create_notification(db, application["applicantEmail"], "application_status",
                        f"Application {label.capitalize()}",
                        f"Your application for {property_title(prop)} has been {label}",
                        {"applicationId": application["_id"], "status": payload.status})
    return {"success": True, "application": with_property(db, [updated])[0]}


@router.put("/{application_id}/withdraw")
def withdraw_application(application_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    application = _get_application_or_404(db, application_id)
    if application["applicantEmail"] != current_user["email"]:
        raise HTTPException(status_code=403, detail="You can only withdraw your own applications")
    if application.get("status") not in WITHDRAWABLE:
        raise HTTPException(status_code=400, detail="Only pending applications can be withdrawn")
    db["application"].update_one({"_id": application["_id"]},
                                 {"$set": {"status": "withdrawn", "updatedAt": utcnow()}})
    return {"success": True, "message": "Application withdrawn"}
