import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from database import get_db, to_obj_id, utcnow
from emails import send_password_changed_email
from images import save_avatar
from search import approved, owned_by
from security import (
    clear_auth_cookie, get_current_user, hash_password, public_user, validate_email, validate_mobile,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


class UpdateProfileRequest(BaseModel):
    fullName: Optional[str] = Field(None, min_length=1, max_length=100)
    mobileNumber: Optional[str] = None
    address: Optional[str] = Field(None, max_length=200)
    age: Optional[int] = Field(None, ge=18, le=100)


class ChangeEmailRequest(BaseModel):
    newEmail: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword: Optional[str] = None
    confirmPassword: Optional[str] = None


class TwoFactorRequest(BaseModel):
    enabled: bool


def _own_account(current_user: Dict, user_id: str, action: str) -> None:
    if str(current_user["_id"]) != user_id:
        raise HTTPException(status_code=401, detail=f"You can only {action} your own account")


def user_stats(db: Database, user: Dict) -> Dict[str, int]:
    mine = owned_by(user["_id"])
    return {
        "totalListings": db["property"].count_documents(mine),
        "approvedListings": db["property"].count_documents({"$and": [mine, approved()]}),
        "totalReviews": db["review"].count_documents({"reviewer": user["_id"]}),
        "totalApplications": db["application"].count_documents({"applicantEmail": user["email"]}),
    }


def delete_user_cascade(db: Database, user: Dict) -> None:
    """Remove a user, then their listings and reviews. The cascade is best-effort."""
    db["user"].delete_one({"_id": user["_id"]})
    try:
        props = db["property"].delete_many(owned_by(user["_id"]))
        reviews = db["review"].delete_many({"reviewer": user["_id"]})
        logger.info("Deleted user %s with %d properties and %d reviews",
                    user["email"], props.deleted_count, reviews.deleted_count)
    except PyMongoError as e:
        logger.error("Cascade delete for user %s failed: %s", user["email"], e)


# collection -> fields that key documents by a user's email
EMAIL_KEYED_FIELDS = {
    "property": ("owner.email", "ownerEmail"),
    "application": ("applicantEmail", "landlordEmail"),
    "notification": ("userEmail",),
}


def rename_user_email(db: Database, old_email: str, new_email: str) -> None:
    """Move listings, applications and notifications over to the new address."""
    for collection, fields in EMAIL_KEYED_FIELDS.items():
        for field in fields:
            res = db[collection].update_many({field: old_email}, {"$set": {field: new_email}})
            if res.modified_count:
                logger.info("Moved %d %s.%s from %s to %s", res.modified_count, collection, field,
                            old_email, new_email)


@router.get("/profile/{user_id}")
def get_profile(user_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "user": public_user(user), "stats": user_stats(db, user)}


@router.post("/update/{user_id}")
def update_profile(user_id: str, payload: UpdateProfileRequest, current_user=Depends(get_current_user),
                   db: Database = Depends(get_db)):
    _own_account(current_user, user_id, "update")
    update = payload.model_dump(exclude_none=True)
    changes: Dict[str, Dict] = {}
    if "mobileNumber" in update:
        mobile = validate_mobile(update.pop("mobileNumber"))
        if mobile is None:
            # absent rather than null, so the sparse unique index skips it
            changes["$unset"] = {"mobileNumber": ""}
        elif db["user"].find_one({"mobileNumber": mobile, "_id": {"$ne": current_user["_id"]}}):
            raise HTTPException(status_code=409, detail="Mobile number already in use")
        else:
            update["mobileNumber"] = mobile
    if "fullName" in update:
        update["fullName"] = update["fullName"].strip()
    update["updatedAt"] = utcnow()

    changes["$set"] = update
    db["user"].update_one({"_id": current_user["_id"]}, changes)
    user = db["user"].find_one({"_id": current_user["_id"]})
    return {"success": True, "message": "Profile updated successfully", "user": public_user(user)}


@router.post("/upload-avatar")
async def upload_avatar(avatar: Optional[UploadFile] = File(None), current_user=Depends(get_current_user),
                        db: Database = Depends(get_db)):
    if avatar is None:
        raise HTTPException(status_code=400, detail="No image file uploaded")
    url = await save_avatar(avatar)
    await run_in_threadpool(db["user"].update_one, {"_id": current_user["_id"]},
                            {"$set": {"avatar": url, "updatedAt": utcnow()}})
    return {"success": True, "message": "Avatar uploaded successfully", "avatar": url}


@router.post("/change-email/{user_id}")
def change_email(user_id: str, payload: ChangeEmailRequest,
                 current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    _own_account(current_user, user_id, "update the email of")
    if not payload.newEmail or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")
    new_email = validate_email(payload.newEmail)
    if db["user"].find_one({"email": new_email, "_id": {"$ne": current_user["_id"]}}):
        raise HTTPException(status_code=409, detail="Email already in use")
    if not verify_password(payload.password, current_user.get("password", "")):
        raise HTTPException(status_code=401, detail="Incorrect password")

    db["user"].update_one({"_id": current_user["_id"]}, {"$set": {"email": new_email, "updatedAt": utcnow()}})
    rename_user_email(db, current_user["email"], new_email)
    user = db["user"].find_one({"_id": current_user["_id"]})
    return {"success": True, "message": "Email updated successfully", "user": public_user(user)}


@router.post("/change-password/{user_id}")
def change_password(user_id: str, payload: ChangePasswordRequest, current_user=Depends(get_current_user),
                    db: Database = Depends(get_db)):
    _own_account(current_user, user_id, "change the password of")
    if not payload.currentPassword or not payload.newPassword or not payload.confirmPassword:
        raise HTTPException(status_code=400, detail="All fields are required")
    if payload.newPassword != payload.confirmPassword:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    new_hash = hash_password(payload.newPassword)
    if not verify_password(payload.currentPassword, current_user.get("password", "")):
        raise HTTPException(status_code=401, detail="Current password is incorrect")

    db["user"].update_one({"_id": current_user["_id"]}, {"$set": {"password": new_hash, "updatedAt": utcnow()}})
    send_password_changed_email(current_user["email"], current_user.get("fullName", ""))
    return {"success": True, "message": "Password changed successfully"}


@router.post("/two-factor")
def toggle_two_factor(payload: TwoFactorRequest, current_user=Depends(get_current_user),
                      db: Database = Depends(get_db)):
    db["user"].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"twoFactorEnabled": payload.enabled, "updatedAt": utcnow()}},
    )
    state = "enabled" if payload.enabled else "disabled"
    return {"success": True, "message": f"Two-factor authentication {state}", "twoFactorEnabled": payload.enabled}


@router.delete("/delete/{user_id}")
def delete_account(user_id: str, response: Response, current_user=Depends(get_current_user),
                   db: Database = Depends(get_db)):
    _own_account(current_user, user_id, "delete")
    delete_user_cascade(db, current_user)
    clear_auth_cookie(response)
    return {"success": True, "message": "User has been deleted"}
