import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, paginate, sanitize, to_obj_id, utcnow
from routers.listings import get_property_or_404
from schemas import Review
from security import get_current_user, is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/review", tags=["review"])

MAX_COMMENT_LENGTH = 1000


class CreateReviewRequest(BaseModel):
    propertyId: Optional[str] = None
    rating: Optional[int] = None
    comment: Optional[str] = None


class UpdateReviewRequest(BaseModel):
    rating: Optional[int] = None
    comment: Optional[str] = None


def _check_rating(rating: int) -> None:
    if not 1 <= rating <= 5:
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")


def _check_comment(comment: str) -> str:
    comment = comment.strip()
    if not comment:
        raise HTTPException(status_code=400, detail="Comment cannot be empty")
    if len(comment) > MAX_COMMENT_LENGTH:
        raise HTTPException(status_code=400, detail=f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")
    return comment


def _get_review_or_404(db: Database, review_id: str) -> Dict:
    review = db["review"].find_one({"_id": to_obj_id(review_id)})
    if not review:
        raise HTTPException(status_code=404, detail="Review not found")
    return review


def with_reviewers(db: Database, reviews: List[Dict]) -> List[Dict]:
    ids = list({r["reviewer"] for r in reviews})
    users = {u["_id"]: u for u in db["user"].find({"_id": {"$in": ids}}, {"fullName": 1, "avatar": 1})} if ids else {}
    out = []
    for r in reviews:
        u = users.get(r["reviewer"]) or {}
        item = sanitize(r)
        item["reviewerInfo"] = {"id": str(r["reviewer"]), "fullName": u.get("fullName", ""), "avatar": u.get("avatar", "")}
        item["helpfulCount"] = len(r.get("helpful", []))
        out.append(item)
    return out


def refresh_property_rating(db: Database, property_id) -> None:
    ratings = [r["rating"] for r in db["review"].find({"propertyId": property_id, "status": "approved"}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 1) if ratings else 0
    db["property"].update_one(
        {"_id": property_id},
        {"$set": {"performance.rating.average": average, "performance.rating.count": len(ratings)}},
    )


@router.post("/create", status_code=201)
def create_review(payload: CreateReviewRequest, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    if not payload.propertyId or payload.rating is None or not payload.comment:
        raise HTTPException(status_code=400, detail="Property ID, rating, and comment are required")
    _check_rating(payload.rating)
    comment = _check_comment(payload.comment)
    prop = get_property_or_404(db, payload.propertyId)

    if db["review"].find_one({"propertyId": prop["_id"], "reviewer": current_user["_id"]}):
        raise HTTPException(status_code=400, detail="You have already reviewed this property")
    try:
        review = create_document(db, "review", Review(
            propertyId=prop["_id"], reviewer=current_user["_id"], rating=payload.rating, comment=comment,
        ))
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="You have already reviewed this property")

    refresh_property_rating(db, prop["_id"])
    return {"success": True, "message": "Review created successfully", "review": with_reviewers(db, [review])[0]}


@router.get("/property/{property_id}")
def property_reviews(
    property_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    prop = get_property_or_404(db, property_id)
    q = {"propertyId": prop["_id"], "status": "approved"}
    total = db["review"].count_documents(q)
    reviews = list(db["review"].find(q).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return {"success": True, "reviews": with_reviewers(db, reviews), "pagination": paginate(page, limit, total)}


@router.get("/stats/{property_id}")
def review_stats(property_id: str, db: Database = Depends(get_db)):
    prop = get_property_or_404(db, property_id)
    ratings = [r["rating"] for r in db["review"].find({"propertyId": prop["_id"], "status": "approved"}, {"rating": 1})]
    distribution = {str(star): 0 for star in range(1, 6)}
    for rating in ratings:
        distribution[str(rating)] += 1
    return {
        "success": True,
        "stats": {
            "totalReviews": len(ratings),
            "averageRating": round(sum(ratings) / len(ratings), 1) if ratings else 0,
            "ratingDistribution": distribution,
        },
    }


@router.get("/my-reviews")
def my_reviews(current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    reviews = list(db["review"].find({"reviewer": current_user["_id"]}).sort("createdAt", -1))
    return {"success": True, "reviews": with_reviewers(db, reviews)}


@router.get("/user/{user_id}")
def user_reviews(user_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    reviews = list(db["review"].find({"reviewer": to_obj_id(user_id)}).sort("createdAt", -1))
    return {"success": True, "reviews": with_reviewers(db, reviews)}


@router.put("/update/{review_id}")
def update_review(review_id: str, payload: UpdateReviewRequest, current_user=Depends(get_current_user),
                  db: Database = Depends(get_db)):
    if payload.rating is None and payload.comment is None:
        raise HTTPException(status_code=400, detail="Rating or comment is required for update")
    review = _get_review_or_404(db, review_id)
    if review["reviewer"] != current_user["_id"]:
        raise HTTPException(status_code=403, detail="You can only update your own reviews")

    update: Dict = {"updatedAt": utcnow()}
    if payload.rating is not None:
        _check_rating(payload.rating)
        update["rating"] = payload.rating
    if payload.comment is not None:
        update["comment"] = _check_comment(payload.comment)
    updated = db["review"].find_one_and_update({"_id": review["_id"]}, {"$set": update},
                                              return_document=ReturnDocument.AFTER)
    refresh_property_rating(db, review["propertyId"])
    return {"success": True, "message": "Review updated successfully", "review": with_reviewers(db, [updated])[0]}


@router.delete("/delete/{review_id}")
@router.delete("/{review_id}")
def delete_review(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = _get_review_or_404(db, review_id)
    if review["reviewer"] != current_user["_id"] and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="You can only delete your own reviews")
    db["review"].delete_one({"_id": review["_id"]})
    refresh_property_rating(db, review["propertyId"])
    return {"success": True, "message": "Review deleted successfully"}


@router.api_route("/helpful/{review_id}", methods=["POST", "PUT"])
def toggle_helpful(review_id: str, current_user=Depends(get_current_user), db: Database = Depends(get_db)):
    review = _get_review_or_404(db, review_id)
    uid = current_user["_id"]
    marked = uid in review.get("helpful", [])
    op = "$pull" if marked else "$addToSet"
    updated = db["review"].find_one_and_update({"_id": review["_id"]}, {op: {"helpful": uid}},
                                              return_document=ReturnDocument.AFTER)
    return {
        "success": True,
        "message": "Marked as not helpful" if marked else "Marked as helpful",
        "isHelpful": not marked,
        "helpfulCount": len(updated.get("helpful", [])),
    }
