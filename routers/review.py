import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_db
from errors import Forbidden, NotFound, ValidationFailed
from helpers import (
    USER_PROFILE_CARD,
    PageParams,
    envelope,
    pagination,
    populate,
    populate_one,
    stamp_new,
    to_obj_id,
    utcnow,
    validate_payload,
    without_nulls,
)
from schemas import ReviewIn, ReviewUpdate
from security import Principal, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

AUTHOR_FIELDS = ["fullName", "profilePicture", "verified"]


def _reviews_for(db: Database, recipient_id, page: PageParams) -> Dict[str, Any]:
    filt = {"recipientId": recipient_id}
    reviews = list(db["userreview"].find(filt).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    # author profile under "author"; recipientId stays a plain id
    populate(db, reviews, "userId", "userprofile", AUTHOR_FIELDS, match_on="userId", into="author")
    total = db["userreview"].count_documents(filt)
    return envelope(reviews, pagination=pagination(page.page, page.limit, total))


def _find_review(db: Database, review_id: str) -> Dict[str, Any]:
    review = db["userreview"].find_one({"_id": to_obj_id(review_id, "review ID")})
    if not review:
        raise NotFound("Review not found")
    return review


@router.get("/me")
def reviews_about_me(page: PageParams = Depends(), user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = db["userprofile"].find_one({"userId": user.id})
    if not profile:
        raise NotFound("User profile not found")
    return _reviews_for(db, profile["_id"], page)


@router.post("/me")
def create_review(payload: ReviewIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    author = db["userprofile"].find_one({"userId": user.id})
    if not author:
        raise NotFound("User profile not found")
    recipient = db["userprofile"].find_one({"_id": to_obj_id(payload.recipientId, "recipient ID")})
    if not recipient:
        raise NotFound("Recipient profile not found")
    if recipient.get("userId") == user.id:
        raise ValidationFailed("Cannot review yourself")

    picture = author.get("profilePicture") or {}
    doc = stamp_new({
        "userId": user.id,
        "recipientId": recipient["_id"],
        "authorName": author.get("fullName"),
        "reviewerAvatar": picture.get("url"),
        "rating": payload.rating,
        "content": payload.content,
        "role": payload.role,
        "helpful": 0,
    })
    doc["_id"] = db["userreview"].insert_one(doc).inserted_id
    logger.info("User %s reviewed profile %s", user.id, recipient["_id"])
    populate_one(db, doc, "recipientId", "userprofile", USER_PROFILE_CARD)
    return JSONResponse(status_code=201, content=envelope(doc))


@router.get("/user/{profile_id}")
def reviews_for_profile(profile_id: str, page: PageParams = Depends(), db: Database = Depends(get_db)):
    oid = to_obj_id(profile_id, "user ID")
    if not db["userprofile"].find_one({"_id": oid}):
        raise NotFound("User profile not found")
    return _reviews_for(db, oid, page)


@router.patch("/{review_id}/helpful")
def mark_helpful(review_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    review = db["userreview"].find_one_and_update(
        {"_id": to_obj_id(review_id, "review ID")},
        {"$inc": {"helpful": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not review:
        raise NotFound("Review not found")
    return envelope({"helpful": review["helpful"]}, message="Review marked as helpful")


@router.get("/{review_id}")
def get_review(review_id: str, db: Database = Depends(get_db)):
    review = _find_review(db, review_id)
    return envelope(populate_one(db, review, "recipientId", "userprofile", USER_PROFILE_CARD))


@router.patch("/{review_id}")
def update_review(
    review_id: str,
    body: Any = Body(...),
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    review = _find_review(db, review_id)
    if review.get("userId") != user.id:
        raise Forbidden("Not authorized to update this review")
    payload = validate_payload(ReviewUpdate, body)
    changes = without_nulls(payload.model_dump(exclude_unset=True))
    changes["updatedAt"] = utcnow()
    updated = db["userreview"].find_one_and_update(
        {"_id": review["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return envelope(populate_one(db, updated, "recipientId", "userprofile", USER_PROFILE_CARD))


@router.delete("/{review_id}")
def delete_review(review_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    review = _find_review(db, review_id)
    if review.get("userId") != user.id:
        raise Forbidden("Not authorized to delete this review")
    db["userreview"].delete_one({"_id": review["_id"]})
    return envelope(message="Review deleted successfully")
