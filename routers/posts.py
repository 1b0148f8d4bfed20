import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Body, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database

from database import get_db
from errors import Forbidden, NotFound
from helpers import (
    STORE_PROFILE_SUMMARY,
    USER_PROFILE_CONTACT,
    USER_PROFILE_FULL,
    USER_PROFILE_PUBLIC,
    PageParams,
    allowed_fields,
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
from schemas import FarmPostIn, FarmPostUpdate, StorePostIn, StorePostUpdate
from security import Principal, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

SEARCH_FIELDS = [
    "category.name",
    "subcategory.name",
    "tags.label",
    "tags.value",
    "FarmProfile.farmName",
    "product.nameOfProduct",
    "product.description",
    "product.quality_grade",
    "storeImage.itemName",
    "description",
    "condition",
]
STORE_PROFILE_SEARCH_FIELDS = ["storeName", "description"]

FARM_POST_MUTABLE_FIELDS = list(FarmPostUpdate.model_fields)
STORE_POST_MUTABLE_FIELDS = list(StorePostUpdate.model_fields)
STORE_PROFILE_CARD = ["storeName", "storeImages"]
STORE_PROFILE_FULL = ["userId", "storeName", "description", "branches", "storeImages", "productionScale", "productSold"]


def build_post_filter(
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    region: Optional[str] = None,
    district: Optional[str] = None,
    user_id: Optional[str] = None,
    search: Optional[str] = None,
    store_profile_ids: Optional[List[ObjectId]] = None,
) -> Dict[str, Any]:
    """Build the filter shared by the farm and store post collections.

    Location matches either the farm location or the store location. When a
    search term is given as well, a post must satisfy both groups.
    ``store_profile_ids`` are the store profiles whose name or description
    matched the search term; their posts match too.
    """
    filt: Dict[str, Any] = {}
    if category:
        filt["category.id"] = category
    if subcategory:
        filt["subcategory.id"] = subcategory
    if user_id:
        filt["userProfile"] = ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id

    groups: List[List[Dict[str, Any]]] = []
    if region or district:
        farm_loc: Dict[str, Any] = {}
        store_loc: Dict[str, Any] = {}
        if region:
            farm_loc["FarmProfile.farmLocation.region"] = region
            store_loc["storeLocation.region"] = region
        if district:
            farm_loc["FarmProfile.farmLocation.district"] = district
            store_loc["storeLocation.district"] = district
        groups.append([farm_loc, store_loc])
    if search and search.strip():
        term = re.escape(search.strip())
        terms: List[Dict[str, Any]] = [{f: {"$regex": term, "$options": "i"}} for f in SEARCH_FIELDS]
        if store_profile_ids:
            terms.append({"storeProfile": {"$in": store_profile_ids}})
        groups.append(terms)

    if len(groups) == 1:
        filt["$or"] = groups[0]
    elif groups:
        filt["$and"] = [{"$or": g} for g in groups]
    return filt


def matching_store_profiles(db: Database, search: Optional[str]) -> List[ObjectId]:
    if not search or not search.strip():
        return []
    term = re.escape(search.strip())
    query = {"$or": [{f: {"$regex": term, "$options": "i"}} for f in STORE_PROFILE_SEARCH_FIELDS]}
    return [s["_id"] for s in db["storeprofile"].find(query, {"_id": 1})]


def _find_farm_posts(db: Database, filt: Dict[str, Any], page: PageParams) -> List[Dict[str, Any]]:
    posts = list(db["farmpost"].find(filt).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    return populate(db, posts, "userProfile", "userprofile", USER_PROFILE_PUBLIC)


def _find_store_posts(db: Database, filt: Dict[str, Any], page: PageParams) -> List[Dict[str, Any]]:
    posts = list(db["storepost"].find(filt).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    populate(db, posts, "userProfile", "userprofile", USER_PROFILE_PUBLIC)
    return populate(db, posts, "storeProfile", "storeprofile", STORE_PROFILE_CARD)


@router.get("")
async def list_posts(
    page: PageParams = Depends(),
    category: Optional[str] = None,
    subcategory: Optional[str] = None,
    region: Optional[str] = None,
    district: Optional[str] = None,
    userId: Optional[str] = None,
    search: Optional[str] = None,
    db: Database = Depends(get_db),
):
    """Farm and store posts side by side; only the totals are merged for pagination."""
    store_ids = await run_in_threadpool(matching_store_profiles, db, search)
    filt = build_post_filter(category, subcategory, region, district, userId, search, store_ids)
    farm_posts, store_posts, farm_total, store_total = await asyncio.gather(
        run_in_threadpool(_find_farm_posts, db, filt, page),
        run_in_threadpool(_find_store_posts, db, filt, page),
        run_in_threadpool(db["farmpost"].count_documents, filt),
        run_in_threadpool(db["storepost"].count_documents, filt),
    )
    return envelope(
        {"farmPosts": farm_posts, "storePosts": store_posts},
        pagination=pagination(page.page, page.limit, farm_total + store_total),
    )


def _user_profile_for(db: Database, user: Principal) -> Dict[str, Any]:
    profile = db["userprofile"].find_one({"userId": user.id})
    if not profile:
        raise NotFound("User profile not found")
    return profile


def _owned_post(db: Database, collection: str, label: str, post_id: str, user: Principal) -> Dict[str, Any]:
    post = db[collection].find_one({"_id": to_obj_id(post_id, f"{label} ID")})
    if not post:
        raise NotFound(f"{label.capitalize()} not found")
    if str(post.get("userId")) != user.id:
        raise Forbidden("Unauthorized")
    return post


def _update_post(db: Database, collection: str, post: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    changes["updatedAt"] = utcnow()
    return db[collection].find_one_and_update(
        {"_id": post["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )


# --- Farm posts ---

@router.post("/farm")
def create_farm_post(payload: FarmPostIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = _user_profile_for(db, user)
    doc = stamp_new(payload.model_dump(by_alias=True))
    doc["userId"] = user.id
    doc["userProfile"] = profile["_id"]
    doc["_id"] = db["farmpost"].insert_one(doc).inserted_id
    logger.info("User %s created farm post %s", user.id, doc["_id"])
    return JSONResponse(status_code=201, content=envelope(doc))


@router.get("/farm")
def my_farm_posts(page: PageParams = Depends(), user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    filt = {"userId": user.id}
    posts = list(db["farmpost"].find(filt).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    populate(db, posts, "userProfile", "userprofile", ["fullName", "username"])
    total = db["farmpost"].count_documents(filt)
    return envelope(posts, pagination=pagination(page.page, page.limit, total))


@router.get("/farm/{post_id}")
def get_farm_post(post_id: str, db: Database = Depends(get_db)):
    post = db["farmpost"].find_one({"_id": to_obj_id(post_id, "farm post ID")})
    if not post:
        raise NotFound("Farm post not found")
    return envelope(populate_one(db, post, "userProfile", "userprofile", USER_PROFILE_FULL))


@router.put("/farm/{post_id}")
@router.patch("/farm/{post_id}")
def update_farm_post(
    post_id: str,
    body: Any = Body(...),
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = _owned_post(db, "farmpost", "farm post", post_id, user)
    payload = validate_payload(FarmPostUpdate, body)
    changes = without_nulls(allowed_fields(payload.model_dump(exclude_unset=True, by_alias=True), FARM_POST_MUTABLE_FIELDS))
    return envelope(_update_post(db, "farmpost", post, changes))


@router.delete("/farm/{post_id}")
def delete_farm_post(post_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    post = _owned_post(db, "farmpost", "farm post", post_id, user)
    db["farmpost"].delete_one({"_id": post["_id"]})
    return envelope(message="Farm post deleted")


# --- Store posts ---

@router.post("/store")
def create_store_post(payload: StorePostIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = _user_profile_for(db, user)
    store = db["storeprofile"].find_one({"userId": user.id})
    if not store:
        raise NotFound("Store profile not found")
    doc = stamp_new(payload.model_dump(by_alias=True))
    doc["userId"] = user.id
    doc["userProfile"] = profile["_id"]
    doc["storeProfile"] = store["_id"]
    doc["_id"] = db["storepost"].insert_one(doc).inserted_id
    logger.info("User %s created store post %s", user.id, doc["_id"])
    populate_one(db, doc, "userProfile", "userprofile", USER_PROFILE_CONTACT)
    populate_one(db, doc, "storeProfile", "storeprofile", STORE_PROFILE_SUMMARY)
    return JSONResponse(status_code=201, content=envelope(doc))


@router.get("/store")
def my_store_posts(page: PageParams = Depends(), user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    filt = {"userId": user.id}
    posts = list(db["storepost"].find(filt).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    populate(db, posts, "userProfile", "userprofile", USER_PROFILE_CONTACT)
    populate(db, posts, "storeProfile", "storeprofile", STORE_PROFILE_SUMMARY)
    total = db["storepost"].count_documents(filt)
    return envelope(posts, pagination=pagination(page.page, page.limit, total))


@router.get("/store/{post_id}")
def get_store_post(post_id: str, db: Database = Depends(get_db)):
    post = db["storepost"].find_one({"_id": to_obj_id(post_id, "store post ID")})
    if not post:
        raise NotFound("Store post not found")
    populate_one(db, post, "userProfile", "userprofile", USER_PROFILE_FULL)
    return envelope(populate_one(db, post, "storeProfile", "storeprofile", STORE_PROFILE_FULL))


@router.put("/store/{post_id}")
@router.patch("/store/{post_id}")
def update_store_post(
    post_id: str,
    body: Any = Body(...),
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    post = _owned_post(db, "storepost", "store post", post_id, user)
    payload = validate_payload(StorePostUpdate, body)
    changes = without_nulls(allowed_fields(payload.model_dump(exclude_unset=True, by_alias=True), STORE_POST_MUTABLE_FIELDS))
    return envelope(_update_post(db, "storepost", post, changes))


@router.delete("/store/{post_id}")
def delete_store_post(post_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    post = _owned_post(db, "storepost", "store post", post_id, user)
    db["storepost"].delete_one({"_id": post["_id"]})
    return envelope(message="Store post deleted")
