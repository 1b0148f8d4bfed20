import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db
from errors import Forbidden, NotFound, Unauthenticated, ValidationFailed
from helpers import (
    USER_PROFILE_FULL,
    PageParams,
    envelope,
    pagination,
    populate,
    populate_one,
    stamp_new,
    to_obj_id,
    utcnow,
    without_nulls,
)
from schemas import (
    FARM_TYPE_FIELDS,
    PRODUCTION_FIELDS,
    ArrayUpdate,
    FarmProfileIn,
    FarmProfilePut,
    StoreProfileIn,
    StoreProfilePut,
    UserProfileIn,
    UserProfileUpdate,
)
from security import Principal, get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter()

FARM_OWNER_FIELDS = ["fullName", "email", "profilePicture", "phoneNumber", "country"]
STORE_OWNER_FIELDS = ["_id", "fullName", "email", "username", "profilePicture", "phoneNumber", "role", "verified"]


def _update_profile(db: Database, profile_id: ObjectId, payload: UserProfileUpdate) -> Dict[str, Any]:
    changes = without_nulls(payload.model_dump(exclude_unset=True))
    changes["updatedAt"] = utcnow()
    try:
        return db["userprofile"].find_one_and_update(
            {"_id": profile_id}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ValidationFailed("Username or email already in use")


def _own_profile(db: Database, user: Principal) -> Dict[str, Any]:
    profile = db["userprofile"].find_one({"email": user.email.lower()})
    if not profile:
        raise NotFound("Profile not found")
    return profile


# --- User profiles ---

@router.get("")
def list_profiles(
    page: PageParams = Depends(),
    userId: Optional[str] = None,
    role: Optional[str] = None,
    country: Optional[str] = None,
    verified: Optional[bool] = None,
    db: Database = Depends(get_db),
):
    if userId:
        profile = db["userprofile"].find_one({"_id": to_obj_id(userId, "profile ID")})
        if not profile:
            raise NotFound("Profile not found")
        return envelope(profile)

    query: Dict[str, Any] = {}
    if role:
        query["role"] = role
    if country:
        query["country"] = country
    if verified is not None:
        query["verified"] = verified
    profiles = list(db["userprofile"].find(query).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    total = db["userprofile"].count_documents(query)
    return envelope(profiles, pagination=pagination(page.page, page.limit, total))


@router.post("")
def create_profile(
    payload: UserProfileIn,
    user: Optional[Principal] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    doc = payload.model_dump()
    if user is not None:
        doc["userId"] = user.id
    if not doc.get("userId"):
        raise ValidationFailed("Validation failed", errors=["userId: Field required"])
    stamp_new(doc)
    try:
        doc["_id"] = db["userprofile"].insert_one(doc).inserted_id
    except DuplicateKeyError:
        raise ValidationFailed("Profile already exists for this user, email or username")
    logger.info("Created user profile %s for user %s", doc["_id"], doc["userId"])
    return JSONResponse(status_code=201, content=envelope(doc))


@router.get("/me")
def get_my_profile(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return envelope(_own_profile(db, user))


@router.put("/me")
@router.patch("/me")
def update_my_profile(
    payload: UserProfileUpdate,
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    profile = _own_profile(db, user)
    return envelope(_update_profile(db, profile["_id"], payload))


@router.delete("/me")
def delete_my_profile(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = _own_profile(db, user)
    db["userprofile"].delete_one({"_id": profile["_id"]})
    return envelope(message="Profile deleted successfully")


# --- Farm profiles ---

@router.get("/farm")
@router.get("/farm_me")
def list_farm_profiles(
    page: PageParams = Depends(),
    userId: Optional[str] = None,
    farmType: Optional[str] = None,
    productionScale: Optional[str] = None,
    user: Optional[Principal] = Depends(get_optional_user),
    db: Database = Depends(get_db),
):
    if not userId and user is None:
        raise Unauthenticated("Authentication required to view all farms")
    query: Dict[str, Any] = {}
    if userId:
        query["userId"] = userId
    if farmType:
        query["farmType"] = farmType
    if productionScale:
        query["productionScale"] = productionScale
    farms = list(db["farmprofile"].find(query).sort("createdAt", -1).skip(page.skip).limit(page.limit))
    populate(db, farms, "userProfile", "userprofile", FARM_OWNER_FIELDS)
    total = db["farmprofile"].count_documents(query)
    return envelope(farms, pagination=pagination(page.page, page.limit, total))


@router.post("/farm")
@router.post("/farm_me")
def create_farm_profile(payload: FarmProfileIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = db["userprofile"].find_one({"userId": user.id})
    if not profile:
        raise NotFound("User profile not found")
    doc = stamp_new(payload.model_dump())
    doc["userId"] = user.id
    doc["userProfile"] = profile["_id"]
    doc["_id"] = db["farmprofile"].insert_one(doc).inserted_id
    logger.info("User %s created farm profile %s", user.id, doc["_id"])
    return JSONResponse(status_code=201, content=envelope(doc))


def _own_farm(db: Database, farm_id: str, user: Principal) -> Dict[str, Any]:
    farm = db["farmprofile"].find_one({"_id": to_obj_id(farm_id, "farm profile ID"), "userId": user.id})
    if not farm:
        raise NotFound("Farm profile not found or unauthorized")
    return farm


def apply_array_update(farm: Dict[str, Any], update: ArrayUpdate) -> None:
    items: List[Any] = list(farm.get(update.field) or [])
    in_range = update.index is not None and 0 <= update.index < len(items)
    if update.operation == "add":
        items.append(update.value)
    elif update.operation == "remove" and in_range:
        items.pop(update.index)
    elif update.operation == "update" and in_range:
        items[update.index] = update.value
    farm[update.field] = items


def apply_farm_changes(farm: Dict[str, Any], payload: FarmProfilePut) -> Dict[str, Any]:
    """Return the ``$set`` document for a farm profile PUT.

    Changing the farm type empties every production list, and only the list
    that belongs to the (new or current) farm type may be edited.
    """
    original_type = farm.get("farmType")
    changes: Dict[str, Any] = without_nulls(payload.basicInfo.model_dump(exclude_unset=True)) if payload.basicInfo else {}
    working = {**farm, **changes}
    new_type = changes.get("farmType")

    if new_type and new_type != original_type:
        for field in PRODUCTION_FIELDS:
            working[field] = []
            changes[field] = []
        valid_field = FARM_TYPE_FIELDS.get(new_type)
        if any(u.field != valid_field for u in payload.arrayUpdates):
            raise ValidationFailed(f"Can only update {valid_field} for farm type {new_type}")
    else:
        valid_field = FARM_TYPE_FIELDS.get(original_type)
        for u in payload.arrayUpdates:
            if u.field != valid_field:
                raise ValidationFailed(f"Cannot update {u.field} for farm type {original_type}")

    for u in payload.arrayUpdates:
        apply_array_update(working, u)
        changes[u.field] = working[u.field]
    changes["updatedAt"] = utcnow()
    return changes


@router.get("/farm/{farm_id}")
@router.get("/farm_me/{farm_id}")
def get_farm_profile(farm_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    farm = _own_farm(db, farm_id, user)
    return envelope(populate_one(db, farm, "userProfile", "userprofile", ["fullName", "email"]))


@router.put("/farm/{farm_id}")
@router.put("/farm_me/{farm_id}")
def update_farm_profile(
    farm_id: str,
    payload: FarmProfilePut,
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    farm = _own_farm(db, farm_id, user)
    changes = apply_farm_changes(farm, payload)
    updated = db["farmprofile"].find_one_and_update(
        {"_id": farm["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return envelope(populate_one(db, updated, "userProfile", "userprofile", ["fullName", "email"]))


@router.delete("/farm/{farm_id}")
@router.delete("/farm_me/{farm_id}")
def delete_farm_profile(farm_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    farm = db["farmprofile"].find_one_and_delete({"_id": to_obj_id(farm_id, "farm profile ID"), "userId": user.id})
    if not farm:
        raise NotFound("Farm profile not found or unauthorized")
    return envelope(message="Farm profile deleted successfully")


# --- Store profiles ---

def _with_ids(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    for item in items:
        item["_id"] = ObjectId()
    return items


def _populated_store(db: Database, store: Dict[str, Any]) -> Dict[str, Any]:
    return populate_one(db, store, "userProfile", "userprofile", STORE_OWNER_FIELDS)


@router.get("/store/me")
def get_my_store(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    store = db["storeprofile"].find_one({"userId": user.id})
    if not store:
        raise NotFound("Store profile not found")
    return envelope(_populated_store(db, store))


@router.post("/store/me")
def create_my_store(payload: StoreProfileIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = db["userprofile"].find_one({"userId": user.id})
    if not profile:
        raise NotFound("User profile not found")
    if db["storeprofile"].find_one({"userId": user.id}):
        raise ValidationFailed("Store profile already exists")
    doc = stamp_new(payload.model_dump())
    _with_ids(doc["branches"])
    _with_ids(doc["storeImages"])
    doc["userId"] = user.id
    doc["userProfile"] = profile["_id"]
    doc["_id"] = db["storeprofile"].insert_one(doc).inserted_id
    db["userprofile"].update_one({"_id": profile["_id"]}, {"$set": {"storeProfile": doc["_id"]}})
    logger.info("User %s created store profile %s", user.id, doc["_id"])
    return JSONResponse(status_code=201, content=envelope(doc))


def store_update_operation(body: StoreProfilePut) -> Dict[str, Any]:
    """Translate a store profile PUT into a query suffix and a Mongo update."""
    op = body.operation
    if op == "addBranch":
        if not body.branches:
            raise ValidationFailed("Branch data is required")
        return {"match": {}, "update": {"$push": {"branches": _with_ids([body.branches.model_dump()])[0]}}}
    if op == "updateBranch":
        if not body.branchId or not body.branches:
            raise ValidationFailed("Branch ID and updated data are required")
        branch_id = to_obj_id(body.branchId, "branch ID")
        branch = {**body.branches.model_dump(), "_id": branch_id}
        return {"match": {"branches._id": branch_id}, "update": {"$set": {"branches.$": branch}}, "missing": "Branch not found"}
    if op == "deleteBranch":
        if not body.branchId:
            raise ValidationFailed("Branch ID is required")
        return {"match": {}, "update": {"$pull": {"branches": {"_id": to_obj_id(body.branchId, "branch ID")}}}}
    if op == "addImage":
        if not body.storeImages:
            raise ValidationFailed("Image data is required")
        return {"match": {}, "update": {"$push": {"storeImages": _with_ids([body.storeImages.model_dump()])[0]}}}
    if op == "updateImage":
        if not body.imageId or not body.storeImages:
            raise ValidationFailed("Image ID and updated data are required")
        image_id = to_obj_id(body.imageId, "image ID")
        image = {**body.storeImages.model_dump(), "_id": image_id}
        return {"match": {"storeImages._id": image_id}, "update": {"$set": {"storeImages.$": image}}, "missing": "Image not found"}
    if op == "deleteImage":
        if not body.imageId:
            raise ValidationFailed("Image ID is required")
        return {"match": {}, "update": {"$pull": {"storeImages": {"_id": to_obj_id(body.imageId, "image ID")}}}}
    # updateStoreInfo
    if not body.storeInfo:
        raise ValidationFailed("Store information is required")
    info = without_nulls(body.storeInfo.model_dump(exclude_unset=True))
    return {"match": {}, "update": {"$set": info}}


@router.put("/store/me")
def update_my_store(payload: StoreProfilePut, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    store = db["storeprofile"].find_one({"userId": user.id})
    if not store:
        raise NotFound("Store profile not found")
    op = store_update_operation(payload)
    update = op["update"]
    update.setdefault("$set", {})["updatedAt"] = utcnow()
    updated = db["storeprofile"].find_one_and_update(
        {"_id": store["_id"], **op["match"]}, update, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise NotFound(op.get("missing", "Store profile not found"))
    return envelope(_populated_store(db, updated))


@router.delete("/store/me")
def delete_my_store(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    store = db["storeprofile"].find_one_and_delete({"userId": user.id})
    if not store:
        raise NotFound("Store profile not found")
    db["userprofile"].update_one({"userId": user.id}, {"$unset": {"storeProfile": ""}})
    return envelope(message="Store profile deleted successfully")


@router.get("/store/{user_id}")
def get_store_by_user(user_id: str, db: Database = Depends(get_db)):
    store = db["storeprofile"].find_one({"userId": user_id})
    if not store:
        raise NotFound("Store profile not found")
    return envelope(populate_one(db, store, "userProfile", "userprofile", USER_PROFILE_FULL))


# --- Single profile by id (registered last so the static paths above win) ---

def _owned_profile(db: Database, profile_id: str, user: Principal) -> Dict[str, Any]:
    profile = db["userprofile"].find_one({"_id": to_obj_id(profile_id, "profile ID")})
    if not profile:
        raise NotFound("Profile not found")
    if profile.get("userId") != user.id:
        raise Forbidden("Not authorized to modify this profile")
    return profile


@router.get("/{profile_id}")
def get_profile(profile_id: str, db: Database = Depends(get_db)):
    profile = db["userprofile"].find_one({"_id": to_obj_id(profile_id, "profile ID")})
    if not profile:
        raise NotFound("Profile not found")
    return envelope(profile)


@router.put("/{profile_id}")
def update_profile(
    profile_id: str,
    payload: UserProfileUpdate,
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    profile = _owned_profile(db, profile_id, user)
    return envelope(_update_profile(db, profile["_id"], payload))


@router.delete("/{profile_id}")
def delete_profile(profile_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    profile = _owned_profile(db, profile_id, user)
    db["userprofile"].delete_one({"_id": profile["_id"]})
    return envelope(message="Profile deleted successfully")
