import logging
from typing import Any, Dict, Tuple

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import get_db
from errors import NotFound, ValidationFailed
from helpers import allowed_fields, envelope, to_obj_id, utcnow, without_nulls
from schemas import CartItemIn, CartItemUpdate
from security import Principal, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()

CART_MUTABLE_FIELDS = ["quantity", "price", "title", "imageUrl", "currency", "unit"]


def add_cart_item(db: Database, user_id: str, item: CartItemIn) -> Tuple[Dict[str, Any], bool]:
    """Insert a cart item or add its quantity to the existing (userId, id) row.

    Returns the stored document and whether it was newly created. The upsert
    is a single atomic update over the unique (id, userId) index, so two
    concurrent first inserts end up as one row holding the summed quantity.
    """
    query = {"userId": user_id, "id": item.id}
    now = utcnow()
    on_insert = item.model_dump(exclude={"id", "quantity"})
    on_insert["createdAt"] = now
    update = {
        "$inc": {"quantity": item.quantity},
        "$set": {"updatedAt": now},
        "$setOnInsert": on_insert,
    }
    try:
        res = db["cartitem"].update_one(query, update, upsert=True)
    except DuplicateKeyError:
        # Lost the insert race to a concurrent request; the row now exists.
        logger.info("Concurrent cart insert for user %s item %s, retrying as increment", user_id, item.id)
        res = db["cartitem"].update_one(query, update, upsert=True)
    doc = db["cartitem"].find_one(query)
    return doc, res.upserted_id is not None


def find_own_item(db: Database, item_id: str, user: Principal) -> Dict[str, Any]:
    doc = db["cartitem"].find_one({"_id": to_obj_id(item_id, "cart item ID"), "userId": user.id})
    if not doc:
        raise NotFound("Cart item not found")
    return doc


@router.get("")
def list_cart(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["cartitem"].find({"userId": user.id}).sort("createdAt", -1))
    return envelope(items)


@router.post("")
def add_to_cart(payload: CartItemIn, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    doc, created = add_cart_item(db, user.id, payload)
    if created:
        return JSONResponse(status_code=201, content=envelope(doc, message="Item added to cart"))
    return envelope(doc, message="Item quantity updated in cart")


@router.delete("/clear")
def clear_cart(user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    res = db["cartitem"].delete_many({"userId": user.id})
    logger.info("Cleared %d cart items for user %s", res.deleted_count, user.id)
    return envelope(message="Cart cleared", count=res.deleted_count)


@router.get("/{item_id}")
def get_cart_item(item_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    return envelope(find_own_item(db, item_id, user))


@router.put("/{item_id}")
def update_cart_item(
    item_id: str,
    payload: CartItemUpdate,
    user: Principal = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    item = find_own_item(db, item_id, user)
    changes = without_nulls(allowed_fields(payload.model_dump(exclude_unset=True), CART_MUTABLE_FIELDS))
    if changes.get("quantity") is not None and changes["quantity"] < 1:
        raise ValidationFailed("Quantity must be at least 1")
    changes["updatedAt"] = utcnow()
    doc = db["cartitem"].find_one_and_update(
        {"_id": item["_id"], "userId": user.id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    return envelope(doc, message="Cart item updated")


@router.delete("/{item_id}")
def remove_cart_item(item_id: str, user: Principal = Depends(get_current_user), db: Database = Depends(get_db)):
    doc = db["cartitem"].find_one_and_delete({"_id": to_obj_id(item_id, "cart item ID"), "userId": user.id})
    if not doc:
        raise NotFound("Cart item not found")
    return envelope(message="Item removed from cart")
