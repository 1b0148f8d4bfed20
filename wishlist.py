"""
Client-side wishlist.

Posts are reduced to a small projection before they are stored so the
wishlist stays light and keeps working after the post changes or goes away.
Storage problems never reach the caller: reads fall back to an empty list
and writes report ``False``.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class _Named(BaseModel):
    name: Optional[str] = None


class _Region(BaseModel):
    region: Optional[str] = None
    district: Optional[str] = None


class _DeliveryFlag(BaseModel):
    deliveryAvailable: Optional[bool] = None


class _StoreImage(BaseModel):
    url: Optional[str] = None
    itemName: Optional[str] = None
    itemPrice: Optional[str] = None
    currency: Optional[str] = None


class _StoreName(BaseModel):
    storeName: Optional[str] = None


class StoreWishlistItem(BaseModel):
    id: str = Field(..., alias="_id")
    type: Literal["store"] = "store"
    storeImage: _StoreImage
    storeProfile: _StoreName
    storeLocation: _Region
    delivery: Optional[_DeliveryFlag] = None
    category: _Named
    subcategory: _Named

    model_config = ConfigDict(populate_by_name=True)


class _FarmProduct(BaseModel):
    nameOfProduct: Optional[str] = None
    productPrice: Optional[float] = None
    currency: Optional[str] = None
    availableQuantity: Optional[str] = None
    unit: Optional[str] = None


class _Url(BaseModel):
    url: Optional[str] = None


class _FarmName(BaseModel):
    farmName: Optional[str] = None
    farmLocation: Optional[_Region] = None


class FarmWishlistItem(BaseModel):
    id: str = Field(..., alias="_id")
    type: Literal["farm"] = "farm"
    product: _FarmProduct
    productImages: List[_Url] = []
    FarmProfile: _FarmName
    postLocation: Optional[_Region] = None
    delivery: Optional[_DeliveryFlag] = None
    category: _Named
    subcategory: _Named

    model_config = ConfigDict(populate_by_name=True)


WishlistItem = Annotated[Union[StoreWishlistItem, FarmWishlistItem], Field(discriminator="type")]
_items_adapter = TypeAdapter(List[WishlistItem])


def _sub(post: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = post.get(key)
    return value if isinstance(value, dict) else {}


def sanitize_store_item(post: Dict[str, Any]) -> StoreWishlistItem:
    return StoreWishlistItem(
        id=str(post["_id"]),
        storeImage=_StoreImage.model_validate(_sub(post, "storeImage")),
        storeProfile=_StoreName.model_validate(_sub(post, "storeProfile")),
        storeLocation=_Region.model_validate(_sub(post, "storeLocation")),
        delivery=_DeliveryFlag.model_validate(post["delivery"]) if post.get("delivery") else None,
        category=_Named.model_validate(_sub(post, "category")),
        subcategory=_Named.model_validate(_sub(post, "subcategory")),
    )


def sanitize_farm_item(post: Dict[str, Any]) -> FarmWishlistItem:
    # a farm post keeps its delivery flag at the top level
    delivery = _DeliveryFlag(deliveryAvailable=post.get("deliveryAvailable")) if post.get("delivery") else None
    location = post.get("postLocation")
    return FarmWishlistItem(
        id=str(post["_id"]),
        product=_FarmProduct.model_validate(_sub(post, "product")),
        productImages=[_Url(url=img.get("url")) for img in post.get("productImages") or []],
        FarmProfile=_FarmName.model_validate(_sub(post, "FarmProfile")),
        postLocation=_Region.model_validate(location) if isinstance(location, dict) else None,
        delivery=delivery,
        category=_Named.model_validate(_sub(post, "category")),
        subcategory=_Named.model_validate(_sub(post, "subcategory")),
    )


def sanitize_item(post: Dict[str, Any]) -> Union[StoreWishlistItem, FarmWishlistItem]:
    if "storeImage" in post:
        return sanitize_store_item(post)
    return sanitize_farm_item(post)


class MemoryStorage:
    def __init__(self, raw: Optional[str] = None):
        self.raw = raw

    def read(self) -> Optional[str]:
        return self.raw

    def write(self, raw: str) -> None:
        self.raw = raw


class JsonFileStorage:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def write(self, raw: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(raw, encoding="utf-8")


class Wishlist:
    def __init__(self, storage):
        self.storage = storage

    def items(self) -> List[Union[StoreWishlistItem, FarmWishlistItem]]:
        try:
            raw = self.storage.read()
            if not raw:
                return []
            return _items_adapter.validate_python(json.loads(raw))
        except (OSError, ValueError, ValidationError) as e:
            logger.error("Error reading wishlist from storage: %s", e)
            return []

    def _save(self, items: List[Union[StoreWishlistItem, FarmWishlistItem]]) -> bool:
        try:
            payload = [i.model_dump(by_alias=True) for i in items]
            self.storage.write(json.dumps(payload))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error("Error writing wishlist to storage: %s", e)
            return False

    def contains(self, item_id: str) -> bool:
        return any(i.id == item_id for i in self.items())

    def add(self, post: Dict[str, Any]) -> bool:
        """Store a sanitised copy of ``post``; adding the same post twice is a no-op."""
        try:
            item = sanitize_item(post)
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.error("Error adding item to wishlist: %s", e)
            return False
        current = self.items()
        if any(i.id == item.id for i in current):
            return True
        return self._save(current + [item])

    def remove(self, item_id: str) -> List[Union[StoreWishlistItem, FarmWishlistItem]]:
        current = self.items()
        remaining = [i for i in current if i.id != item_id]
        if len(remaining) != len(current) and not self._save(remaining):
            return current
        return remaining

    def clear(self) -> bool:
        return self._save([])
