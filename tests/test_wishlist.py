import json

from wishlist import (
    FarmWishlistItem,
    JsonFileStorage,
    MemoryStorage,
    StoreWishlistItem,
    Wishlist,
    sanitize_item,
)

STORE_POST = {
    "_id": "65f0c0ffee00000000000001",
    "userId": "u1",
    "storeImage": {"_id": "img", "url": "https://img/s.png", "itemName": "Hoe", "itemPrice": "40", "currency": "GHS", "available": True},
    "storeProfile": {"_id": "sp", "storeName": "Agro Mart", "branches": []},
    "storeLocation": {"region": "Greater Accra", "district": "Tema"},
    "delivery": {"deliveryAvailable": True, "delivery_cost": "10"},
    "category": {"name": "Tools", "id": "tools"},
    "subcategory": {"name": "Hand tools", "id": "hand"},
    "description": "Sturdy hoe",
}

FARM_POST = {
    "_id": "65f0c0ffee00000000000002",
    "product": {"nameOfProduct": "Tomatoes", "productPrice": 25.0, "currency": "GHS", "unit": "crate", "description": "x"},
    "productImages": [{"url": "https://img/t.png", "fileName": "t.png"}],
    "FarmProfile": {"farmName": "Green Acres", "farmLocation": {"region": "Ashanti", "district": "Kumasi"}, "farmSize": "12"},
    "deliveryAvailable": False,
    "delivery": {"deliveryAvailable": True},
    "category": {"name": "Vegetables", "id": "veg"},
    "subcategory": {"name": "Tomatoes", "id": "tom"},
}


def test_sanitize_picks_variant():
    store = sanitize_item(STORE_POST)
    assert isinstance(store, StoreWishlistItem)
    dumped = store.model_dump(by_alias=True)
    assert dumped["_id"] == STORE_POST["_id"]
    assert dumped["type"] == "store"
    assert dumped["storeImage"] == {"url": "https://img/s.png", "itemName": "Hoe", "itemPrice": "40", "currency": "GHS"}
    assert dumped["delivery"] == {"deliveryAvailable": True}
    assert dumped["category"] == {"name": "Tools"}
    assert "description" not in dumped

    farm = sanitize_item(FARM_POST)
    assert isinstance(farm, FarmWishlistItem)
    dumped = farm.model_dump(by_alias=True)
    assert dumped["type"] == "farm"
    assert dumped["productImages"] == [{"url": "https://img/t.png"}]
    # delivery flag comes from the post's own deliveryAvailable
    assert dumped["delivery"] == {"deliveryAvailable": False}


def test_add_is_idempotent_and_remove(tmp_path):
    wishlist = Wishlist(JsonFileStorage(tmp_path / "wishlist.json"))
    assert wishlist.items() == []

    assert wishlist.add(STORE_POST)
    assert wishlist.add(STORE_POST)
    assert wishlist.add(FARM_POST)

    items = Wishlist(JsonFileStorage(tmp_path / "wishlist.json")).items()
    assert [(i.id, i.type) for i in items] == [(STORE_POST["_id"], "store"), (FARM_POST["_id"], "farm")]
    assert wishlist.contains(FARM_POST["_id"])

    remaining = wishlist.remove(STORE_POST["_id"])
    assert [i.id for i in remaining] == [FARM_POST["_id"]]
    assert not wishlist.contains(STORE_POST["_id"])

    assert wishlist.clear()
    assert wishlist.items() == []


def test_corrupt_storage_reads_as_empty():
    assert Wishlist(MemoryStorage("{not json")).items() == []
    assert Wishlist(MemoryStorage(json.dumps([{"type": "boat"}]))).items() == []


class BrokenStorage:
    def read(self):
        raise OSError("storage unavailable")

    def write(self, raw):
        raise OSError("storage unavailable")


def test_storage_failures_degrade():
    wishlist = Wishlist(BrokenStorage())
    assert wishlist.items() == []
    assert wishlist.add(STORE_POST) is False
    assert wishlist.clear() is False
    assert wishlist.remove("anything") == []
    assert wishlist.add({"no": "id"}) is False
