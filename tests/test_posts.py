import pytest
from bson import ObjectId

from conftest import auth_headers, farm_post_payload, store_post_payload, store_profile_payload
from routers.posts import build_post_filter


@pytest.fixture
def farm_post(client, alice):
    res = client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    assert res.status_code == 201, res.text
    return res.json()["data"]


def test_create_farm_post_requires_profile(client):
    headers = auth_headers(str(ObjectId()), "noprofile@example.com")
    res = client.post("/posts/farm", json=farm_post_payload(), headers=headers)
    assert res.status_code == 404
    assert res.json()["error"] == "User profile not found"


def test_create_farm_post_binds_session_user(client, alice):
    res = client.post("/posts/farm", json=farm_post_payload(userId="spoofed"), headers=alice.headers)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["userId"] == alice.id
    assert data["userProfile"] == alice.profile_id


def test_create_store_post_requires_store_profile(client, alice):
    res = client.post("/posts/store", json=store_post_payload(), headers=alice.headers)
    assert res.status_code == 404
    assert res.json()["error"] == "Store profile not found"

    assert client.post("/profile/store/me", json=store_profile_payload(), headers=alice.headers).status_code == 201
    res = client.post("/posts/store", json=store_post_payload(), headers=alice.headers)
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["storeProfile"]["storeName"] == "Agro Mart"
    assert data["userProfile"]["email"] == alice.email


def test_my_posts_pagination(client, alice, bob):
    for _ in range(3):
        client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    client.post("/posts/farm", json=farm_post_payload(), headers=bob.headers)

    res = client.get("/posts/farm", params={"page": 2, "limit": 2}, headers=alice.headers)
    body = res.json()
    assert res.status_code == 200
    assert len(body["data"]) == 1
    assert body["pagination"] == {
        "page": 2,
        "limit": 2,
        "totalDocs": 3,
        "totalPages": 2,
        "hasNextPage": False,
        "hasPrevPage": True,
    }


def test_combined_listing_merges_totals(client, alice):
    client.post("/profile/store/me", json=store_profile_payload(), headers=alice.headers)
    client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    client.post("/posts/store", json=store_post_payload(), headers=alice.headers)

    body = client.get("/posts", params={"limit": 1}).json()
    assert len(body["data"]["farmPosts"]) == 1
    assert len(body["data"]["storePosts"]) == 1
    assert body["pagination"]["totalDocs"] == 3
    assert body["pagination"]["totalPages"] == 3
    assert body["pagination"]["hasNextPage"] is True
    assert body["data"]["farmPosts"][0]["userProfile"]["fullName"] == "Ama Mensah"


def test_combined_listing_filters(client, alice):
    client.post("/profile/store/me", json=store_profile_payload(), headers=alice.headers)
    client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    client.post("/posts/store", json=store_post_payload(), headers=alice.headers)

    by_region = client.get("/posts", params={"region": "Greater Accra"}).json()["data"]
    assert len(by_region["farmPosts"]) == 0
    assert len(by_region["storePosts"]) == 1

    by_category = client.get("/posts", params={"category": "veg"}).json()["data"]
    assert len(by_category["farmPosts"]) == 1
    assert len(by_category["storePosts"]) == 0

    by_search = client.get("/posts", params={"search": "toMAto", "region": "Ashanti"}).json()["data"]
    assert len(by_search["farmPosts"]) == 1
    assert len(by_search["storePosts"]) == 0


def test_build_post_filter_combines_location_and_search():
    filt = build_post_filter(region="Ashanti", search="a.b")
    assert "$or" not in filt
    location, search = filt["$and"]
    assert {"FarmProfile.farmLocation.region": "Ashanti"} in location["$or"]
    assert {"storeLocation.region": "Ashanti"} in location["$or"]
    assert search["$or"][0] == {"category.name": {"$regex": r"a\.b", "$options": "i"}}


def test_get_post_by_id(client, farm_post):
    res = client.get(f"/posts/farm/{farm_post['_id']}")
    assert res.status_code == 200
    assert res.json()["data"]["product"]["nameOfProduct"] == "Tomatoes"

    assert client.get(f"/posts/farm/{ObjectId()}").status_code == 404
    assert client.get("/posts/farm/nope").json()["error"] == "Invalid farm post ID format"


def test_only_owner_updates_or_deletes(client, farm_post, bob, alice, db):
    url = f"/posts/farm/{farm_post['_id']}"

    res = client.patch(url, json={"deliveryAvailable": False}, headers=bob.headers)
    assert res.status_code == 403
    assert client.delete(url, headers=bob.headers).status_code == 403
    assert db["farmpost"].count_documents({}) == 1

    res = client.put(url, json={"deliveryAvailable": False, "userId": bob.id}, headers=alice.headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["deliveryAvailable"] is False
    assert data["userId"] == alice.id

    assert client.delete(url, headers=alice.headers).json()["message"] == "Farm post deleted"
    assert client.patch(url, json={}, headers=alice.headers).status_code == 404


def test_update_validates_after_ownership(client, farm_post, bob, alice):
    url = f"/posts/farm/{farm_post['_id']}"
    bad = {"category": {"name": "no id"}}
    assert client.patch(url, json=bad, headers=bob.headers).status_code == 403
    res = client.patch(url, json=bad, headers=alice.headers)
    assert res.status_code == 400
    assert "category.id: Field required" in res.json()["errors"]


def test_search_matches_store_name(client, alice):
    client.post("/profile/store/me", json=store_profile_payload(), headers=alice.headers)
    client.post("/posts/farm", json=farm_post_payload(), headers=alice.headers)
    client.post("/posts/store", json=store_post_payload(), headers=alice.headers)

    found = client.get("/posts", params={"search": "agro mart"}).json()["data"]
    assert len(found["storePosts"]) == 1
    assert found["storePosts"][0]["storeProfile"]["storeName"] == "Agro Mart"
    assert found["farmPosts"] == []

    assert client.get("/posts", params={"search": "no such store"}).json()["data"]["storePosts"] == []


def test_build_post_filter_includes_matching_stores():
    store_id = ObjectId()
    filt = build_post_filter(search="agro", store_profile_ids=[store_id])
    assert {"storeProfile": {"$in": [store_id]}} in filt["$or"]
    assert not any("storeProfile.storeName" in term for term in filt["$or"])


def test_update_ignores_null_fields(client, farm_post, alice):
    url = f"/posts/farm/{farm_post['_id']}"
    res = client.put(url, json={"product": None, "category": None, "useFarmLocation": False}, headers=alice.headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["product"]["nameOfProduct"] == "Tomatoes"
    assert data["category"] == {"name": "Vegetables", "id": "veg"}
    assert data["useFarmLocation"] is False
