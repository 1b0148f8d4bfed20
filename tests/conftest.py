import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from config import Settings
from database import ConnectionManager
from main import create_app
from security import create_access_token


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def test_settings():
    s = Settings()
    s.database_url = "mongodb://localhost:27017"
    s.database_name = "marketplace_test"
    s.db_retry_backoff_seconds = 0
    return s


@pytest.fixture
def manager(mongo_client, test_settings):
    return ConnectionManager(test_settings, client_factory=lambda *a, **k: mongo_client, sleep=lambda s: None)


@pytest.fixture
def db(manager):
    return manager.ensure_connected()


@pytest.fixture
def client(manager, test_settings):
    app = create_app(manager=manager, settings=test_settings)
    with TestClient(app) as c:
        yield c


def make_token(user_id: str, email: str) -> str:
    return create_access_token({"sub": user_id, "email": email})


def auth_headers(user_id: str, email: str):
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


def profile_payload(email: str, username: str, **overrides):
    body = {
        "email": email,
        "fullName": "Ama Mensah",
        "username": username,
        "profilePicture": {"url": "https://img.example.com/a.png", "fileName": "a.png"},
        "gender": "Female",
        "phoneNumber": "+233 2441234567",
        "country": "Ghana",
        "role": "Farmer",
    }
    body.update(overrides)
    return body


class Account:
    def __init__(self, user_id: str, email: str, headers, profile_id: str):
        self.id = user_id
        self.email = email
        self.headers = headers
        self.profile_id = profile_id


@pytest.fixture
def make_account(client):
    """Create a session principal with a user profile and return its handles."""
    counter = {"n": 0}

    def _make(**overrides) -> Account:
        counter["n"] += 1
        user_id = str(ObjectId())
        email = f"user{counter['n']}@example.com"
        headers = auth_headers(user_id, email)
        res = client.post("/profile", json=profile_payload(email, f"user{counter['n']}", **overrides), headers=headers)
        assert res.status_code == 201, res.text
        return Account(user_id, email, headers, res.json()["data"]["_id"])

    return _make


@pytest.fixture
def alice(make_account):
    return make_account()


@pytest.fixture
def bob(make_account):
    return make_account(fullName="Kofi Boateng", role="Buyer")


def farm_post_payload(**overrides):
    body = {
        "FarmProfile": {
            "farmName": "Green Acres",
            "farmLocation": {"region": "Ashanti", "district": "Kumasi"},
            "farmSize": "12",
            "gpsAddress": "AK-039-5028",
            "productionScale": "Small",
        },
        "tags": [{"label": "Organic", "value": "organic"}],
        "product": {
            "nameOfProduct": "Tomatoes",
            "pricingMethod": "fixed",
            "productPrice": 25.0,
            "requestPricingDetails": False,
            "baseStartingPrice": False,
            "currency": "GHS",
            "availableQuantity": "40",
            "unit": "crate",
            "availabilityStatus": True,
            "awaitingHarvest": False,
            "negotiablePrice": True,
            "discount": False,
            "description": "Fresh tomatoes",
        },
        "productImages": [{"url": "https://img.example.com/t.png"}],
        "useFarmLocation": True,
        "category": {"name": "Vegetables", "id": "veg"},
        "subcategory": {"name": "Tomatoes", "id": "tom"},
        "deliveryAvailable": True,
        "delivery": {"deliveryAvailable": True},
    }
    body.update(overrides)
    return body


def store_profile_payload(**overrides):
    body = {
        "storeName": "Agro Mart",
        "description": "Farm inputs",
        "branches": [
            {"branchName": "Main", "branchLocation": "Adum, Kumasi", "branchPhone": "0244123456789"},
        ],
        "productionScale": "Medium",
        "storeImages": [{"url": "https://img.example.com/s.png", "itemName": "Hoe", "itemPrice": "40"}],
        "productSold": ["tools"],
        "belongsToGroup": False,
    }
    body.update(overrides)
    return body


def store_post_payload(**overrides):
    body = {
        "storeLocation": {"region": "Greater Accra", "district": "Tema"},
        "product": {"rentOptions": False, "negotiable": True, "discount": False},
        "storeImage": {
            "_id": str(ObjectId()),
            "url": "https://img.example.com/s.png",
            "available": True,
            "itemName": "Hoe",
            "itemPrice": "40",
            "currency": "GHS",
        },
        "category": {"name": "Tools", "id": "tools"},
        "subcategory": {"name": "Hand tools", "id": "hand"},
        "description": "Sturdy hoe",
    }
    body.update(overrides)
    return body
