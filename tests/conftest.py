"""Pytest fixtures for storefront tests."""

import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from errors import GatewayError
from gateway import get_gateway
from schemas import Product, User
from security import create_access_token, hash_password


class FakeGateway:
    """In-memory stand-in for PaystackClient."""

    def __init__(self):
        self.transactions = {}
        self.initialized = []
        self.verify_calls = 0

    def add(self, reference, status="success", amount=0, metadata=None, gateway_response=None):
        self.transactions[reference] = {
            "reference": reference,
            "status": status,
            "amount": amount,
            "metadata": metadata or {},
            "gateway_response": gateway_response,
        }

    def initialize_transaction(self, email, amount, metadata=None, callback_url=None):
        reference = f"ref_{uuid.uuid4().hex[:10]}"
        self.initialized.append({
            "email": email,
            "amount": amount,
            "metadata": metadata or {},
            "callback_url": callback_url,
            "reference": reference,
        })
        return {
            "authorization_url": f"https://checkout.paystack.com/{reference}",
            "access_code": f"ac_{reference}",
            "reference": reference,
        }

    def verify_transaction(self, reference):
        self.verify_calls += 1
        if reference not in self.transactions:
            raise GatewayError("Transaction reference not found")
        return dict(self.transactions[reference])


@pytest.fixture
def db():
    """Fresh in-memory database with the production indexes."""
    database = mongomock.MongoClient().storefront
    ensure_indexes(database)
    return database


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    from main import app

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(username="alice", role="user", wallet_balance=0.0, password="secret123"):
        user = User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hash_password(password),
            role=role,
            wallet_balance=wallet_balance,
        )
        return create_document(db, "user", user)
    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Headphones", price=100.0, stock=5, category="Electronics"):
        product = Product(name=name, description=f"{name} description", price=price, category=category, stock=stock)
        return create_document(db, "product", product)
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(username="admin", role="admin")


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token({'sub': str(user['_id'])})}"}
    return _headers


@pytest.fixture
def address():
    return {
        "fullName": "Ada Obi",
        "email": "ada@example.com",
        "address": "12 Marina Road",
        "city": "Lagos",
        "postalCode": "100001",
        "country": "Nigeria",
    }
