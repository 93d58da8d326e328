import os

# Settings are read at import time; configure them before any app module loads
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FLW_API_URL"] = "https://api.flutterwave.test/v3"
os.environ["FLW_SECRET_KEY"] = "FLWSECK_TEST-0000"
os.environ["FLW_SECRET_HASH"] = "webhook-secret-hash"
os.environ["FRONTEND_URL"] = "http://shop.test"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from models.product import Product
from models.users import User
from routes.payments import get_payment_gateway
from utils.flutterwave_client import FlutterwaveClient
from utils.hashing import get_password_hash
from utils.tokenJWT import create_access_token

WEBHOOK_SECRET = os.environ["FLW_SECRET_HASH"]
HOSTED_LINK = "https://checkout.flutterwave.test/v3/hosted/pay/abc123"

_password_hash = get_password_hash("secret123")


class FakeFlutterwave:
    """Scripted Flutterwave API served through httpx.MockTransport."""

    def __init__(self):
        self.requests = []
        self.payment_response = (200, {
            "status": "success",
            "message": "Hosted Link",
            "data": {"link": HOSTED_LINK},
        })
        self.verify_response = (200, {
            "status": "success",
            "message": "Transaction fetched successfully",
            "data": {"status": "successful", "flw_ref": "FLW-MOCK-1234", "amount": 0},
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/payments"):
            status_code, body = self.payment_response
        elif request.url.path.endswith("/transactions/verify_by_reference"):
            status_code, body = self.verify_response
        else:
            status_code, body = 404, {"status": "error", "message": "Unknown endpoint"}
        return httpx.Response(status_code, json=body)

    def paths(self):
        return [r.url.path for r in self.requests]

    def client(self) -> FlutterwaveClient:
        return FlutterwaveClient(
            os.environ["FLW_API_URL"], os.environ["FLW_SECRET_KEY"],
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def gateway():
    return FakeFlutterwave()


@pytest.fixture()
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = gateway.client
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, email="buyer@example.com", name="Ada Buyer") -> User:
    user = User(name=name, email=email, password_hash=_password_hash)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_product(db, owner, name="Desk Lamp", price=10.0, quantity=5,
                 description="A sturdy lamp for any desk") -> Product:
    product = Product(name=name, description=description, price=price, quantity=quantity, user_id=owner.id)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}


@pytest.fixture()
def seller(db):
    return make_user(db, email="seller@example.com", name="Sam Seller")


@pytest.fixture()
def buyer(db):
    return make_user(db)
