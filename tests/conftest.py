import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="pos-uploads-")
os.environ["PAYMENT_DELAY_SECONDS"] = "0"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers the tables on Base
from config import Config
from database import Base, get_change_feed, get_db, make_engine
from main import app
from realtime import ChangeFeed


@pytest.fixture
def engine():
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def feed(session_factory):
    feed = ChangeFeed()
    feed.bind(session_factory)
    return feed


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory, feed):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_change_feed] = lambda: feed
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    def _make_token(sub, email="cashier@example.com", full_name=None, secret=None):
        claims = {
            "sub": sub,
            "email": email,
            "aud": Config.JWT_AUDIENCE,
            "role": "authenticated",
            "user_metadata": {"full_name": full_name} if full_name else {},
            "exp": datetime.now(timezone.utc) + timedelta(hours=1),
        }
        return jwt.encode(claims, secret or Config.JWT_SECRET, algorithm=Config.JWT_ALGORITHM)

    return _make_token


@pytest.fixture
def create_product(client):
    def _create_product(name="Espresso Beans", price=12.5, category="Coffee", stock=20, **extra):
        res = client.post("/products", json={"name": name, "price": price, "category": category, "stock": stock, **extra})
        assert res.status_code == 200, res.text
        return res.json()

    return _create_product


@pytest.fixture
def create_customer(client):
    def _create_customer(name="Ayu Lestari", email="ayu@example.com", phone="0812-1111-2222"):
        res = client.post("/customers", json={"name": name, "email": email, "phone": phone})
        assert res.status_code == 200, res.text
        return res.json()

    return _create_customer


@pytest.fixture
def cart_line():
    def _cart_line(product, quantity, stock=None):
        return {
            "id": product["id"],
            "name": product["name"],
            "price": product["price"],
            "category": product["category"],
            "stock": product["stock"] if stock is None else stock,
            "quantity": quantity,
        }

    return _cart_line
