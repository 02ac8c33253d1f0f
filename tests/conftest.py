import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, get_db
from core import config as core_config
from services import email as email_service
from services.paystack import compute_signature
from models.order_settings import OrderSettings
from models.product import Product
from models.user import User
from security.password import hash_password
from security import jwt as jwt_utils

PAYSTACK_TEST_SECRET = "sk_test_secret"


@pytest.fixture(scope="session", autouse=True)
def test_settings():
    core_config.settings.JWT_SECRET = "test-secret"
    core_config.settings.REFRESH_SECRET = "test-refresh"
    core_config.settings.TESTING = True
    core_config.settings.PAYSTACK_SECRET_KEY = PAYSTACK_TEST_SECRET
    core_config.settings.PAYSTACK_CURRENCY = "NGN"
    core_config.settings.FRONTEND_URL = "http://shop.test"
    core_config.settings.ENFORCE_SERVER_PRICES = True
    core_config.settings.LOW_STOCK_THRESHOLD = 5
    core_config.settings.DB_RETRY_BACKOFF_SECONDS = 0
    yield


def _enforce_foreign_keys(engine):
    """SQLite only enforces foreign keys when asked, as the app engine does."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enforce_foreign_keys(engine)
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()
        engine.dispose()


@pytest.fixture()
def file_sessions(tmp_path):
    """Factory for independent sessions on one file-backed SQLite database."""
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'shop.db'}",
        connect_args={"check_same_thread": False, "timeout": 5},
    )
    _enforce_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    SessionFactory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

    opened = []

    def _open():
        session = SessionFactory()
        opened.append(session)
        return session

    try:
        yield _open
    finally:
        for session in opened:
            session.close()
        engine.dispose()


@pytest.fixture()
def db(db_session_override):
    """Session shared with the app, for service level tests."""
    return db_session_override


@pytest.fixture(autouse=True)
def mock_email_send(monkeypatch):
    sent = []

    def _fake_send(to_email: str, subject: str, html: str) -> None:
        sent.append({"to": to_email, "subject": subject, "body": html})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture()
def client(db_session_override):
    with TestClient(app) as c:
        yield c


def _make_user(db, name: str, email: str, is_admin: bool = False) -> User:
    user = User(
        name=name,
        email=email,
        password_hash=hash_password("testpass123"),
        is_admin=is_admin,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def customer(db):
    """A regular shopper."""
    return _make_user(db, "Ada Buyer", "ada@example.com")


@pytest.fixture
def other_customer(db):
    return _make_user(db, "Ben Other", "ben@example.com")


@pytest.fixture
def admin(db):
    return _make_user(db, "Shop Admin", "admin@example.com", is_admin=True)


def _headers_for(user: User) -> dict:
    token = jwt_utils.create_access_token(user.id, user.is_admin)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(customer):
    """Return authorization headers with a valid token for the customer."""
    return _headers_for(customer)


@pytest.fixture
def other_headers(other_customer):
    return _headers_for(other_customer)


@pytest.fixture
def admin_headers(admin):
    return _headers_for(admin)


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price="10.00", stock=10, unlimited_stock=False, discount="0", is_active=True):
        product = Product(
            name=name,
            price=Decimal(price),
            discount_percentage=Decimal(discount),
            stock=None if unlimited_stock else stock,
            unlimited_stock=unlimited_stock,
            is_active=is_active,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def widget(make_product):
    return make_product("Widget", "10.00", stock=10)


@pytest.fixture
def order_settings(db):
    row = OrderSettings(enabled=True, shipping_fee_percent=Decimal("5"))
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


@pytest.fixture
def charge_event():
    """Build a ``charge.success`` event dict for a paid checkout."""

    def _build(reference, user_id, items, shipping_fee="0.00", amount=None, status="success", event="charge.success"):
        metadata = {
            "user_id": user_id,
            "shipping_address": "12 Marina Road, Lagos",
            "shipping_fee": shipping_fee,
            "items": [
                {
                    "product_id": product_id,
                    "name": name,
                    "unit_price": unit_price,
                    "quantity": quantity,
                    "image": None,
                }
                for product_id, name, unit_price, quantity in items
            ],
        }
        data = {"reference": reference, "status": status, "currency": "NGN", "metadata": metadata}
        if amount is not None:
            data["amount"] = amount
        return {"event": event, "data": data}

    return _build


@pytest.fixture
def signed():
    """Serialize an event and sign it the way Paystack does."""

    def _sign(event, secret=PAYSTACK_TEST_SECRET):
        raw = json.dumps(event).encode()
        return raw, compute_signature(raw, secret)

    return _sign
