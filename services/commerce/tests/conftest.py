import os
import tempfile

# Point the service at a throwaway SQLite file before any commerce module
# reads its settings.
_DB_DIR = tempfile.mkdtemp(prefix="commerce-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'commerce.db')}"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["LOG_LEVEL"] = "WARNING"
for _key in ("SMTP_HOST", "TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_WHATSAPP_FROM"):
    os.environ.pop(_key, None)

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from commerce.application.schemas import OrderCreate
from commerce.domain.models import Base, Customer, Product
from commerce.infrastructure.db import SessionLocal, engine

JAN_15 = datetime(2025, 1, 15, 6, 30, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self):
        self.notices = []

    def order_placed(self, notice):
        self.notices.append(notice)
        return {"email": "logged", "whatsapp": "logged"}


class ExplodingNotifier:
    def order_placed(self, notice):
        raise RuntimeError("smtp relay down")


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def catalog():
    """Two customers and a small tea catalog; returns their ids by handle."""
    session = SessionLocal()
    customer = Customer(first_name="Asha", last_name="Rao", email="asha@example.com",
                        phone="9876543210", role="customer")
    admin = Customer(first_name="Store", last_name="Admin", email="admin@example.com", role="admin")
    products = {
        "darjeeling": Product(name="Darjeeling First Flush", price=Decimal("100.00"), stock_quantity=10,
                              in_stock=True, description="Muscatel", weight="100g"),
        "assam": Product(name="Assam Breakfast", price=Decimal("50.00"), stock_quantity=5, in_stock=True),
        "oolong": Product(name="Nilgiri Oolong", price=Decimal("220.00"), stock_quantity=1, in_stock=True),
        "chamomile": Product(name="Chamomile", price=Decimal("80.00"), stock_quantity=10,
                             in_stock=True, category="tisane"),
        "gift_box": Product(name="Gift Box", price=Decimal("150.00"), stock_quantity=None, in_stock=True,
                            category="gifts"),
    }
    session.add_all([customer, admin, *products.values()])
    session.commit()
    ids = {"customer": customer.id, "admin": admin.id}
    ids.update({handle: p.id for handle, p in products.items()})
    session.close()
    return ids


@pytest.fixture
def order_payload():
    def build(*items, **overrides):
        payload = {
            "items": list(items),
            "shipping_address": {
                "first_name": "Asha",
                "last_name": "Rao",
                "address": "12 Tea Garden Road",
                "city": "Kolkata",
                "state": "West Bengal",
                "pincode": "700001",
            },
            "contact": {"email": "asha@example.com", "phone": "9876543210"},
            "payment_method": "cod",
            "shipping_cost": "40.00",
        }
        payload.update(overrides)
        return payload
    return build


@pytest.fixture
def order_create(order_payload):
    def build(*items, **overrides):
        return OrderCreate.model_validate(order_payload(*items, **overrides))
    return build


def stock_of(product_id: int):
    session = SessionLocal()
    try:
        return session.get(Product, product_id).stock_quantity
    finally:
        session.close()
